"""Assign a catalog category to a listing by keyword scoring."""

import logging
from typing import Optional, Sequence

from catalog_sync.ingest.base import Category, Listing

logger = logging.getLogger(__name__)

# Keyword table the catalog is seeded with (scripts/seed_categories.py).
# Order matters: it is the tie-break order between equally scored categories.
DEFAULT_CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "zaagmachines": [
        "zaag", "zaagtafel", "cirkelzaag", "decoupeerzaag", "verstekzaag",
        "kettingzaag", "afkortzaag", "lintzaag", "reciprozaag",
    ],
    "elektrisch-gereedschap": [
        "boormachine", "boor", "slijptol", "schuurmachine", "haakse slijper",
        "accuschroef", "klopboor", "freesmachine", "polijstmachine",
        "heteluchtpistool", "elektrisch", "accu", "oplader", "multitool",
    ],
    "handgereedschap": [
        "hamer", "tang", "schroevendraaier", "moersleutel", "sleutelset",
        "steeksleutel", "ringsleutel", "waterpomptang", "kniptang",
        "combinatietang", "nijptang", "meetlint", "waterpas", "beitel", "vijl",
        "rasp", "schaaf", "handzaag",
    ],
    "machines": [
        "machine", "compressor", "generator", "lasapparaat", "lasmachine",
        "draaibank", "freesbank", "pers", "werkbank", "statief", "stamper",
        "wacker",
    ],
    "bouw-verbouw": [
        "bouw", "verbouw", "isolatie", "kit", "lijm", "mortelmixer",
        "tegelsnijder", "tegels", "afvoer", "drainage", "infiltratie", "buizen",
        "pvc", "koppeling", "afdichting", "cement", "beton", "palletbox",
        "kratten",
    ],
    "accessoires": [
        "bit", "schijf", "blad", "zaagblad", "schuurpapier", "schuurschijf",
        "doorslijpschijf", "diamant", "spijker", "schroef", "plug", "set",
        "koffer", "opbergbox",
    ],
    "tuin-buiten": [
        "tuin", "grasmaaier", "heggenschaar", "bladblazer", "snoeischaar",
        "tuinslang", "sproeier", "hogedruk", "terras", "bestrating",
    ],
}

FALLBACK_SLUG = "overig"


def search_text(listing: Listing) -> str:
    return f"{listing.title} {listing.description or ''}".lower()


def score_category(text: str, category: Category) -> int:
    """Number of distinct keywords of ``category`` found in ``text``."""
    keywords = {kw.lower() for kw in category.keywords if kw}
    return sum(1 for kw in keywords if kw in text)


def score_categories(listing: Listing, categories: Sequence[Category]) -> dict[str, int]:
    """Scores per category slug, in category order."""
    text = search_text(listing)
    return {category.slug: score_category(text, category) for category in categories}


def categorize(
    listing: Listing,
    categories: Sequence[Category],
    fallback_slug: str = FALLBACK_SLUG,
) -> Optional[Category]:
    """
    Pick the best-scoring category for a listing.

    The strictly highest score wins, so ties go to the category listed
    first. With no keyword hit anywhere the fallback category is returned
    if the catalog has one, otherwise None.
    """
    text = search_text(listing)
    best: Optional[Category] = None
    best_score = 0

    for category in categories:
        score = score_category(text, category)
        if score > best_score:
            best, best_score = category, score

    if best is not None:
        return best

    for category in categories:
        if category.slug == fallback_slug:
            return category

    logger.debug(f"No category matched {listing.url} and no '{fallback_slug}' fallback exists")
    return None
