"""Normalize scraped text: entities, prices, slugs and URLs."""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

NAMED_ENTITIES = {
    "amp": "&",
    "lt": "<",
    "gt": ">",
    "quot": '"',
    "nbsp": " ",
}

_ENTITY_RE = re.compile(r"&(?:#[xX]([0-9A-Fa-f]+)|#(\d+)|(amp|lt|gt|quot|nbsp));")
_SURROGATE_RE = re.compile("[\ud800-\udfff]")

SLUG_MAX_LENGTH = 50
ZERO_PRICE = Decimal("0.00")


def _replace_entity(match: re.Match) -> str:
    hex_code, dec_code, name = match.groups()
    if name:
        return NAMED_ENTITIES[name]
    code = int(hex_code, 16) if hex_code else int(dec_code)
    try:
        return chr(code)
    except (ValueError, OverflowError):
        return match.group(0)


def _join_surrogates(text: str) -> str:
    """Merge UTF-16 surrogate pairs into one character; lone halves become U+FFFD."""
    if not _SURROGATE_RE.search(text):
        return text
    return text.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")


def decode_entities(text: Optional[str]) -> Optional[str]:
    """
    Decode numeric character references and the common named entities.

    Runs in a single pass, so "&amp;#233;" becomes "&#233;" and not "é".
    ``&#39;`` is covered by the decimal form. Emoji escaped as a pair of
    surrogate references ("&#55357;&#56832;") decode to the one emoji.
    """
    if not text:
        return text
    return _join_surrogates(_ENTITY_RE.sub(_replace_entity, text))


def canonicalize_url(url: str) -> str:
    """Strip query string and fragment; the result is the listing's identity."""
    parts = urlsplit(url.strip())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def parse_price(price_text: Optional[str]) -> Decimal:
    """
    Parse a display price such as "€ 12,50" into a Decimal.

    Keeps digits, dots and commas, turns the first comma into a dot and reads
    the leading number. Anything unparseable becomes 0.00 so staff can fix
    the price in the catalog.

    Thousand separators are ambiguous: "1.234,56" reads as 1.23.
    """
    if not price_text:
        return ZERO_PRICE

    cleaned = re.sub(r"[^0-9.,]", "", price_text).replace(",", ".", 1)
    match = re.match(r"\d+(?:\.\d*)?|\.\d+", cleaned)
    if not match:
        return ZERO_PRICE

    try:
        return Decimal(match.group(0)).quantize(Decimal("0.01"))
    except InvalidOperation:
        logger.debug(f"Could not parse price from: {price_text!r}")
        return ZERO_PRICE


def slug_base(title: str) -> str:
    """Lowercase, collapse non-alphanumerics to '-', trim and truncate."""
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return base[:SLUG_MAX_LENGTH] or "product"


def make_slug(title: str, suffix: int | str) -> str:
    """Slug for a new catalog product; the suffix keeps it unique."""
    return f"{slug_base(title)}-{suffix}"
