"""Extract listing fields from a listing page through ordered fallback chains.

Every field has a tuple of named extractors. Each extractor looks at one
encoding of the page (Open Graph, Twitter card, JSON-LD, inline script
state, visible markup) and returns a value or None; the first non-blank
value wins. The HTML parser already decodes entities in attributes and
text, so only extractors reading raw markup decode (`from_raw_html`).
"""

import logging
import re
from dataclasses import dataclass
from functools import cached_property, wraps
from typing import Callable, Optional, Sequence

from selectolax.parser import HTMLParser

from catalog_sync.config import settings
from catalog_sync.ingest.base import UNKNOWN_TITLE, Listing
from catalog_sync.ingest.json_extractor import (
    extract_json_ld,
    find_first_in_string_list,
    find_int_field,
    json_ld_image,
)
from catalog_sync.normalize.processor import canonicalize_url, decode_entities

logger = logging.getLogger(__name__)

CURRENCY_SYMBOL = "€"

_PRICE_ELEMENT_RE = re.compile(r'class="[^"]*[Pp]rice[^"]*"[^>]*>\s*€?\s*([\d.,]+)')


@dataclass
class ListingPage:
    """A fetched listing page; the HTML tree is parsed once, on first use."""

    html: str
    url: str
    cdn_host: str = ""

    @cached_property
    def tree(self) -> HTMLParser:
        return HTMLParser(self.html)

    @cached_property
    def json_ld(self) -> list[dict]:
        return extract_json_ld(self.tree)

    def meta(self, key: str) -> Optional[str]:
        """Content of the first <meta property=key> or <meta name=key>."""
        for selector in (f'meta[property="{key}"]', f'meta[name="{key}"]'):
            node = self.tree.css_first(selector)
            if node is not None:
                content = node.attributes.get("content")
                if content:
                    return content
        return None


Extractor = Callable[[ListingPage], Optional[str]]


def from_raw_html(extractor: Extractor) -> Extractor:
    """Mark an extractor that regex-matches raw markup; its value still carries entities."""

    @wraps(extractor)
    def decoded(page: ListingPage) -> Optional[str]:
        return decode_entities(extractor(page))

    return decoded


# ---------------------------------------------------------------------------
# title
# ---------------------------------------------------------------------------

def og_title(page: ListingPage) -> Optional[str]:
    return page.meta("og:title")


def document_title(page: ListingPage) -> Optional[str]:
    """<title>, cut at the site-name separator ("Item | Site", "Item - Site")."""
    node = page.tree.css_first("title")
    if node is None:
        return None
    text = node.text(strip=True)
    return text.split("|")[0].split("-")[0].strip()


# ---------------------------------------------------------------------------
# price
# ---------------------------------------------------------------------------

def meta_price_amount(page: ListingPage) -> Optional[str]:
    """product:price:amount is already in major units."""
    amount = page.meta("product:price:amount")
    if amount and amount.strip():
        return f"{CURRENCY_SYMBOL} {amount.strip()}"
    return None


def script_price_cents(page: ListingPage) -> Optional[str]:
    """Inline ``"priceCents"`` state is in minor units."""
    cents = find_int_field(page.html, "priceCents")
    if cents is None:
        return None
    return f"{CURRENCY_SYMBOL} {cents / 100:.2f}"


@from_raw_html
def price_element_text(page: ListingPage) -> Optional[str]:
    """Number right after an element whose class mentions price."""
    match = _PRICE_ELEMENT_RE.search(page.html)
    if match:
        return f"{CURRENCY_SYMBOL} {match.group(1)}"
    return None


# ---------------------------------------------------------------------------
# image
# ---------------------------------------------------------------------------

def og_image(page: ListingPage) -> Optional[str]:
    return page.meta("og:image")


def twitter_image(page: ListingPage) -> Optional[str]:
    return page.meta("twitter:image")


def json_ld_image_url(page: ListingPage) -> Optional[str]:
    return json_ld_image(page.json_ld)


@from_raw_html
def cdn_image_url(page: ListingPage) -> Optional[str]:
    """Any image URL hosted on the site's CDN."""
    if not page.cdn_host:
        return None
    pattern = (
        rf"""https://[^"'\s]+\.{re.escape(page.cdn_host)}/[^"'\s]+"""
        rf"""(?:jpg|jpeg|png|webp)[^"'\s]*"""
    )
    match = re.search(pattern, page.html, re.IGNORECASE)
    return match.group(0) if match else None


@from_raw_html
def script_image_urls(page: ListingPage) -> Optional[str]:
    return find_first_in_string_list(page.html, "imageUrls")


# ---------------------------------------------------------------------------
# description
# ---------------------------------------------------------------------------

def og_description(page: ListingPage) -> Optional[str]:
    return page.meta("og:description")


TITLE_CHAIN: tuple[Extractor, ...] = (og_title, document_title)
PRICE_CHAIN: tuple[Extractor, ...] = (meta_price_amount, script_price_cents, price_element_text)
IMAGE_CHAIN: tuple[Extractor, ...] = (
    og_image,
    twitter_image,
    json_ld_image_url,
    cdn_image_url,
    script_image_urls,
)
DESCRIPTION_CHAIN: tuple[Extractor, ...] = (og_description,)


def first_match(chain: Sequence[Extractor], page: ListingPage) -> Optional[str]:
    """Run a fallback chain; return the first non-blank value."""
    for extractor in chain:
        value = extractor(page)
        if value:
            value = value.replace("\xa0", " ").strip()
        if value:
            logger.debug(f"{extractor.__name__} matched for {page.url}")
            return value
    return None


def extract_listing(page_html: str, url: str, cdn_host: Optional[str] = None) -> Listing:
    """
    Build a Listing from one listing page.

    Missing price/image/description are valid partial results; a missing
    title yields the UNKNOWN_TITLE sentinel and the caller drops the listing.
    """
    page = ListingPage(
        html=page_html,
        url=canonicalize_url(url),
        cdn_host=settings.image_cdn_host if cdn_host is None else cdn_host,
    )
    return Listing(
        title=first_match(TITLE_CHAIN, page) or UNKNOWN_TITLE,
        price=first_match(PRICE_CHAIN, page) or "",
        url=page.url,
        image_url=first_match(IMAGE_CHAIN, page),
        description=first_match(DESCRIPTION_CHAIN, page),
    )
