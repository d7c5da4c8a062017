"""Discover listing URLs on a profile/index page.

The profile page is rendered through more than one template (server-side
list items, embedded JSON state), so every pass runs over the raw text and
the results are merged into one ordered, de-duplicated list.
"""

import logging
import re
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit

from catalog_sync.config import settings
from catalog_sync.normalize.processor import canonicalize_url

logger = logging.getLogger(__name__)


class ListingURLExtractor:
    """Extract listing URLs for one site (origin + listing path prefix)."""

    def __init__(self, base_url: Optional[str] = None, path_prefix: Optional[str] = None):
        self.base_url = (base_url or settings.site_base_url).rstrip("/")
        self.path_prefix = path_prefix or settings.listing_path_prefix

        host = urlsplit(self.base_url).netloc
        if host.startswith("www."):
            host = host[4:]
        prefix = re.escape(self.path_prefix)
        absolute = rf"https?://(?:www\.)?{re.escape(host)}{prefix}"

        self._relative_href = re.compile(rf'href="({prefix}[^"]+)"', re.IGNORECASE)
        self._absolute_href = re.compile(rf'href="({absolute}[^"]+)"', re.IGNORECASE)
        self._embedded_url = re.compile(
            rf"""(?:url|href|link)['":\s]*["']?({absolute}[^"'\s,}}]+)""",
            re.IGNORECASE,
        )
        self._path_literal = re.compile(
            rf"""["']({prefix}[a-z0-9-]+/[a-z0-9-]+/m\d+-[^"']+)["']""",
            re.IGNORECASE,
        )

        # Ordered passes; each yields raw (possibly relative) URLs
        self.passes: tuple[tuple[str, Callable[[str], Iterable[str]]], ...] = (
            ("relative_href", self._relative_links),
            ("absolute_href", self._absolute_links),
            ("embedded_url", self._embedded_urls),
            ("path_literal", self._path_literals),
        )

    def _absolutize(self, path_or_url: str) -> str:
        if path_or_url.startswith("/"):
            return f"{self.base_url}{path_or_url}"
        return path_or_url

    def _relative_links(self, html: str) -> Iterable[str]:
        return self._relative_href.findall(html)

    def _absolute_links(self, html: str) -> Iterable[str]:
        return self._absolute_href.findall(html)

    def _embedded_urls(self, html: str) -> Iterable[str]:
        for text in (html, _unescape_json_slashes(html)):
            yield from self._embedded_url.findall(text)

    def _path_literals(self, html: str) -> Iterable[str]:
        for text in (html, _unescape_json_slashes(html)):
            yield from self._path_literal.findall(text)

    def extract(self, html: str) -> list[str]:
        """
        Run every pass and merge the results.

        Args:
            html: Raw index page body

        Returns:
            Absolute, canonical listing URLs in first-seen order
        """
        seen: set[str] = set()
        urls: list[str] = []

        for name, extract_pass in self.passes:
            found = 0
            for raw in extract_pass(html):
                url = canonicalize_url(self._absolutize(raw))
                if url in seen:
                    continue
                seen.add(url)
                urls.append(url)
                found += 1
            logger.debug(f"URL pass {name} added {found} listing URLs")

        return urls


def _unescape_json_slashes(text: str) -> str:
    if "\\/" not in text and "\\u002F" not in text and "\\u002f" not in text:
        return text
    return text.replace("\\/", "/").replace("\\u002F", "/").replace("\\u002f", "/")


def extract_listing_urls(
    html: str,
    base_url: Optional[str] = None,
    path_prefix: Optional[str] = None,
) -> list[str]:
    """Extract listing URLs from an index page (see ListingURLExtractor)."""
    return ListingURLExtractor(base_url, path_prefix).extract(html)
