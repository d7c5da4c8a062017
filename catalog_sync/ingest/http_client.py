"""HTTP fetcher with browser-like headers and status-aware errors."""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from catalog_sync import metrics
from catalog_sync.config import settings

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Transport errors that count as transient failures
TRANSPORT_EXC = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.ProtocolError,
    httpx.ProxyError,
    httpx.UnsupportedProtocol,
)


class FetchError(RuntimeError):
    """Raised when a page could not be fetched."""

    def __init__(self, url: str, status: Optional[int] = None, cause: str = ""):
        self.url = url
        self.status = status
        self.cause = cause
        detail = f"HTTP {status}" if status is not None else cause
        super().__init__(f"Failed to fetch {url}: {detail}")


class BlockedError(FetchError):
    """Raised when access is blocked (401/403)."""


class PermanentURLError(FetchError):
    """Raised when the URL is gone (404/410)."""


class RateLimitedError(FetchError):
    """Raised when rate limited (429)."""

    def __init__(self, url: str, retry_after: Optional[int] = None):
        super().__init__(url, status=429, cause="rate limited")
        self.retry_after = retry_after


class TransientFetchError(FetchError):
    """Raised on 5xx, unexpected statuses, timeouts and transport errors."""


def default_headers(accept_language: Optional[str] = None) -> dict[str, str]:
    """Get browser-like headers; the site degrades responses to bare clients."""
    return {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": accept_language or settings.accept_language,
        "Cache-Control": "no-cache",
    }


def _error_for_status(url: str, response: httpx.Response) -> FetchError:
    sc = response.status_code
    if sc in (401, 403):
        return BlockedError(url, status=sc)
    if sc in (404, 410):
        return PermanentURLError(url, status=sc)
    if sc == 429:
        retry_after = response.headers.get("Retry-After")
        try:
            return RateLimitedError(url, retry_after=int(retry_after) if retry_after else None)
        except (ValueError, TypeError):
            return RateLimitedError(url)
    return TransientFetchError(url, status=sc)


class PageFetcher:
    """
    Fetches raw page bodies over a shared httpx client.

    No retries happen here; a failed fetch raises FetchError and the caller
    decides whether the page matters.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        """
        Initialize fetcher.

        Args:
            client: Pre-built client (tests pass one with a mock transport)
            timeout: Request timeout in seconds (defaults to settings)
            max_redirects: Redirect cap (defaults to settings)
            headers: Headers overriding the browser defaults
        """
        self.timeout = timeout or settings.fetch_timeout_seconds
        self.max_redirects = max_redirects or settings.max_redirects
        self.headers = default_headers()
        if headers:
            self.headers.update(headers)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                headers=self.headers,
            )
        return self._client

    async def close(self):
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def fetch(self, url: str, kind: str = "listing") -> str:
        """
        GET a page and return its body text.

        Args:
            url: Absolute URL
            kind: Metrics label ("index" or "listing")

        Returns:
            Response body

        Raises:
            FetchError: On non-2xx status, redirect overflow or transport error
        """
        client = self._get_client()
        started = time.monotonic()
        try:
            response = await client.get(url, headers=self.headers)
        except httpx.TooManyRedirects as e:
            metrics.record_fetch(kind, False, time.monotonic() - started)
            raise TransientFetchError(url, cause=f"more than {self.max_redirects} redirects") from e
        except TRANSPORT_EXC as e:
            metrics.record_fetch(kind, False, time.monotonic() - started)
            logger.warning(f"Transport error fetching {url}: {type(e).__name__}")
            raise TransientFetchError(url, cause=type(e).__name__) from e

        duration = time.monotonic() - started
        if not 200 <= response.status_code < 300:
            metrics.record_fetch(kind, False, duration)
            logger.info(f"Failed to fetch {kind} page {url}: HTTP {response.status_code}")
            raise _error_for_status(url, response)

        metrics.record_fetch(kind, True, duration)
        logger.debug(f"Fetched {kind} page {url} ({len(response.text)} chars, {duration:.2f}s)")
        return response.text
