"""Test helpers: page builders, mock-transport fetcher, in-memory run lock."""

import asyncio
from typing import Optional
from uuid import uuid4

import httpx

from catalog_sync.ingest.http_client import PageFetcher

BASE = "https://www.marktplaats.nl"


def listing_html(
    title: Optional[str] = None,
    price_amount: Optional[str] = None,
    price_cents: Optional[int] = None,
    image: Optional[str] = None,
    description: Optional[str] = None,
    document_title: Optional[str] = None,
) -> str:
    """Build a listing page carrying only the encodings asked for."""
    head = []
    if title is not None:
        head.append(f'<meta property="og:title" content="{title}">')
    if price_amount is not None:
        head.append(f'<meta property="product:price:amount" content="{price_amount}">')
    if image is not None:
        head.append(f'<meta property="og:image" content="{image}">')
    if description is not None:
        head.append(f'<meta property="og:description" content="{description}">')
    if document_title is not None:
        head.append(f"<title>{document_title}</title>")

    body = ""
    if price_cents is not None:
        body = f'<script>window.__STATE__ = {{"listing": {{"priceCents": {price_cents}}}}};</script>'

    return f"<html><head>{''.join(head)}</head><body>{body}</body></html>"


def profile_html(*paths: str) -> str:
    """Profile page linking to the given listing paths."""
    links = "".join(f'<li><a href="{path}">listing</a></li>' for path in paths)
    return f"<html><body><ul>{links}</ul></body></html>"


def mock_fetcher(pages: dict, delay_urls: Optional[dict] = None) -> PageFetcher:
    """
    PageFetcher over httpx.MockTransport.

    ``pages`` maps absolute URL to a body (200) or to ``(status, body)``.
    Unknown URLs answer 404. ``delay_urls`` maps URL to seconds to stall.
    """
    async def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if delay_urls and url in delay_urls:
            await asyncio.sleep(delay_urls[url])
        page = pages.get(url)
        if page is None:
            return httpx.Response(404, text="not found")
        if isinstance(page, tuple):
            status, body = page
            return httpx.Response(status, text=body)
        return httpx.Response(200, text=page)

    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        follow_redirects=True,
        max_redirects=5,
    )
    return PageFetcher(client=client)


class FakeLockManager:
    """In-memory stand-in for SyncLockManager."""

    def __init__(self):
        self.holder: Optional[tuple[str, str]] = None
        self.released: list[str] = []
        self.closed = False

    async def acquire_lock(self, run_id: str, ttl_seconds: Optional[int] = None) -> Optional[str]:
        if self.holder is not None:
            return None
        token = uuid4().hex
        self.holder = (run_id, token)
        return token

    async def wait_for_lock(self, run_id, wait_seconds, ttl_seconds=None, poll_interval=0.5):
        return await self.acquire_lock(run_id, ttl_seconds)

    async def safe_unlock(self, run_id: str, token: Optional[str] = None) -> bool:
        if self.holder == (run_id, token):
            self.holder = None
            self.released.append(run_id)
            return True
        return self.holder is None

    async def refresh_lock(self, run_id, token, ttl_seconds=None) -> bool:
        return self.holder == (run_id, token)

    async def get_lock_info(self):
        if self.holder is None:
            return None
        return {"run_id": self.holder[0], "token": self.holder[1]}

    async def close(self):
        self.closed = True


