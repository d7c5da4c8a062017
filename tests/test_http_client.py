"""Tests for the page fetcher."""

import httpx
import pytest

from catalog_sync.ingest.http_client import (
    USER_AGENT,
    BlockedError,
    FetchError,
    PageFetcher,
    PermanentURLError,
    RateLimitedError,
    TransientFetchError,
    default_headers,
)

URL = "https://www.marktplaats.nl/u/jan/123/"


def _fetcher(handler) -> PageFetcher:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        follow_redirects=True,
        max_redirects=5,
    )
    return PageFetcher(client=client)


@pytest.mark.asyncio
async def test_returns_body_and_sends_browser_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, text="<html>ok</html>")

    body = await _fetcher(handler).fetch(URL, kind="index")

    assert body == "<html>ok</html>"
    assert seen["user-agent"] == USER_AGENT
    assert seen["accept-language"].startswith("nl-NL")
    assert "text/html" in seen["accept"]


def test_default_headers_accept_language_override():
    headers = default_headers("en-GB")
    assert headers["Accept-Language"] == "en-GB"
    assert headers["User-Agent"] == USER_AGENT


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error_type",
    [
        (401, BlockedError),
        (403, BlockedError),
        (404, PermanentURLError),
        (410, PermanentURLError),
        (500, TransientFetchError),
        (503, TransientFetchError),
    ],
)
async def test_status_mapping(status, error_type):
    fetcher = _fetcher(lambda request: httpx.Response(status))

    with pytest.raises(error_type) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.status == status
    assert exc_info.value.url == URL
    assert isinstance(exc_info.value, FetchError)


@pytest.mark.asyncio
async def test_rate_limited_carries_retry_after():
    fetcher = _fetcher(lambda request: httpx.Response(429, headers={"Retry-After": "30"}))

    with pytest.raises(RateLimitedError) as exc_info:
        await fetcher.fetch(URL)

    assert exc_info.value.retry_after == 30


@pytest.mark.asyncio
async def test_follows_redirects():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://www.marktplaats.nl/new"})
        return httpx.Response(200, text="moved here")

    assert await _fetcher(handler).fetch("https://www.marktplaats.nl/old") == "moved here"


@pytest.mark.asyncio
async def test_redirect_loop_is_transient_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": str(request.url)})

    with pytest.raises(TransientFetchError) as exc_info:
        await _fetcher(handler).fetch(URL)

    assert exc_info.value.status is None
    assert "redirects" in exc_info.value.cause


@pytest.mark.asyncio
async def test_transport_error_is_transient_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientFetchError) as exc_info:
        await _fetcher(handler).fetch(URL)

    assert exc_info.value.cause == "ConnectError"


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    fetcher = PageFetcher(client=client)

    await fetcher.close()

    assert not client.is_closed
    await client.aclose()


@pytest.mark.asyncio
async def test_owned_client_uses_settings():
    async with PageFetcher(timeout=3.0, max_redirects=2) as fetcher:
        client = fetcher._get_client()
        assert client.max_redirects == 2
        assert client.follow_redirects is True
        assert client.timeout.connect == 3.0
    assert fetcher._client is None
