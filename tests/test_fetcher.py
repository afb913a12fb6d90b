# File: tests/test_fetcher.py
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import web

from searchcrawler.crawler.fetcher import WebFetcher


async def _serve_app(app: web.Application) -> AsyncIterator[str]:
    """Start *app* on a free port, yield its base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        await runner.cleanup()


async def page(request: web.Request) -> web.Response:
    assert request.headers["User-Agent"] == "TestAgent/1.0"
    return web.Response(text="0123456789" * 10, content_type="text/html")


async def redirect(request: web.Request) -> web.Response:
    raise web.HTTPFound("/page")


async def robots_redirect(request: web.Request) -> web.Response:
    raise web.HTTPFound("/real-robots.txt")


async def real_robots(request: web.Request) -> web.Response:
    return web.Response(text="User-agent: *\nDisallow: /private\n")


async def missing(request: web.Request) -> web.Response:
    return web.Response(status=404, text="not here")


async def unavailable(request: web.Request) -> web.Response:
    return web.Response(status=503, text="busy", headers={"Retry-After": "120"})


@pytest_asyncio.fixture
async def base_url() -> AsyncIterator[str]:
    app = web.Application()
    app.router.add_get("/page", page)
    app.router.add_get("/redirect", redirect)
    app.router.add_get("/robots.txt", robots_redirect)
    app.router.add_get("/real-robots.txt", real_robots)
    app.router.add_get("/missing", missing)
    app.router.add_get("/unavailable", unavailable)
    async for url in _serve_app(app):
        yield url


@pytest_asyncio.fixture
async def fetcher() -> AsyncIterator[WebFetcher]:
    async with WebFetcher(user_agent="TestAgent/1.0", request_timeout=5) as fetcher:
        yield fetcher


@pytest.mark.asyncio
async def test_fetch_page(base_url, fetcher):
    result = await fetcher.fetch(f"{base_url}/page")

    assert result.error is None
    assert result.status_code == 200
    assert len(result.body) == 100
    assert result.encoding == "utf-8"
    assert result.headers["Content-Type"].startswith("text/html")


@pytest.mark.asyncio
async def test_fetch_truncates_body(base_url, fetcher):
    result = await fetcher.fetch(f"{base_url}/page", max_bytes=15)
    assert result.body == b"012345678901234"


@pytest.mark.asyncio
async def test_fetch_does_not_follow_redirects(base_url, fetcher):
    result = await fetcher.fetch(f"{base_url}/redirect")

    assert result.status_code == 302
    assert result.body == b""


@pytest.mark.asyncio
async def test_fetch_robots_follows_redirects(base_url, fetcher):
    result = await fetcher.fetch_robots(f"{base_url}/robots.txt")

    assert result.status_code == 200
    assert b"Disallow: /private" in result.body


@pytest.mark.asyncio
async def test_error_status_has_no_body(base_url, fetcher):
    result = await fetcher.fetch(f"{base_url}/missing")
    assert result.status_code == 404
    assert result.body == b""

    result = await fetcher.fetch(f"{base_url}/unavailable")
    assert result.status_code == 503
    assert result.headers["Retry-After"] == "120"


@pytest.mark.asyncio
async def test_transport_error(fetcher):
    app = web.Application()
    gen = _serve_app(app)
    url = await gen.__anext__()
    await gen.aclose()

    result = await fetcher.fetch(f"{url}/page")
    assert result.status_code == 0
    assert result.error.startswith(f"{url}/page: ")
