"""Image proxy tests — allow-list, caching, transcoding and error mapping."""

import asyncio
import logging
from io import BytesIO

import httpx
import pytest
from PIL import Image

from config import Settings
from conftest import make_image
from main import create_app
from services.cache import ResponseCache
from services.proxy import ProxyService
from services.transcoder import ImageTranscoder
from services.upstream import UpstreamClient

COVER_PATH = "/covers/abc/cover.jpg"
COVER_URL = f"https://uploads.mangadex.org{COVER_PATH}"


@pytest.mark.asyncio
async def test_foreign_host_rejected_without_fetch(upstream, client_factory):
    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": "https://evil.example.com/x.jpg"})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Only uploads.mangadex.org images are allowed"}
    assert upstream.calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("url", [
    "https://uploads.mangadex.org@evil.example.com/x.jpg",
    "ftp://uploads.mangadex.org/x.jpg",
    "https://uploads.mangadex.org.evil.example.com/x.jpg",
])
async def test_lookalike_urls_rejected(upstream, client_factory, url):
    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": url})

    assert resp.status_code == 400
    assert upstream.calls == 0


@pytest.mark.asyncio
async def test_missing_url_is_bad_request(upstream, client_factory):
    async with client_factory() as client:
        resp = await client.get("/api/image-proxy")

    assert resp.status_code == 400
    assert resp.json() == {"error": "URL parameter is required"}
    assert upstream.calls == 0


@pytest.mark.asyncio
async def test_image_fetched_transcoded_and_cached(upstream, client_factory):
    upstream.on(COVER_PATH, content=make_image((1000, 1500)), headers={"content-type": "image/png"})

    async with client_factory() as client:
        first = await client.get("/api/image-proxy", params={"url": COVER_URL})
        second = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert first.status_code == 200
    assert first.headers["content-type"] == "image/jpeg"
    assert first.headers["cache-control"] == "public, max-age=86400"
    assert first.headers["x-cache"] == "MISS"
    assert Image.open(BytesIO(first.content)).size == (500, 750)

    assert second.headers["x-cache"] == "HIT"
    assert second.headers["content-type"] == first.headers["content-type"]
    assert len(second.content) == len(first.content)
    assert upstream.calls == 1
    assert upstream.requests[0].headers["referer"] == "https://mangadex.org/"


@pytest.mark.asyncio
async def test_cached_image_refetched_after_ttl(upstream, client_factory, clock):
    upstream.on(COVER_PATH, content=make_image((100, 100)), headers={"content-type": "image/png"})

    async with client_factory() as client:
        await client.get("/api/image-proxy", params={"url": COVER_URL})
        clock.advance(86400 - 1)
        await client.get("/api/image-proxy", params={"url": COVER_URL})
        assert upstream.calls == 1

        clock.advance(2)
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.headers["x-cache"] == "MISS"
    assert upstream.calls == 2


@pytest.mark.asyncio
async def test_upstream_404_maps_to_not_found_and_is_not_cached(upstream, client_factory, service):
    upstream.on(COVER_PATH, status=404, content=b"missing")

    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})
        await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 404
    assert resp.json() == {"error": "Image not found"}
    assert upstream.calls == 2
    assert service.cache_stats()["entry_count"] == 0


@pytest.mark.asyncio
async def test_upstream_403_reports_hotlink_protection(upstream, client_factory):
    upstream.on(COVER_PATH, status=403)

    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 403
    assert "hotlink" in resp.json()["error"]


@pytest.mark.asyncio
async def test_other_upstream_status_passed_through(upstream, client_factory):
    upstream.on(COVER_PATH, status=500)

    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 500
    assert resp.json()["error"] == "Failed to fetch image"


@pytest.mark.asyncio
async def test_network_failure_is_bad_gateway(upstream, client_factory):
    upstream.fail(COVER_PATH, lambda request: httpx.ConnectError("dns failure", request=request))

    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 502
    assert resp.json()["error"] == "Unable to fetch image from source"
    assert resp.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_unexpected_failure_is_generic_internal_error(upstream, client_factory):
    upstream.fail(COVER_PATH, lambda request: RuntimeError("boom"))

    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


@pytest.mark.asyncio
async def test_undecodable_image_forwarded_unchanged(upstream, client_factory):
    upstream.on(COVER_PATH, content=b"RIFF....WEBPjunk", headers={"content-type": "image/webp"})

    async with client_factory() as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/webp"
    assert resp.content == b"RIFF....WEBPjunk"


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch(upstream, service):
    upstream.on(COVER_PATH, content=make_image((50, 50)), headers={"content-type": "image/png"})

    first, second = await asyncio.gather(
        service.fetch_image(COVER_URL),
        service.fetch_image(COVER_URL),
    )

    assert upstream.calls == 1
    assert first.content == second.content


@pytest.mark.asyncio
async def test_write_method_rejected(upstream, client_factory):
    async with client_factory() as client:
        resp = await client.delete("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 405
    assert resp.json() == {"error": "Method not allowed"}
    assert upstream.calls == 0


def test_extra_image_hosts_are_allow_listed():
    settings = Settings(image_host_url="https://uploads.mangadex.org", extra_image_hosts="uploads.mangadx.org, ")

    assert settings.allowed_image_hosts == {"uploads.mangadex.org", "uploads.mangadx.org"}


@pytest.mark.asyncio
async def test_failed_fetch_settles_after_waiter_cancelled(upstream, service, caplog):
    upstream.fail(COVER_PATH, lambda request: httpx.ConnectError("dns failure", request=request))
    caplog.set_level(logging.DEBUG, logger="services.proxy")

    waiter = asyncio.ensure_future(service.fetch_image(COVER_URL))
    await asyncio.sleep(0)
    task = service._inflight[COVER_URL]
    waiter.cancel()
    await asyncio.wait([task])

    assert waiter.cancelled()
    assert COVER_URL not in service._inflight
    assert "Image fetch failed" in caplog.text

    upstream.on(COVER_PATH, content=make_image((50, 50)), headers={"content-type": "image/png"})
    result = await service.fetch_image(COVER_URL)
    assert result.cache_hit is False
    assert upstream.calls == 2


@pytest.mark.asyncio
async def test_oversized_image_rejected_and_not_cached(upstream):
    upstream.on(COVER_PATH, content=b"x" * 4096, headers={"content-type": "image/jpeg"})
    transport = httpx.MockTransport(upstream.handler)
    service = ProxyService(
        UpstreamClient(httpx.AsyncClient(transport=transport), max_image_bytes=1024),
        ResponseCache(),
        ImageTranscoder(),
        api_base_url="https://api.mangadex.org",
        allowed_image_hosts={"uploads.mangadex.org"},
    )
    app = create_app(Settings(frontend_url="*", api_prefix="/api"), service)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        resp = await client.get("/api/image-proxy", params={"url": COVER_URL})

    assert resp.status_code == 413
    assert resp.json()["error"] == "Image too large"
    assert len(service.cache) == 0
