"""
Shared fixtures.

The upstream API and image host are replaced by ``FakeUpstream``, an
``httpx.MockTransport`` handler that records every request it receives so
tests can assert how many upstream calls were made.
"""

from io import BytesIO
from typing import Callable, Optional

import httpx
import pytest
from PIL import Image

from config import Settings
from main import create_app
from services.cache import ResponseCache
from services.proxy import ProxyService
from services.transcoder import ImageTranscoder
from services.upstream import UpstreamClient

API_BASE = "https://api.mangadex.org"
IMAGE_HOST = "https://uploads.mangadex.org"


class FakeUpstream:
    """Answers by URL path; unknown paths get an empty JSON collection."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, path: str, status: int = 200, json=None, content: Optional[bytes] = None, headers=None):
        def respond(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status, json=json, headers=headers)
            return httpx.Response(status, content=content or b"", headers=headers)

        self._routes[path] = respond

    def stream(self, path: str, chunks, headers=None):
        """Answer with a chunked body drawn lazily from ``chunks``."""
        def respond(request: httpx.Request) -> httpx.Response:
            async def body():
                for chunk in chunks:
                    yield chunk

            return httpx.Response(200, content=body(), headers=headers)

        self._routes[path] = respond

    def fail(self, path: str, exc_factory: Callable[[httpx.Request], Exception]):
        def respond(request: httpx.Request) -> httpx.Response:
            raise exc_factory(request)

        self._routes[path] = respond

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        respond = self._routes.get(request.url.path)
        if respond is None:
            return httpx.Response(200, json={"result": "ok", "data": []})
        return respond(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_image(size=(1000, 1500), fmt="PNG", mode="RGB", color=(200, 30, 60)) -> bytes:
    if mode == "RGBA":
        color = color + (128,)
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream_client(upstream):
    return UpstreamClient(httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)))


@pytest.fixture
def service(upstream_client, clock):
    return ProxyService(
        upstream_client,
        ResponseCache(ttl_seconds=86400, clock=clock),
        ImageTranscoder(),
        api_base_url=API_BASE,
        allowed_image_hosts={"uploads.mangadex.org"},
        image_host_url=IMAGE_HOST,
    )


@pytest.fixture
def app(service):
    return create_app(Settings(frontend_url="*", api_prefix="/api"), service)


@pytest.fixture
def client_factory(app):
    """Build an in-process client; use as ``async with client_factory() as client``."""
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    return factory
