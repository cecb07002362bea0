"""Proxy service — per-request orchestration of translator, cache, client and transcoder.

Built explicitly (``ProxyService.from_settings`` in production, by hand in
tests) and stored on ``app.state``; routers receive it via
``get_proxy_service``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlparse

import httpx
from fastapi import Request

from config import Settings
from errors import (
    BadGateway,
    BadRequest,
    InternalError,
    MethodNotAllowed,
    ProxyError,
    UpstreamError,
)
from services.cache import ResponseCache
from services.query import READ_METHODS, ProxyRequest, resolve
from services.transcoder import ImageTranscoder
from services.upstream import UpstreamClient, UpstreamResponse

logger = logging.getLogger(__name__)


@dataclass
class ImageResult:
    content: bytes
    content_type: str
    cache_hit: bool


class ProxyService:
    def __init__(
        self,
        upstream: UpstreamClient,
        cache: ResponseCache,
        transcoder: ImageTranscoder,
        *,
        api_base_url: str,
        allowed_image_hosts: Iterable[str],
        image_host_url: str = "https://uploads.mangadex.org",
    ):
        self.upstream = upstream
        self.cache = cache
        self.transcoder = transcoder
        self.api_base_url = api_base_url.rstrip("/")
        self.image_host_url = image_host_url.rstrip("/")
        self.allowed_image_hosts = frozenset(h.lower() for h in allowed_image_hosts)
        # url -> in-flight fetch, so concurrent misses share one upstream call
        self._inflight: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProxyService":
        upstream = UpstreamClient(
            httpx.AsyncClient(),
            user_agent=settings.user_agent,
            referer=settings.site_url,
            api_timeout=settings.api_timeout_seconds,
            image_timeout=settings.image_timeout_seconds,
            max_image_bytes=settings.image_fetch_max_bytes,
        )
        cache = ResponseCache(
            ttl_seconds=settings.image_cache_ttl_seconds,
            max_entries=settings.image_cache_max_entries,
            max_entry_bytes=settings.image_max_bytes,
        )
        transcoder = ImageTranscoder(
            max_width=settings.transcode_max_width,
            max_height=settings.transcode_max_height,
            quality=settings.transcode_quality,
            enabled=settings.transcode_images,
        )
        return cls(
            upstream,
            cache,
            transcoder,
            api_base_url=settings.api_base_url,
            allowed_image_hosts=settings.allowed_image_hosts,
            image_host_url=settings.image_host_url,
        )

    async def aclose(self) -> None:
        await self.upstream.aclose()

    # ── JSON API ────────────────────────────────────────────────

    def upstream_url(self, request: ProxyRequest) -> str:
        return resolve(self.api_base_url, request)

    async def forward(self, request: ProxyRequest) -> UpstreamResponse:
        """Forward a read request to the JSON API, unchanged on success."""
        if request.method.upper() not in READ_METHODS:
            raise MethodNotAllowed(request.method)

        url = self.upstream_url(request)
        try:
            return await self.upstream.fetch_json(url, request.method)
        except UpstreamError as e:
            raise ProxyError(
                f"MangaDex API error: {e.status_code} {e.reason}".rstrip(),
                details=e.body or None,
                status_code=e.status_code,
            )
        except ProxyError:
            raise
        except Exception:
            logger.exception("Unexpected failure proxying %s", url)
            raise InternalError()

    async def fetch_json(self, request: ProxyRequest):
        """Forward and decode; a non-JSON body decodes to None."""
        return (await self.forward(request)).json()

    # ── Images ──────────────────────────────────────────────────

    def check_image_url(self, url: Optional[str]) -> str:
        if not url:
            raise BadRequest("URL parameter is required")
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if parsed.scheme not in ("http", "https") or host not in self.allowed_image_hosts:
            allowed = ", ".join(sorted(self.allowed_image_hosts))
            raise BadRequest(f"Only {allowed} images are allowed")
        return url

    def is_proxyable(self, url: str) -> bool:
        try:
            self.check_image_url(url)
        except BadRequest:
            return False
        return True

    async def fetch_image(self, url: Optional[str], method: str = "GET") -> ImageResult:
        """
        Serve an allow-listed image from cache, or fetch, transcode and cache it.

        Failed fetches are never cached.
        """
        if method.upper() not in READ_METHODS:
            raise MethodNotAllowed(method)
        url = self.check_image_url(url)

        entry = self.cache.get(url)
        if entry is not None:
            logger.debug("Image cache hit: %s", url)
            return ImageResult(entry.content, entry.content_type, cache_hit=True)

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(url))
            self._inflight[url] = task
            task.add_done_callback(lambda done: self._fetch_done(url, done))
        content, content_type = await asyncio.shield(task)
        return ImageResult(content, content_type, cache_hit=False)

    def _fetch_done(self, url: str, task: asyncio.Task) -> None:
        self._inflight.pop(url, None)
        # marks the exception retrieved even when every waiter was cancelled
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Image fetch failed for %s: %s", url, task.exception())

    async def _fetch_and_store(self, url: str) -> tuple[bytes, str]:
        try:
            resp = await self.upstream.fetch_image(url)
        except UpstreamError as e:
            if e.status_code == 404:
                raise ProxyError("Image not found", status_code=404)
            if e.status_code == 403:
                raise ProxyError("Access forbidden - possible hotlink protection", status_code=403)
            raise ProxyError("Failed to fetch image", details=f"upstream status {e.status_code}", status_code=e.status_code)
        except BadGateway as e:
            raise BadGateway("Unable to fetch image from source", details=e.details)
        except ProxyError:
            raise
        except Exception:
            logger.exception("Unexpected failure fetching image %s", url)
            raise InternalError()

        content, content_type = await asyncio.to_thread(
            self.transcoder.transcode, resp.content, resp.content_type
        )
        self.cache.set(url, content, content_type)
        logger.info("Proxied image %s (%d -> %d bytes)", url, len(resp.content), len(content))
        return content, content_type

    # ── Administration ──────────────────────────────────────────

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def clear_cache(self) -> int:
        return self.cache.clear()


def get_proxy_service(request: Request) -> ProxyService:
    return request.app.state.proxy
