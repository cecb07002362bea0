"""Upstream client — single read-only fetches against the API and image host."""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from errors import (
    BadGateway,
    MethodNotAllowed,
    PayloadTooLarge,
    UpstreamClientError,
    UpstreamServerError,
    UpstreamTimeout,
)
from services.query import READ_METHODS

logger = logging.getLogger(__name__)

# Upstream error bodies are echoed to the client for diagnostics
_MAX_ERROR_BODY = 2048

IMAGE_ACCEPT = "image/webp,image/apng,image/*,*/*;q=0.8"


@dataclass
class UpstreamResponse:
    status_code: int
    content_type: str
    content: bytes

    def json(self) -> Any:
        """Decoded JSON body, or None when the body is not JSON."""
        try:
            return json.loads(self.content)
        except ValueError:
            return None


class UpstreamClient:
    """
    Thin wrapper over a shared ``httpx.AsyncClient``.

    Issues exactly one request per call, never retries. Non-2xx answers are
    raised as ``UpstreamClientError``/``UpstreamServerError`` carrying the
    upstream status; transport failures become ``BadGateway``.
    Image bodies are streamed and abandoned with ``PayloadTooLarge`` once
    they pass ``max_image_bytes``.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        user_agent: str = "OtakuShelf/1.0.0",
        referer: str = "https://mangadex.org/",
        api_timeout: float = 15.0,
        image_timeout: float = 30.0,
        max_image_bytes: Optional[int] = 25 * 1024 * 1024,
    ):
        self._client = http_client or httpx.AsyncClient()
        self.user_agent = user_agent
        self.referer = referer
        self.api_timeout = api_timeout
        self.image_timeout = image_timeout
        self.max_image_bytes = max_image_bytes

    def json_headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def image_headers(self) -> dict[str, str]:
        # The image host rejects hotlinks without a Referer from the site
        return {
            "User-Agent": self.user_agent,
            "Referer": self.referer,
            "Accept": IMAGE_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
        }

    async def fetch_json(self, url: str, method: str = "GET") -> UpstreamResponse:
        return await self._fetch(url, method, self.json_headers(), self.api_timeout, "application/json")

    async def fetch_image(self, url: str, method: str = "GET") -> UpstreamResponse:
        return await self._fetch(
            url, method, self.image_headers(), self.image_timeout, "image/jpeg", self.max_image_bytes
        )

    async def _fetch(
        self,
        url: str,
        method: str,
        headers: dict[str, str],
        timeout: float,
        default_type: str,
        max_bytes: Optional[int] = None,
    ) -> UpstreamResponse:
        method = method.upper()
        if method not in READ_METHODS:
            raise MethodNotAllowed(method)

        logger.info("Upstream %s %s", method, url)
        try:
            async with self._client.stream(method, url, headers=headers, timeout=timeout) as resp:
                if not resp.is_success:
                    await resp.aread()
                    body = resp.text[:_MAX_ERROR_BODY]
                    logger.warning("Upstream %d %s for %s", resp.status_code, resp.reason_phrase, url)
                    error_cls = UpstreamServerError if resp.status_code >= 500 else UpstreamClientError
                    raise error_cls(resp.status_code, resp.reason_phrase, body)

                content = await self._read_limited(resp, url, max_bytes)
                return UpstreamResponse(
                    status_code=resp.status_code,
                    content_type=resp.headers.get("content-type", default_type),
                    content=content,
                )
        except httpx.TimeoutException as e:
            logger.error("Upstream timeout after %.1fs: %s", timeout, url)
            raise UpstreamTimeout("Upstream request timed out", details=str(e) or None)
        except httpx.HTTPError as e:
            logger.error("Upstream unreachable: %s (%s)", url, e)
            raise BadGateway("Unable to reach upstream", details=str(e) or None)

    @staticmethod
    async def _read_limited(resp: httpx.Response, url: str, max_bytes: Optional[int]) -> bytes:
        if max_bytes is None:
            return await resp.aread()

        declared = resp.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > max_bytes:
            logger.warning("Upstream body too large (%s bytes declared): %s", declared, url)
            raise PayloadTooLarge("Image too large", details=f"limit is {max_bytes} bytes")

        chunks: list[bytes] = []
        size = 0
        async for chunk in resp.aiter_bytes():
            size += len(chunk)
            if size > max_bytes:
                logger.warning("Upstream body exceeded %d bytes: %s", max_bytes, url)
                raise PayloadTooLarge("Image too large", details=f"limit is {max_bytes} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    async def aclose(self) -> None:
        await self._client.aclose()
