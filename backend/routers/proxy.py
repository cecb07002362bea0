"""Image proxy router — serves image-host pictures to the browser.

The image host enforces hotlink protection, so pictures are fetched
server-side with the site's Referer. Only allow-listed hosts are proxied;
anything else is rejected before a request leaves the server.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from services.proxy import ProxyService, get_proxy_service

router = APIRouter(tags=["proxy"])

IMAGE_MAX_AGE = 86400


@router.get("/image-proxy")
async def proxy_image(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute image URL on the image host"),
    proxy: ProxyService = Depends(get_proxy_service),
):
    """Proxy an image request, re-encoded and cached for 24 hours."""
    result = await proxy.fetch_image(url, request.method)
    return Response(
        content=result.content,
        media_type=result.content_type,
        headers={
            "Cache-Control": f"public, max-age={IMAGE_MAX_AGE}",
            "X-Cache": "HIT" if result.cache_hit else "MISS",
        },
    )
