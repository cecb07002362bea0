"""MangaDex API router — read-only passthrough of manga, chapter and statistics endpoints.

Array filters arrive as repeated ``key[]=value`` pairs and are forwarded in
the same order. Bodies and status codes are returned verbatim.
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from errors import BadRequest
from models import ChapterPagesResponse, CoverResponse
from services.media_urls import COVER_SIZES, CoverContext, chapter_page_urls, resolve_cover_url
from services.proxy import ProxyService, get_proxy_service
from services.query import Multi, ProxyRequest, params_from_pairs
from services.upstream import UpstreamResponse

router = APIRouter(tags=["mangadex"])

SHORT_MAX_AGE = 300
STATISTICS_MAX_AGE = 600


def _cache_control(max_age: int) -> dict[str, str]:
    return {"Cache-Control": f"public, max-age={max_age}"}


def _forward(resp: UpstreamResponse, max_age: int = SHORT_MAX_AGE) -> Response:
    return Response(
        content=resp.content,
        status_code=resp.status_code,
        media_type=resp.content_type,
        headers=_cache_control(max_age),
    )


async def _passthrough(
    request: Request,
    proxy: ProxyService,
    path: str,
    resource_id: str | None = None,
    max_age: int = SHORT_MAX_AGE,
) -> Response:
    proxy_request = ProxyRequest(
        path=path,
        params=params_from_pairs(request.query_params.multi_items()),
        method=request.method,
        resource_id=resource_id,
    )
    return _forward(await proxy.forward(proxy_request), max_age)


@router.get("/manga")
async def list_manga(request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    return await _passthrough(request, proxy, "manga")


@router.get("/manga/{manga_id}")
async def get_manga(manga_id: str, request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    return await _passthrough(request, proxy, "manga", manga_id)


@router.get("/chapter")
async def list_chapters(request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    return await _passthrough(request, proxy, "chapter")


@router.get("/chapter/{chapter_id}")
async def get_chapter(chapter_id: str, request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    return await _passthrough(request, proxy, "chapter", chapter_id)


@router.get("/statistics/manga")
async def manga_statistics(request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    """Batch statistics, e.g. ``?manga[]=id1&manga[]=id2``."""
    return await _passthrough(request, proxy, "statistics/manga", max_age=STATISTICS_MAX_AGE)


@router.get("/at-home/server/{chapter_id}")
async def at_home_server(chapter_id: str, request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    """Page-delivery base URL and file manifest for a chapter."""
    return await _passthrough(request, proxy, "at-home/server", chapter_id)


@router.get("/mangadex/{path:path}")
async def generic_passthrough(path: str, request: Request, proxy: ProxyService = Depends(get_proxy_service)):
    """Forward any other read-only API endpoint."""
    segments = [s for s in path.split("/") if s]
    if not segments or any(s in (".", "..") for s in segments):
        raise BadRequest("Invalid API path", details=path)
    return await _passthrough(request, proxy, "/".join(segments))


# ── Derived views ───────────────────────────────────────────────

@router.get("/manga/{manga_id}/cover", response_model=CoverResponse)
async def manga_cover(
    manga_id: str,
    request: Request,
    size: int = Query(256, description="Thumbnail width: 256 or 512"),
    proxy: ProxyService = Depends(get_proxy_service),
):
    """Resolve a displayable cover URL, falling back to placeholders."""
    if size not in COVER_SIZES:
        raise BadRequest(f"size must be one of {', '.join(map(str, COVER_SIZES))}")

    payload = await proxy.fetch_json(ProxyRequest(
        path="manga",
        params={"includes[]": Multi(("cover_art",))},
        resource_id=manga_id,
    ))
    manga = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(manga, dict):
        manga = {"id": manga_id}
    manga.setdefault("id", manga_id)

    ctx = CoverContext(proxy.image_host_url, size)
    url = resolve_cover_url(manga, ctx)
    proxy_url = None
    if proxy.is_proxyable(url):
        proxy_url = str(request.url_for("proxy_image").include_query_params(url=url))

    return Response(
        content=CoverResponse(manga_id=manga_id, url=url, proxy_url=proxy_url).model_dump_json(),
        media_type="application/json",
        headers=_cache_control(SHORT_MAX_AGE),
    )


@router.get("/chapter/{chapter_id}/pages", response_model=ChapterPagesResponse)
async def chapter_pages(
    chapter_id: str,
    data_saver: bool = Query(True, alias="dataSaver"),
    proxy: ProxyService = Depends(get_proxy_service),
):
    """Full page image URLs for a chapter, via the at-home server."""
    payload = await proxy.fetch_json(ProxyRequest(path="at-home/server", resource_id=chapter_id))
    body = ChapterPagesResponse(
        chapter_id=chapter_id,
        data_saver=data_saver,
        pages=chapter_page_urls(payload, data_saver),
    )
    return Response(
        content=body.model_dump_json(),
        media_type="application/json",
        headers=_cache_control(SHORT_MAX_AGE),
    )
