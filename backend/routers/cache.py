"""Cache router — image cache introspection and flushing."""

from fastapi import APIRouter, Depends

from models import CacheClearResponse, CacheStats
from services.proxy import ProxyService, get_proxy_service

router = APIRouter(tags=["cache"])


@router.get("/cache-stats", response_model=CacheStats)
async def cache_stats(proxy: ProxyService = Depends(get_proxy_service)):
    return CacheStats(**proxy.cache_stats())


@router.post("/cache-clear", response_model=CacheClearResponse)
async def cache_clear(proxy: ProxyService = Depends(get_proxy_service)):
    removed = proxy.clear_cache()
    return CacheClearResponse(message="Cache cleared successfully", removed=removed)
