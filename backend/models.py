"""Pydantic models shared across the application."""

from typing import Optional

from pydantic import BaseModel


# ── Error model ─────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


# ── Service models ──────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    timestamp: str  # ISO-8601, UTC


class CacheStats(BaseModel):
    entry_count: int
    hit_count: int
    miss_count: int
    size_bytes: int = 0


class CacheClearResponse(BaseModel):
    message: str
    removed: int


# ── Derived media models ────────────────────────────────────────

class CoverResponse(BaseModel):
    manga_id: str
    url: str
    proxy_url: Optional[str] = None  # set when the cover can go through the image proxy


class ChapterPagesResponse(BaseModel):
    chapter_id: str
    data_saver: bool
    pages: list[str]
