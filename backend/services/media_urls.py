"""Cover and chapter-page URL resolution from upstream payloads.

Payloads are read defensively: missing or reshaped fields fall through to
the next strategy or an empty result instead of raising.
"""

import base64
from typing import Callable, Optional, Sequence
from urllib.parse import quote

PLACEHOLDER_URL = "https://placehold.co/256x384/2a2a4e/c77dff/png?text={text}"
COVER_SIZES = (256, 512)

_INLINE_SVG = (
    '<svg width="256" height="384" viewBox="0 0 256 384" fill="none" '
    'xmlns="http://www.w3.org/2000/svg">'
    '<rect width="256" height="384" fill="#2a2a4e"/>'
    '<text x="50%" y="50%" dominant-baseline="middle" text-anchor="middle" '
    'fill="#c77dff" font-family="Arial, sans-serif" font-size="14">No Cover</text>'
    "</svg>"
)
INLINE_COVER = "data:image/svg+xml;base64," + base64.b64encode(_INLINE_SVG.encode()).decode()

# (manga payload, context) -> url or None
CoverStrategy = Callable[[dict, "CoverContext"], Optional[str]]


class CoverContext:
    def __init__(self, image_host_url: str, size: int = 256):
        self.image_host_url = image_host_url.rstrip("/")
        self.size = size


def manga_title(manga: dict) -> str:
    """English title, else the first localized title, else 'Untitled'."""
    attributes = (manga or {}).get("attributes") or {}
    titles = attributes.get("title") if isinstance(attributes, dict) else None
    if not isinstance(titles, dict):
        return "Untitled"
    if isinstance(titles.get("en"), str) and titles["en"]:
        return titles["en"]
    for value in titles.values():
        if isinstance(value, str) and value:
            return value
    return "Untitled"


def cover_from_relationship(manga: dict, ctx: CoverContext) -> Optional[str]:
    manga_id = manga.get("id")
    relationships = manga.get("relationships")
    if not isinstance(manga_id, str) or not isinstance(relationships, list):
        return None
    for rel in relationships:
        if not isinstance(rel, dict) or rel.get("type") != "cover_art":
            continue
        attributes = rel.get("attributes")
        file_name = attributes.get("fileName") if isinstance(attributes, dict) else None
        if isinstance(file_name, str) and file_name:
            return f"{ctx.image_host_url}/covers/{manga_id}/{file_name}.{ctx.size}.jpg"
    return None


def cover_from_placeholder(manga: dict, ctx: CoverContext) -> Optional[str]:
    title = manga_title(manga)
    if title == "Untitled":
        return None
    return PLACEHOLDER_URL.format(text=quote(title[:20], safe=""))


def cover_inline(manga: dict, ctx: CoverContext) -> Optional[str]:
    return INLINE_COVER


DEFAULT_COVER_STRATEGIES: tuple[CoverStrategy, ...] = (
    cover_from_relationship,
    cover_from_placeholder,
    cover_inline,
)


def resolve_cover_url(
    manga: dict,
    ctx: CoverContext,
    strategies: Sequence[CoverStrategy] = DEFAULT_COVER_STRATEGIES,
) -> Optional[str]:
    """Try each strategy in order; the first non-empty URL wins."""
    if not isinstance(manga, dict):
        manga = {}
    for strategy in strategies:
        url = strategy(manga, ctx)
        if url:
            return url
    return None


def chapter_page_urls(at_home: dict, data_saver: bool = True) -> list[str]:
    """Build page image URLs from an at-home server response."""
    if not isinstance(at_home, dict):
        return []
    base_url = at_home.get("baseUrl")
    chapter = at_home.get("chapter")
    if not isinstance(base_url, str) or not base_url or not isinstance(chapter, dict):
        return []
    chapter_hash = chapter.get("hash")
    files = chapter.get("dataSaver" if data_saver else "data")
    if not isinstance(chapter_hash, str) or not chapter_hash or not isinstance(files, list):
        return []

    quality = "data-saver" if data_saver else "data"
    return [
        f"{base_url.rstrip('/')}/{quality}/{chapter_hash}/{name}"
        for name in files
        if isinstance(name, str) and name
    ]
