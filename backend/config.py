"""Application configuration via environment variables."""

from urllib.parse import urlparse

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Upstream
    api_base_url: str = "https://api.mangadex.org"
    image_host_url: str = "https://uploads.mangadex.org"
    extra_image_hosts: str = ""  # comma-separated hostnames, e.g. "uploads.mangadx.org"
    site_url: str = "https://mangadex.org/"  # sent as Referer to the image host
    user_agent: str = "OtakuShelf/1.0.0"
    api_timeout_seconds: float = 15.0
    image_timeout_seconds: float = 30.0

    # Image cache
    image_cache_ttl_seconds: int = 24 * 60 * 60
    image_cache_max_entries: int = 1000
    image_max_bytes: int = 10 * 1024 * 1024
    image_fetch_max_bytes: int = 25 * 1024 * 1024  # larger bodies are abandoned with 413

    # Transcoding
    transcode_images: bool = True
    transcode_max_width: int = 500
    transcode_max_height: int = 750
    transcode_quality: int = 85  # 1 (worst) to 95 (best) for Pillow JPEG

    # Server
    frontend_url: str = "*"  # allowed CORS origin
    api_prefix: str = "/api"
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "info"

    model_config = {"env_prefix": "", "env_file": ".env"}

    @property
    def allowed_image_hosts(self) -> frozenset[str]:
        hosts = {h.strip().lower() for h in self.extra_image_hosts.split(",") if h.strip()}
        primary = urlparse(self.image_host_url).hostname
        if primary:
            hosts.add(primary.lower())
        return frozenset(hosts)


settings = Settings()
