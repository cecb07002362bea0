"""OtakuShelf proxy — FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings as default_settings
from errors import ProxyError
from models import HealthResponse
from routers import cache, mangadex, proxy
from services.proxy import ProxyService

logger = logging.getLogger(__name__)

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"


def _cors_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
    }


def _error(status_code: int, message: str, details: Optional[str] = None, headers=None) -> JSONResponse:
    body = {"error": message}
    if details:
        body["details"] = details
    return JSONResponse(body, status_code=status_code, headers=headers)


def create_app(settings: Settings = default_settings, service: Optional[ProxyService] = None) -> FastAPI:
    """Build the application; tests pass a ``service`` wired to fake upstreams."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        owned = None
        if getattr(app.state, "proxy", None) is None:
            owned = app.state.proxy = ProxyService.from_settings(settings)
        logger.info("Proxying %s and images from %s", settings.api_base_url, settings.image_host_url)
        yield
        # Shutdown
        if owned is not None:
            await owned.aclose()
            app.state.proxy = None

    app = FastAPI(
        title="OtakuShelf Proxy",
        description="CORS and hotlink-bypassing proxy for the MangaDex API and image host",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.proxy = service

    # ── Error mapping ───────────────────────────────────────────

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        return JSONResponse(exc.to_body(), status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
        return _error(exc.status_code, message, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        )
        return _error(400, "Invalid request parameters", details)

    # ── CORS ────────────────────────────────────────────────────

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Registered last so it is the outermost layer: every OPTIONS, preflight or
    # not, is answered here with 200 and no body
    @app.middleware("http")
    async def preflight_and_cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled error on %s %s", request.method, request.url.path)
                response = _error(500, "Internal server error")
        for key, value in _cors_headers(settings.frontend_url).items():
            response.headers.setdefault(key, value)
        return response

    app.include_router(mangadex.router, prefix=settings.api_prefix)
    app.include_router(proxy.router, prefix=settings.api_prefix)
    app.include_router(cache.router, prefix=settings.api_prefix)

    @app.get("/health", response_model=HealthResponse)
    @app.get(f"{settings.api_prefix}/health", response_model=HealthResponse, include_in_schema=False)
    async def health():
        return HealthResponse(status="OK", timestamp=datetime.now(timezone.utc).isoformat())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=default_settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=default_settings.host, port=default_settings.port, log_level=default_settings.log_level)
