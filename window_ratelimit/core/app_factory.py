from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated apps with their own limiter.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from window_ratelimit.api.routes import health_router, rate_limit_router
from window_ratelimit.core.config import Settings, settings as default_settings
from window_ratelimit.core.exception_handlers import setup_exception_handlers
from window_ratelimit.core.logging import configure_logging
from window_ratelimit.core.middleware import request_id_middleware
from window_ratelimit.core.rate_limit import RateLimiter, build_rate_limiter


def create_app(
    app_settings: Settings | None = None,
    *,
    limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        limiter: Pre-built limiter. When omitted and rate limiting is enabled,
            one is built from ``app_settings.rate_limit``.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    if limiter is None and cfg.rate_limit.enabled:
        limiter = build_rate_limiter(cfg.rate_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        close = getattr(limiter.store, "close", None) if limiter else None
        if callable(close):
            close()

    app = FastAPI(
        title=cfg.app.title,
        debug=cfg.app.debug,
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    # Middleware: the last one added runs first, so request ids wrap the limiter
    if limiter is not None:
        app.middleware("http")(limiter)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(rate_limit_router, prefix="/v1")

    return app
