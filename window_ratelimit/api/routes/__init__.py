from __future__ import annotations

from window_ratelimit.api.routes.health import router as health_router
from window_ratelimit.api.routes.rate_limit import router as rate_limit_router

__all__ = ["health_router", "rate_limit_router"]
