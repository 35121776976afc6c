from __future__ import annotations

from fastapi import APIRouter, Request

from window_ratelimit.core.errors import ValidationAppError
from window_ratelimit.schemas.rate_limit import RateLimitStatusResponse

router = APIRouter(tags=["Rate limit"])


@router.get("/rate-limit/status", response_model=RateLimitStatusResponse)
def rate_limit_status(request: Request) -> RateLimitStatusResponse:
    """Report the caller's rate limit state as counted for this request.

    Raises:
        ValidationAppError: If the rate limit middleware is not installed.
    """

    info = getattr(request.state, "rate_limit", None)
    if info is None:
        raise ValidationAppError(
            code="rate_limit_disabled",
            message="Rate limiting is not enabled for this application",
        )

    return RateLimitStatusResponse(
        limit=info.limit,
        current=info.current,
        remaining=info.remaining,
        reset_time=info.reset_time,
    )
