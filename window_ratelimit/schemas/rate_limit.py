"""Pydantic schemas for rate limit status responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class RateLimitStatusResponse(BaseModel):
    """Rate limit state of the calling client."""

    limit: int = Field(
        ..., description="Maximum number of requests allowed per window."
    )
    current: int = Field(
        ..., description="Hits counted for the caller in the current window."
    )
    remaining: int = Field(
        ..., description="Requests left before the caller is rate limited."
    )
    reset_time: datetime | None = Field(
        default=None,
        description="UTC time at which the caller's window ends.",
    )
