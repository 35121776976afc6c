"""Rate limiting middleware for FastAPI applications.

This module wires a hit counter store into the HTTP layer.

For each request the limiter:
- derives a client key (client address by default),
- records a hit in the store,
- attaches X-RateLimit-* and/or RateLimit-* headers to the response,
- either calls the next stage or answers with the rejection handler.

Errors raised while deriving the key or talking to the store propagate to
the application's error handling unchanged; they are never turned into an
"allowed" or "rate limited" answer.

Usage:
    limiter = RateLimiter(parse_options(store=MemoryStore(...)))
    app.middleware("http")(limiter)
"""

from __future__ import annotations

import hashlib
import inspect
import logging
import math
import time
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from fastapi import Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from window_ratelimit.adapters.rate_limit.base import AbstractStore, IncrementResult
from window_ratelimit.adapters.rate_limit.in_memory import MemoryStore
from window_ratelimit.core.config import DEFAULT_MESSAGE, RateLimitSettings, settings
from window_ratelimit.core.errors import ConfigurationAppError, KeyDerivationAppError

logger = logging.getLogger(__name__)

T = TypeVar("T")

KeyGenerator = Callable[[Request], "str | Awaitable[str]"]
RateLimitHandler = Callable[[Request, "RateLimitOptions"], "Response | Awaitable[Response]"]

LEGACY_LIMIT_HEADER = "X-RateLimit-Limit"
LEGACY_USED_HEADER = "X-RateLimit-Used"
LEGACY_REMAINING_HEADER = "X-RateLimit-Remaining"
LEGACY_RETRY_AFTER_HEADER = "X-Retry-After"
STANDARD_LIMIT_HEADER = "RateLimit-Limit"
STANDARD_USED_HEADER = "RateLimit-Used"
STANDARD_REMAINING_HEADER = "RateLimit-Remaining"
STANDARD_RETRY_AFTER_HEADER = "Retry-After"


_store: MemoryStore | None = None
_store_config: tuple[Any, ...] | None = None


def get_window_store(cfg: RateLimitSettings | None = None) -> MemoryStore:
    """Return a process-wide window store built from settings.

    The instance is cached in-module to preserve hit counters across requests.
    If the configuration changes (primarily in tests), the previous store's
    sweeper is stopped and a new store is built. A store whose sweeper was
    stopped (e.g. by an app lifespan) is also rebuilt when sweeping is enabled.

    Args:
        cfg: Optional rate limit settings; defaults to global settings.

    Returns:
        MemoryStore: Configured store instance.
    """

    global _store, _store_config

    cfg = cfg or settings.rate_limit
    config = (
        cfg.window_seconds,
        cfg.max_connections,
        cfg.counting_mode,
        cfg.shard_count,
        cfg.sweep_interval_seconds,
    )

    stale = (
        _store is not None
        and cfg.sweep_interval_seconds is not None
        and not _store.sweeper_running
    )

    if _store is None or _store_config != config or stale:
        if _store is not None:
            _store.close()
        _store = MemoryStore(
            window_seconds=cfg.window_seconds,
            max_connections=cfg.max_connections,
            counting_mode=cfg.counting_mode,
            shard_count=cfg.shard_count,
            sweep_interval_seconds=cfg.sweep_interval_seconds,
        )
        _store_config = config

    return _store


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate limit state of the current client, exposed as ``request.state.rate_limit``."""

    limit: int
    current: int
    remaining: int
    reset_time: datetime | None


def default_key_generator(request: Request) -> str:
    """Use the client network address as the rate limit key.

    Raises:
        KeyDerivationAppError: If the server did not report a client address.
    """

    client_host = request.client.host if request.client else None
    if not client_host:
        logger.error(
            "rate_limit.key_unavailable",
            extra={
                "reason": "client_address_missing",
                "request_path": request.url.path,
            },
        )
        raise KeyDerivationAppError(
            code="client_address_unavailable",
            message="Cannot determine the client address for rate limiting",
            details={"hint": "Configure a custom key_generator for this deployment"},
        )
    return client_host


def default_handler(request: Request, options: RateLimitOptions) -> Response:
    """Answer a rate limited request with the configured status and message."""

    if isinstance(options.message, (Mapping, list)):
        return JSONResponse(content=options.message, status_code=options.status_code)
    return PlainTextResponse(str(options.message), status_code=options.status_code)


@dataclass(frozen=True)
class RateLimitOptions:
    """Configuration of a RateLimiter.

    Attributes:
        store: Hit counter store; its ``max_connections`` is the ceiling.
        status_code: Status sent by the default handler.
        message: Body sent by the default handler (text, or JSON when a
            mapping/list is given).
        legacy_headers: Send ``X-RateLimit-*`` and ``X-Retry-After``.
        standard_headers: Send ``RateLimit-*`` and ``Retry-After``.
        key_generator: Callable returning the client key (sync or async).
        handler: Callable producing the rejection response (sync or async).
        clock: Time source for Retry-After; give it the store's clock when
            the store runs on a custom one.
    """

    store: AbstractStore
    status_code: int = 429
    message: Any = DEFAULT_MESSAGE
    legacy_headers: bool = True
    standard_headers: bool = False
    key_generator: KeyGenerator = default_key_generator
    handler: RateLimitHandler = default_handler
    clock: Callable[[], float] = time.time


def _validate_options(options: RateLimitOptions) -> None:
    store = options.store
    for attr in ("increment", "reset_key"):
        if not callable(getattr(store, attr, None)):
            raise ConfigurationAppError(
                code="invalid_store",
                message=f"store must provide a callable {attr}()",
                details={"option": "store"},
            )
    for attr in ("max_connections", "window_seconds"):
        if not hasattr(store, attr):
            raise ConfigurationAppError(
                code="invalid_store",
                message=f"store must expose {attr}",
                details={"option": "store"},
            )
    if not callable(options.key_generator):
        raise ConfigurationAppError(
            code="invalid_key_generator",
            message="key_generator must be callable",
            details={"option": "key_generator"},
        )
    if not callable(options.handler):
        raise ConfigurationAppError(
            code="invalid_handler",
            message="handler must be callable",
            details={"option": "handler"},
        )
    if not callable(options.clock):
        raise ConfigurationAppError(
            code="invalid_clock",
            message="clock must be callable",
            details={"option": "clock"},
        )
    if not isinstance(options.status_code, int) or not 400 <= options.status_code <= 599:
        raise ConfigurationAppError(
            code="invalid_status_code",
            message="status_code must be an HTTP error status (400-599)",
            details={"option": "status_code"},
        )


def parse_options(**overrides: Any) -> RateLimitOptions:
    """Build RateLimitOptions, filling in defaults for omitted options.

    Passing ``None`` for an option is the same as omitting it. When no store
    is given a warning is logged and the process-wide store built from
    settings is used.

    Args:
        **overrides: Any RateLimitOptions field.

    Returns:
        Validated RateLimitOptions.

    Raises:
        ConfigurationAppError: On unknown or invalid options.
    """

    known = {f.name for f in fields(RateLimitOptions)}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigurationAppError(
            code="unknown_option",
            message=f"Unknown rate limit option(s): {', '.join(sorted(unknown))}",
        )

    provided = {name: value for name, value in overrides.items() if value is not None}
    if "store" not in provided:
        logger.warning(
            "rate_limit.store_missing",
            extra={"hint": "pass a store configured with the preferred window and ceiling"},
        )
        provided["store"] = get_window_store()

    options = RateLimitOptions(**provided)
    _validate_options(options)
    return options


def options_from_settings(cfg: RateLimitSettings | None = None, **overrides: Any) -> RateLimitOptions:
    """Build RateLimitOptions from RateLimitSettings, with optional overrides."""

    cfg = cfg or settings.rate_limit
    values: dict[str, Any] = {
        "store": get_window_store(cfg),
        "status_code": cfg.status_code,
        "message": cfg.message,
        "legacy_headers": cfg.legacy_headers,
        "standard_headers": cfg.standard_headers,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return parse_options(**values)


async def _resolve(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client identity."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _retry_after_seconds(reset_time: datetime, now: float) -> int:
    delta = reset_time.timestamp() - now
    return max(0, int(math.ceil(delta)))


class RateLimiter:
    """Fixed-window rate limiting middleware.

    Instances are ``http`` middleware callables:

        app.middleware("http")(RateLimiter(options))
    """

    def __init__(self, options: RateLimitOptions | None = None) -> None:
        self.options = options or parse_options()

    @property
    def store(self) -> AbstractStore:
        return self.options.store

    async def reset_key(self, key: str) -> None:
        """Reset the hit counter of a client so its next request opens a new window."""
        await _resolve(self.store.reset_key(key))
        logger.info("rate_limit.key_reset", extra={"key_hash": _hash_limiter_key(key)})

    def _build_headers(self, result: IncrementResult, limit: int) -> dict[str, str]:
        opts = self.options
        remaining = max(0, limit - result.total_hits)
        headers: dict[str, str] = {}

        if opts.legacy_headers:
            headers[LEGACY_LIMIT_HEADER] = str(limit)
            headers[LEGACY_USED_HEADER] = str(result.total_hits)
            headers[LEGACY_REMAINING_HEADER] = str(remaining)
        if opts.standard_headers:
            headers[STANDARD_LIMIT_HEADER] = str(limit)
            headers[STANDARD_USED_HEADER] = str(result.total_hits)
            headers[STANDARD_REMAINING_HEADER] = str(remaining)

        if result.has_passed_limit:
            if opts.legacy_headers:
                headers[LEGACY_RETRY_AFTER_HEADER] = result.reset_time.isoformat()
            if opts.standard_headers:
                headers[STANDARD_RETRY_AFTER_HEADER] = str(_retry_after_seconds(result.reset_time, opts.clock()))

        return headers

    async def __call__(self, request: Request, call_next) -> Response:
        """Count the request and either pass it on or reject it.

        Args:
            request: The incoming HTTP request object.
            call_next: The next middleware/route handler in the stack.

        Returns:
            Response: The downstream response, or the handler's rejection
                response, with rate limit headers attached.

        Raises:
            KeyDerivationAppError: If the client key cannot be derived.
        """
        opts = self.options

        key = await _resolve(opts.key_generator(request))
        if not key:
            raise KeyDerivationAppError(
                code="empty_rate_limit_key",
                message="key_generator returned an empty key",
            )

        result = await _resolve(opts.store.increment(key))
        limit = opts.store.max_connections

        request.state.rate_limit = RateLimitInfo(
            limit=limit,
            current=result.total_hits,
            remaining=max(0, limit - result.total_hits),
            reset_time=result.reset_time,
        )
        headers = self._build_headers(result, limit)

        log_extra = {
            "key_hash": _hash_limiter_key(key),
            "limit": limit,
            "used": result.total_hits,
            "window_s": opts.store.window_seconds,
        }

        if result.has_passed_limit:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "reset_time": result.reset_time.isoformat()},
            )
            response = await _resolve(opts.handler(request, opts))
        else:
            logger.debug("rate_limit.allowed", extra=log_extra)
            response = await call_next(request)

        for name, value in headers.items():
            response.headers[name] = value
        return response


def build_rate_limiter(cfg: RateLimitSettings | None = None, **overrides: Any) -> RateLimiter:
    """Create a RateLimiter configured from settings."""

    return RateLimiter(options_from_settings(cfg, **overrides))
