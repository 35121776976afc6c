from __future__ import annotations

from fastapi.testclient import TestClient

from window_ratelimit.adapters.rate_limit.in_memory import MemoryStore
from window_ratelimit.core.app_factory import create_app
from window_ratelimit.core.config import RateLimitSettings, Settings
from window_ratelimit.core.rate_limit import RateLimiter, parse_options


def _settings(**rate_limit) -> Settings:
    rate_limit.setdefault("sweep_interval_seconds", None)
    return Settings(rate_limit=RateLimitSettings(**rate_limit))


def test_preserves_incoming_request_id_header():
    client = TestClient(create_app(_settings()))
    incoming_id = "test-request-id-123"

    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    client = TestClient(create_app(_settings()))

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_rejected_requests_still_carry_request_id():
    client = TestClient(create_app(_settings(max_connections=0)))
    client.get("/health")

    resp = client.get("/health", headers={"X-Request-ID": "rid-1"})

    assert resp.status_code == 429
    assert resp.headers["X-Request-ID"] == "rid-1"


def test_status_route_reports_current_window():
    store = MemoryStore(window_seconds=60, max_connections=3)
    app = create_app(_settings(), limiter=RateLimiter(parse_options(store=store)))
    client = TestClient(app)

    client.get("/health")
    resp = client.get("/v1/rate-limit/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["limit"] == 3
    assert body["current"] == 2
    assert body["remaining"] == 1
    assert body["reset_time"] is not None


def test_status_route_without_limiter_is_a_client_error():
    client = TestClient(create_app(_settings(enabled=False)))

    resp = client.get("/v1/rate-limit/status")

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "rate_limit_disabled"
    assert "X-RateLimit-Limit" not in resp.headers


def test_lifespan_stops_store_sweeper():
    store = MemoryStore(window_seconds=60, max_connections=3, sweep_interval_seconds=60)
    app = create_app(_settings(), limiter=RateLimiter(parse_options(store=store)))

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert store.sweeper_running is True

    assert store.sweeper_running is False


def test_settings_store_survives_consecutive_app_lifespans():
    settings = _settings(sweep_interval_seconds=60)

    first_app = create_app(settings)
    first_store = first_app.state.rate_limiter.store
    with TestClient(first_app) as client:
        assert client.get("/health").status_code == 200
    assert first_store.sweeper_running is False

    second_app = create_app(settings)
    second_store = second_app.state.rate_limiter.store
    try:
        assert second_store is not first_store
        assert second_store.sweeper_running is True
    finally:
        second_store.close()
