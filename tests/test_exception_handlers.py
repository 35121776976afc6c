"""Tests for global exception handlers."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from window_ratelimit.core.errors import (
    ConfigurationAppError,
    KeyDerivationAppError,
    StoreAppError,
    ValidationAppError,
)
from window_ratelimit.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


def test_validation_error_returns_400(client: TestClient, app_with_handlers: FastAPI):
    @app_with_handlers.get("/validation")
    async def endpoint():
        raise ValidationAppError(
            code="bad_key",
            message="Key must not be empty",
            details={"hint": "send a key"},
        )

    response = client.get("/validation")

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "bad_key"
    assert error["message"] == "Key must not be empty"
    assert error["details"] == {"hint": "send a key"}
    assert "request_id" in error


@pytest.mark.parametrize(
    "error_cls",
    [ConfigurationAppError, KeyDerivationAppError, StoreAppError],
)
def test_limiter_errors_raised_in_routes_return_500(client: TestClient, app_with_handlers: FastAPI, error_cls):
    @app_with_handlers.get("/limiter")
    async def endpoint():
        raise error_cls(code="limiter_failure", message="limiter failed")

    response = client.get("/limiter")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "limiter_failure"
    assert "details" not in response.json()["error"]


def test_unexpected_error_returns_generic_500(client: TestClient, app_with_handlers: FastAPI):
    @app_with_handlers.get("/boom")
    async def endpoint():
        raise RuntimeError("database password is hunter2")

    response = client.get("/boom")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "internal_server_error"
    assert "hunter2" not in response.text


def test_app_error_str_is_message():
    error = StoreAppError(code="store_unavailable", message="backend unreachable")

    assert str(error) == "backend unreachable"
