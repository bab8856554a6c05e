"""Application wiring: lifespan, health and metrics endpoints, error mapping."""

from __future__ import annotations

import asyncio
import dataclasses

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from psycopg import errors as pg_errors

from account_service import main
from account_service.api.routes import ERROR_STATUS_MAP, _http_error
from account_service.errors import (
    AuthenticationFailedError,
    DuplicateKeyError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)


@pytest.fixture
def app_client(monkeypatch):
    settings = dataclasses.replace(main.settings, account_store_backend="memory", bcrypt_rounds=4)
    monkeypatch.setattr(main, "settings", settings)
    with TestClient(main.app) as client:
        yield client


def test_healthz(app_client):
    response = app_client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_endpoint(app_client):
    response = app_client.get("/metrics")
    assert response.status_code == 200
    assert "python_info" in response.text or "process_" in response.text


def test_lifespan_wires_memory_store(app_client):
    response = app_client.post(
        "/api/users",
        json={"username": "alice", "email": "alice@x.com", "password": "secret1"},
    )
    assert response.status_code == 201
    token = response.json()["token"]
    assert app_client.get("/api/users/me", headers={"x-auth": token}).json()["username"] == "alice"


def test_issuer_receives_configured_ttl():
    settings = dataclasses.replace(main.settings, jwt_ttl_seconds=0)
    assert settings.token_ttl is None
    assert dataclasses.replace(settings, jwt_ttl_seconds=60).token_ttl == 60
    issuer = main.build_token_issuer(settings)
    assert issuer.verify(issuer.issue("account-1")).account_id == "account-1"


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (ValidationError("username", "username is required"), 422),
        (DuplicateKeyError("email"), 409),
        (NotFoundError("missing"), 404),
        (AuthenticationFailedError(), 401),
        (UnauthorizedError(), 401),
    ],
)
def test_error_status_mapping(error, status_code):
    assert ERROR_STATUS_MAP[type(error)] == status_code
    http_error = _http_error(error)
    assert http_error.status_code == status_code
    assert http_error.detail == error.message


def test_error_to_dict():
    assert DuplicateKeyError("email").to_dict() == {
        "error_type": "DuplicateKeyError",
        "message": "email already exists",
        "details": {"field": "email"},
    }


@pytest.fixture
def postgres_settings(monkeypatch, pg_pool):
    settings = dataclasses.replace(
        main.settings, account_store_backend="postgres", rate_limit_backend="memory", bcrypt_rounds=4
    )
    monkeypatch.setattr(main, "settings", settings)
    monkeypatch.setattr(main, "ConnectionPool", lambda *args, **kwargs: pg_pool)
    return settings


def _run_lifespan(app: FastAPI) -> None:
    async def cycle() -> None:
        async with main.lifespan(app):
            assert app.state.account_service is not None

    asyncio.run(cycle())


def test_lifespan_bootstraps_postgres_schema_and_closes_pool(postgres_settings, pg_pool):
    _run_lifespan(FastAPI())

    assert pg_pool.opened
    assert pg_pool.db.schema
    assert pg_pool.closed


def test_lifespan_closes_pool_when_schema_setup_fails(postgres_settings, pg_pool):
    pg_pool.fail_on = "CREATE"
    app = FastAPI()

    with pytest.raises(pg_errors.OperationalError):
        _run_lifespan(app)

    assert pg_pool.opened
    assert pg_pool.closed
    assert not hasattr(app.state, "account_service")
