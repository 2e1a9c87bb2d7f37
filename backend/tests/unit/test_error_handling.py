"""
Unit tests for the service error hierarchy and ErrorHandlingMiddleware.
"""

import json

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from studyflow.middleware.error_handling import (
    ConflictError,
    ConnectivityError,
    NotFoundError,
    ServiceError,
    ValidationError,
    create_error_response,
    setup_error_handling,
)


def build_app(debug: bool = False) -> FastAPI:
    app = FastAPI()
    setup_error_handling(app, debug=debug)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Learning item abc not found")

    @app.get("/conflict")
    async def conflict():
        raise ConflictError("An active focus session already exists", details={"session_id": "s1"})

    @app.get("/offline")
    async def offline():
        raise ConnectivityError("Learning store is unreachable")

    @app.get("/http")
    async def http():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return app


class TestServiceErrors:
    """Status codes and error codes of each subclass."""

    @pytest.mark.parametrize(
        "error_cls,status_code,error_code",
        [
            (ValidationError, 422, "validation_error"),
            (NotFoundError, 404, "not_found"),
            (ConflictError, 409, "conflict"),
            (ConnectivityError, 503, "service_unavailable"),
            (ServiceError, 500, "service_error"),
        ],
    )
    def test_defaults(self, error_cls, status_code, error_code) -> None:
        error = error_cls("message")

        assert error.status_code == status_code
        assert error.error_code == error_code
        assert error.message == "message"
        assert error.details is None

    def test_overrides(self) -> None:
        error = ServiceError("Stats unavailable", status_code=503, error_code="stats_down")

        assert error.status_code == 503
        assert error.error_code == "stats_down"
        assert str(error) == "Stats unavailable"


class TestErrorResponse:
    """create_error_response body format."""

    def test_body_keys(self) -> None:
        response = create_error_response("not_found", "Gone", status_code=404, error_id="abc12345")
        body = json.loads(response.body)

        assert response.status_code == 404
        assert set(body) == {"error", "message", "error_id", "details", "timestamp"}
        assert body["error_id"] == "abc12345"

    def test_generates_error_id(self) -> None:
        body = json.loads(create_error_response("x", "y").body)

        assert len(body["error_id"]) == 8


class TestMiddleware:
    """Errors raised by routes become JSON error responses."""

    def test_not_found(self) -> None:
        response = TestClient(build_app()).get("/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
        assert response.json()["message"] == "Learning item abc not found"

    def test_conflict_details(self) -> None:
        response = TestClient(build_app()).get("/conflict")

        assert response.status_code == 409
        assert response.json()["details"] == {"session_id": "s1"}

    def test_connectivity(self) -> None:
        response = TestClient(build_app()).get("/offline")

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"

    def test_http_exception_passes_through(self) -> None:
        response = TestClient(build_app()).get("/http")

        assert response.status_code == 401
        assert response.json() == {"detail": "Missing X-User-Id header"}

    def test_unhandled_error_hides_details(self) -> None:
        response = TestClient(build_app()).get("/boom")

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"
        assert response.json()["details"] is None

    def test_unhandled_error_in_debug(self) -> None:
        response = TestClient(build_app(debug=True)).get("/boom")

        assert response.json()["details"]["exception"] == "RuntimeError"
