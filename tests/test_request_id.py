"""Tests for request ID middleware."""

from unittest.mock import patch

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from solvegate.app.middleware.request_id import (
    MAX_REQUEST_ID_LENGTH,
    RequestIdMiddleware,
    get_request_id,
)


def _make_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        return {"request_id": get_request_id(request)}

    return app


class TestRequestIdMiddleware:
    """Test request ID propagation."""

    def test_generates_request_id(self):
        client = TestClient(_make_app())

        resp = client.get("/echo")

        request_id = resp.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert resp.json()["request_id"] == request_id

    def test_uses_client_request_id(self):
        client = TestClient(_make_app())

        resp = client.get("/echo", headers={"X-Request-ID": "client-abc-123"})

        assert resp.headers["X-Request-ID"] == "client-abc-123"
        assert resp.json()["request_id"] == "client-abc-123"

    def test_replaces_oversized_request_id(self):
        client = TestClient(_make_app())
        too_long = "x" * (MAX_REQUEST_ID_LENGTH + 1)

        resp = client.get("/echo", headers={"X-Request-ID": too_long})

        assert resp.headers["X-Request-ID"] != too_long
        assert len(resp.headers["X-Request-ID"]) == 36

    def test_logs_completed_request(self):
        client = TestClient(_make_app())

        with patch("solvegate.app.middleware.request_id.logger") as mock_logger:
            client.get("/echo", headers={"X-Request-ID": "req-1"})

        mock_logger.info.assert_called_once()
        extra = mock_logger.info.call_args.kwargs["extra"]
        assert extra["request_id"] == "req-1"
        assert extra["method"] == "GET"
        assert extra["path"] == "/echo"
        assert extra["status_code"] == 200
        assert extra["duration_ms"] >= 0


class TestGetRequestId:
    """get_request_id outside the middleware."""

    def test_unknown_without_middleware(self):
        app = FastAPI()

        @app.get("/echo")
        async def echo(request: Request):
            return {"request_id": get_request_id(request)}

        resp = TestClient(app).get("/echo")

        assert resp.json()["request_id"] == "unknown"
