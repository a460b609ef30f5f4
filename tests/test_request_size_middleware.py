"""Tests for the request body size limit."""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from solvegate.app.middleware.request_size import RequestSizeLimitMiddleware


def _make_app(max_body_size: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=max_body_size)

    @app.post("/echo")
    async def echo(req: Request):
        return {"size": len(await req.body())}

    @app.post("/boom")
    async def boom(_: Request):
        raise RuntimeError("boom")

    return app


class TestRequestSizeLimit:
    """Oversized bodies are refused before they reach the handler."""

    @pytest.fixture
    def client(self):
        return TestClient(_make_app(10), raise_server_exceptions=False)

    def test_body_within_limit(self, client):
        resp = client.post("/echo", content=b"x" * 10)

        assert resp.status_code == 200
        assert resp.json() == {"size": 10}

    def test_declared_length_over_limit(self, client):
        resp = client.post("/echo", content=b"x" * 11)

        assert resp.status_code == 413
        assert resp.headers["content-type"].startswith("application/json")
        body = resp.json()
        assert body["error"] == "payload_too_large"
        assert "10 bytes" in body["message"]

    def test_streamed_body_over_limit(self, client):
        def chunks():
            for _ in range(4):
                yield b"xxxx"

        resp = client.post("/echo", content=chunks())

        assert resp.status_code == 413
        assert resp.json()["error"] == "payload_too_large"

    def test_handler_errors_are_not_masked(self):
        client = TestClient(_make_app(1024), raise_server_exceptions=False)

        resp = client.post("/boom", json={"x": 1})

        assert resp.status_code == 500
