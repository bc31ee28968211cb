"""Tests for request ID middleware."""

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from deepsearch.app.middleware.request_id import RequestIdMiddleware, get_request_id


def make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        return {"request_id": get_request_id(request)}

    return app


class TestRequestIdMiddleware:
    """Test RequestIdMiddleware."""

    def test_generates_request_id(self):
        client = TestClient(make_app())
        resp = client.get("/echo")

        request_id = resp.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert resp.json()["request_id"] == request_id

    def test_uses_incoming_request_id(self):
        client = TestClient(make_app())
        resp = client.get("/echo", headers={"X-Request-ID": "custom-id"})

        assert resp.headers["X-Request-ID"] == "custom-id"
        assert resp.json()["request_id"] == "custom-id"

    def test_unique_per_request(self):
        client = TestClient(make_app())
        first = client.get("/echo").headers["X-Request-ID"]
        second = client.get("/echo").headers["X-Request-ID"]
        assert first != second


def test_get_request_id_without_middleware():
    app = FastAPI()

    @app.get("/echo")
    async def echo(request: Request):
        return {"request_id": get_request_id(request)}

    assert TestClient(app).get("/echo").json() == {"request_id": "unknown"}
