from fastapi.testclient import TestClient

from desci.core.config import settings
from desci.main import create_app


def test_request_id_header(client):
    resp = client.get("/health")
    assert resp.headers["X-Request-ID"]


def test_oversized_body_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_BODY_BYTES", 10)
    resp = client.post("/api/chat", json={"message": "a much longer message than ten bytes"})
    assert resp.status_code == 413
    assert resp.json()["request_id"] == resp.headers["X-Request-ID"]


def test_unhandled_error_becomes_500(state, monkeypatch):
    app = create_app(state)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database password is hunter2")

    client = TestClient(app, raise_server_exceptions=False)

    resp = client.get("/boom")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "database password is hunter2"

    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    resp = client.get("/boom")
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Server error occurred"
    assert resp.json()["request_id"]


def test_chunked_body_without_length_rejected(client):
    resp = client.post(
        "/api/chat",
        content=iter([b'{"message": ', b'"coral"}']),
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 411
    assert resp.headers["X-Request-ID"] == resp.json()["request_id"]
