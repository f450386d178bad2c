import json

import pytest
from fastapi.responses import JSONResponse
from starlette.requests import Request

from chatgate.config.settings import settings
from chatgate.core import gateway


def _build_request(
    path: str,
    *,
    method: str = "POST",
    headers: dict[str, str] | None = None,
    body: bytes = b"{}",
) -> Request:
    raw_headers = [(b"content-type", b"application/json")]
    for k, v in (headers or {}).items():
        raw_headers.append((k.lower().encode("latin-1"), v.encode("latin-1")))
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": raw_headers,
        "client": ("127.0.0.1", 50000),
        "server": ("127.0.0.1", 3000),
    }

    sent = False

    async def receive() -> dict:
        nonlocal sent
        if sent:
            return {"type": "http.request", "body": b"", "more_body": False}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


async def _allow_next(_request: Request):
    return JSONResponse(status_code=200, content={"ok": True})


@pytest.fixture(autouse=True)
def _small_limit(monkeypatch):
    monkeypatch.setattr(settings, "max_request_body_bytes", 64)


@pytest.mark.asyncio
async def test_boundary_rejects_declared_oversize_body():
    request = _build_request("/api/chat", headers={"content-length": "65"})
    response = await gateway.request_boundary_middleware(request, _allow_next)
    assert response.status_code == 413
    body = json.loads(response.body.decode("utf-8"))
    assert body["error"]["code"] == "request_body_too_large"
    assert body["error"]["type"] == "chatgate_error"


@pytest.mark.asyncio
async def test_boundary_rejects_undeclared_oversize_body():
    request = _build_request("/api/chat", body=b"x" * 100)
    response = await gateway.request_boundary_middleware(request, _allow_next)
    assert response.status_code == 413


@pytest.mark.asyncio
async def test_boundary_rejects_invalid_content_length():
    request = _build_request("/api/chat", headers={"content-length": "abc"})
    response = await gateway.request_boundary_middleware(request, _allow_next)
    assert response.status_code == 400
    assert json.loads(response.body.decode("utf-8"))["error"]["code"] == "invalid_content_length"


@pytest.mark.asyncio
async def test_boundary_allows_small_bodies_and_reads():
    request = _build_request("/api/chat", headers={"content-length": "2"})
    response = await gateway.request_boundary_middleware(request, _allow_next)
    assert response.status_code == 200
    request = _build_request("/health", method="GET", body=b"")
    response = await gateway.request_boundary_middleware(request, _allow_next)
    assert response.status_code == 200


def test_routes_are_mounted_under_api_prefix():
    paths = {route.path for route in gateway.app.routes}
    assert {"/api/chat", "/api/feedback", "/health"} <= paths
    assert gateway.health() == {"status": "ok"}
