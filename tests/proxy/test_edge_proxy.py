from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx
from fastapi.testclient import TestClient

from meter_provisioning.config import AppSettings
from meter_provisioning.main import create_app
from meter_provisioning.proxy import EdgeProxy, create_edge_proxy

TARGET_URL = "http://ldap.test"


def test_proxy_forwards_raw_encoded_path_and_mirrors_response() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[{"mac": "AA:BB:CC:DD:EE:FF", "account": "ViaviMeter"}],
        )

    with _client(handler) as client:
        response = client.get("/api/ldap/searchbymac/AA%3ABB%3ACC%3ADD%3AEE%3AFF")

    assert len(seen) == 1
    assert seen[0].method == "GET"
    assert seen[0].url.host == "ldap.test"
    assert seen[0].url.raw_path == b"/searchbymac/AA%3ABB%3ACC%3ADD%3AEE%3AFF"
    assert response.status_code == 200
    assert response.json() == [{"mac": "AA:BB:CC:DD:EE:FF", "account": "ViaviMeter"}]
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["content-type"] == "application/json"


def test_proxy_forwards_query_string() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    with _client(handler) as client:
        client.get("/api/ldap/search?mac=AA&limit=2")

    assert seen[0].url.path == "/search"
    assert seen[0].url.query == b"mac=AA&limit=2"


def test_proxy_forwards_bare_prefix_as_backend_root() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "ok"})

    with _client(handler) as client:
        response = client.get("/api/ldap?ping=1", follow_redirects=False)

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert len(seen) == 1
    assert seen[0].url.path == "/"
    assert seen[0].url.query == b"ping=1"


def test_proxy_buffers_and_forwards_post_body() -> None:
    seen: list[httpx.Request] = []
    payload = {"mac": "AA:BB:CC:DD:EE:FF", "account": "acct", "configfile": "cfg0", "isp": "isp"}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=True)

    with _client(handler) as client:
        response = client.post("/api/ldap/addhsd", json=payload)

    assert seen[0].method == "POST"
    assert seen[0].url.path == "/addhsd"
    assert json.loads(seen[0].content) == payload
    assert seen[0].headers["content-type"] == "application/json"
    assert response.status_code == 200
    assert response.json() is True


def test_proxy_mirrors_backend_errors_verbatim() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500,
            content=b"directory exploded",
            headers={"Content-Type": "text/plain"},
        )

    with _client(handler) as client:
        response = client.get("/api/ldap/searchbymac/AA")

    assert response.status_code == 500
    assert response.text == "directory exploded"
    assert response.headers["content-type"] == "text/plain"
    assert response.headers["access-control-allow-origin"] == "*"


def test_proxy_defaults_missing_content_type_to_json() -> None:
    with _client(lambda _: httpx.Response(200, content=b"[]")) as client:
        response = client.get("/api/ldap/searchbymac/AA")

    assert response.headers["content-type"] == "application/json"
    assert response.json() == []


def test_proxy_forwards_headers_and_fills_json_defaults() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    with _client(handler) as client:
        client.get("/api/ldap/searchbymac/AA", headers={"X-Request-Id": "req-1"})

    forwarded = seen[0].headers
    assert forwarded["x-request-id"] == "req-1"
    assert forwarded["host"] == "ldap.test"
    assert forwarded["content-type"] == "application/json"


def test_proxy_returns_502_envelope_when_backend_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        response = client.get("/api/ldap/searchbymac/AA%3ABB")

    assert response.status_code == 502
    assert response.json() == {
        "error": "Proxy error",
        "message": "connection refused",
        "target": f"{TARGET_URL}/searchbymac/AA%3ABB",
    }


def test_proxy_failure_without_message_uses_exception_name() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("", request=request)

    proxy = EdgeProxy(target_url=TARGET_URL, http_client_factory=_mock_client_factory(handler))

    response = asyncio.run(proxy.forward(method="GET", path="/searchbymac/AA"))

    assert response.status_code == 502
    assert json.loads(response.body) == {
        "error": "Proxy error",
        "message": "ReadTimeout",
        "target": f"{TARGET_URL}/searchbymac/AA",
    }


def test_proxy_uses_configured_prefix() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    with _client(handler, proxy_path_prefix="/backend") as client:
        routed = client.get("/backend/searchbymac/AA")
        unrouted = client.get("/api/ldap/searchbymac/AA")

    assert routed.status_code == 200
    assert unrouted.status_code == 404
    assert [request.url.path for request in seen] == ["/searchbymac/AA"]


def test_create_edge_proxy_reads_settings() -> None:
    proxy = create_edge_proxy(replace(AppSettings(), proxy_target_url="http://ldap.internal:8000/"))

    assert proxy.target_url == "http://ldap.internal:8000"
    assert proxy.target_for("/addhsd", "a=1") == "http://ldap.internal:8000/addhsd?a=1"


def _client(handler: Callable[[httpx.Request], httpx.Response], **overrides: Any) -> TestClient:
    app = create_app(settings=_settings(**overrides))
    app.state.edge_proxy = EdgeProxy(
        target_url=TARGET_URL,
        http_client_factory=_mock_client_factory(handler),
    )
    return TestClient(app)


def _mock_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[..., httpx.AsyncClient]:
    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


def _settings(**overrides: Any) -> AppSettings:
    base = AppSettings(app_env="test", proxy_target_url=TARGET_URL)
    return replace(base, **overrides)
