from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from realtime_bridge.app.tools.catalog import ToolRoute
from realtime_bridge.app.tools.http_client import (
    ToolApiClient,
    ToolApiError,
    ToolArgumentError,
    append_query_params,
    build_url_with_params,
)


def run(coro):
    return asyncio.run(coro)


def test_build_url_substitutes_and_encodes_path_params() -> None:
    url, remaining = build_url_with_params(
        "http://api/v1/tools/",
        "/bookings/:locator",
        {"locator": "AB C/1", "include_history": True},
    )

    assert url == "http://api/v1/tools/bookings/AB%20C%2F1"
    assert remaining == {"include_history": True}


def test_build_url_raises_for_missing_path_param() -> None:
    with pytest.raises(ToolArgumentError, match='Missing required path param "locator"'):
        build_url_with_params("http://api", "/bookings/:locator", {})


def test_append_query_params_skips_null_values_and_lowercases_bools() -> None:
    assert append_query_params("http://api/x", {"a": True, "b": None, "c": 3}) == "http://api/x?a=true&c=3"
    assert append_query_params("http://api/x?z=1", {"a": False}) == "http://api/x?z=1&a=false"
    assert append_query_params("http://api/x", {}) == "http://api/x"


def test_get_call_sends_unused_args_as_query_params() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["authorization"] = request.headers.get("Authorization")
        captured["content_type"] = request.headers.get("Content-Type")
        captured["body"] = request.content
        return httpx.Response(200, json={"locator": "ABC123", "status": "confirmed"})

    client = ToolApiClient(base_url="http://backend/v1/tools", token="secret")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    result = run(
        client.call(
            ToolRoute(method="GET", path="/bookings/:locator"),
            {"locator": "ABC123", "include_history": True},
        )
    )

    assert result == {"locator": "ABC123", "status": "confirmed"}
    assert captured == {
        "method": "GET",
        "url": "http://backend/v1/tools/bookings/ABC123?include_history=true",
        "authorization": "Bearer secret",
        "content_type": None,
        "body": b"",
    }

    run(client.close())


def test_post_call_sends_unused_args_as_json() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["content_type"] = request.headers.get("Content-Type")
        captured["json"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"ok": True})

    client = ToolApiClient(base_url="http://backend")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    result = run(
        client.call(
            ToolRoute(method="post", path="/bookings/:locator/notes"),
            {"locator": "ABC123", "note": "hi"},
        )
    )

    assert result == {"ok": True}
    assert captured == {
        "url": "http://backend/bookings/ABC123/notes",
        "content_type": "application/json",
        "json": {"note": "hi"},
    }

    run(client.close())


def test_post_call_without_path_params_sends_every_arg() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["json"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"ok": True})

    client = ToolApiClient(base_url="http://backend")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    args = {"product_id": "p-1", "start_date": "2024-06-01", "end_date": "2024-06-02"}

    run(client.call(ToolRoute(method="POST", path="/products/check-availability"), args))

    assert captured["json"] == args

    run(client.close())


def test_call_raises_tool_api_error_for_non_success_status() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="Booking ZZZ not found.")

    client = ToolApiClient(base_url="http://backend")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    with pytest.raises(ToolApiError) as exc_info:
        run(client.call(ToolRoute(path="/bookings/:locator"), {"locator": "ZZZ"}))

    assert exc_info.value.status_code == 404
    assert str(exc_info.value) == "External API request failed (404): Booking ZZZ not found."

    run(client.close())


def test_call_returns_text_for_non_json_response() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="pong", headers={"Content-Type": "text/plain"})

    client = ToolApiClient(base_url="http://backend")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    assert run(client.call(ToolRoute(path="/ping"), {})) == "pong"

    run(client.close())
