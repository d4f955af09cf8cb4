from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

import realtime_bridge.app.main as main_module
from realtime_bridge.app.config import settings
from realtime_bridge.app.observability.metrics import MetricsTracker


class _FakeTranscriptions:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        return SimpleNamespace(text="hello there")


class _FakeRuntime:
    def __init__(self, openai_client: Any = None) -> None:
        self.openai_client = openai_client
        self.metrics = MetricsTracker()
        self.catalog = SimpleNamespace(snapshot=SimpleNamespace(tools=("a", "b")))
        self.sanitizer = SimpleNamespace(rule_count=3)
        self.reloads = 0

    async def reload(self) -> None:
        self.reloads += 1


def _client(monkeypatch: pytest.MonkeyPatch, runtime: _FakeRuntime) -> TestClient:
    monkeypatch.setattr(main_module.app.state, "runtime", runtime, raising=False)
    return TestClient(main_module.app)


def test_health_reports_ok() -> None:
    response = TestClient(main_module.app).get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "realtime_bridge"}


def test_client_config_exposes_playback_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "ASSISTANT_PLAYBACK_RATE", 1.25)

    response = TestClient(main_module.app).get("/client-config")

    assert response.json() == {"playback_rate": 1.25, "reconnect_floor_ms": settings.CLIENT_RECONNECT_FLOOR_MS}


def test_metrics_serves_prometheus_exposition(monkeypatch: pytest.MonkeyPatch) -> None:
    runtime = _FakeRuntime()
    runtime.metrics.record_cancellation("client")
    runtime.metrics.record_tool_result(name="lookup_booking", ok=True, duration_ms=120)

    response = _client(monkeypatch, runtime).get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'bridge_response_cancellations_total{reason="client"} 1.0' in response.text
    assert 'bridge_tool_calls_total{tool="lookup_booking"} 1.0' in response.text
    assert "bridge_tool_latency_seconds_count" in response.text


def test_catalog_reload_requires_admin_token(monkeypatch: pytest.MonkeyPatch) -> None:
    runtime = _FakeRuntime()
    client = _client(monkeypatch, runtime)

    monkeypatch.setattr(settings, "BRIDGE_ADMIN_TOKEN", "")
    assert client.post("/catalog/reload").status_code == 404

    monkeypatch.setattr(settings, "BRIDGE_ADMIN_TOKEN", "admin")
    assert client.post("/catalog/reload", headers={"Authorization": "Bearer nope"}).status_code == 401
    response = client.post("/catalog/reload", headers={"Authorization": "Bearer admin"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "tools": 2, "sanitization_rules": 3}
    assert runtime.reloads == 1


def test_transcribe_wraps_pcm_in_wav(monkeypatch: pytest.MonkeyPatch) -> None:
    transcriptions = _FakeTranscriptions()
    runtime = _FakeRuntime(SimpleNamespace(audio=SimpleNamespace(transcriptions=transcriptions)))
    pcm = b"\x01\x00" * 100

    response = _client(monkeypatch, runtime).post(
        "/transcribe", json={"audio": base64.b64encode(pcm).decode()}
    )

    assert response.status_code == 200
    assert response.json() == {"text": "hello there"}
    call = transcriptions.calls[0]
    assert call["model"] == settings.TRANSCRIPTION_MODEL
    filename, wav, content_type = call["file"]
    assert (filename, content_type) == ("audio.wav", "audio/wav")
    assert wav[:4] == b"RIFF"
    assert wav.endswith(pcm)


def test_transcribe_rejects_bad_audio_and_missing_client(monkeypatch: pytest.MonkeyPatch) -> None:
    client = _client(monkeypatch, _FakeRuntime())

    assert client.post("/transcribe", json={"audio": "%%%"}).status_code == 400
    assert client.post("/transcribe", json={"audio": ""}).status_code == 422
    assert client.post("/transcribe", json={"audio": base64.b64encode(b"\x00\x00").decode()}).status_code == 503


def test_websocket_without_api_key_is_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    monkeypatch.setattr(settings, "DB_CONNECTION_STRING", None)

    with TestClient(main_module.app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?assistantId=support"):
                pass

    assert exc_info.value.code == 1011
