"""FastAPI entrypoint for the realtime voice bridge.

This module performs four primary responsibilities:
1. Host the websocket endpoint that pairs each client with a realtime session.
2. Load and periodically refresh the shared catalogs used by every session.
3. Expose HTTP helpers: health, metrics, client config, transcription and
   on-demand catalog reload.
4. Manage process-lifecycle resources such as the DB pool and HTTP clients.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field

from .audio.vad import speech_classifier_available
from .audio.wav import pcm16_to_wav
from .bridge.handler import ConnectionBridge
from .config import settings
from .persistence.db import close_pool, init_pool, persistence_enabled
from .runtime import BridgeRuntime

_LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configures runtime log levels for the bridge and its libraries."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    observability_level = getattr(logging, settings.OBSERVABILITY_LOG_LEVEL.upper(), logging.INFO)
    websockets_level = getattr(logging, settings.WEBSOCKETS_LOG_LEVEL.upper(), logging.INFO)
    openai_level = getattr(logging, settings.OPENAI_LOG.upper(), logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(level)

    _LOGGER.setLevel(level)
    logging.getLogger("realtime_bridge").setLevel(level)
    logging.getLogger("realtime_bridge.app.observability").setLevel(observability_level)
    logging.getLogger("realtime_bridge.app.persistence").setLevel(observability_level)
    logging.getLogger("websockets").setLevel(websockets_level)
    logging.getLogger("openai").setLevel(openai_level)
    logging.getLogger("httpx").setLevel(openai_level)
    _LOGGER.debug(
        "Logging configured for realtime bridge.",
        extra={
            "log_level": settings.LOG_LEVEL,
            "observability_log_level": settings.OBSERVABILITY_LOG_LEVEL,
            "websockets_log_level": settings.WEBSOCKETS_LOG_LEVEL,
        },
    )


@asynccontextmanager
async def _lifespan(app: FastAPI):
    """Initializes and tears down process-scoped resources.

    Args:
        app: FastAPI app instance; the runtime is stored on ``app.state``.
    """
    persistence = False
    if persistence_enabled():
        try:
            await init_pool()
            persistence = True
        except Exception:
            _LOGGER.exception("Failed to initialize bridge DB pool; using file catalogs.")

    if settings.INPUT_VAD_ENABLED and not speech_classifier_available():
        _LOGGER.warning("Input VAD is enabled but webrtcvad is not installed; audio will pass through ungated.")

    runtime = BridgeRuntime.from_settings(settings, persistence=persistence)
    await runtime.reload()
    app.state.runtime = runtime

    background = [asyncio.create_task(runtime.metrics.log_periodically(settings.METRICS_LOG_INTERVAL_S))]
    if settings.CATALOG_REFRESH_INTERVAL_S > 0:
        background.append(asyncio.create_task(runtime.refresh_periodically(settings.CATALOG_REFRESH_INTERVAL_S)))
    try:
        yield
    finally:
        for task in background:
            task.cancel()
        for task in background:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await runtime.close()
        except Exception:
            _LOGGER.exception("Failed to close bridge runtime.")
        try:
            await close_pool()
        except Exception:
            _LOGGER.exception("Failed to close bridge DB pool.")


_configure_logging()
app = FastAPI(lifespan=_lifespan)


def get_runtime(request: Request) -> BridgeRuntime:
    return request.app.state.runtime


def require_admin(authorization: str | None = Header(default=None)) -> None:
    """Validates the bearer token for administrative endpoints.

    Raises:
        HTTPException: 404 when no admin token is configured, 401 when the
            caller token does not match.
    """
    if not settings.BRIDGE_ADMIN_TOKEN:
        raise HTTPException(status_code=404, detail="Not Found")
    if authorization != f"Bearer {settings.BRIDGE_ADMIN_TOKEN}":
        raise HTTPException(status_code=401, detail="Unauthorized")


class TranscribeRequest(BaseModel):
    audio: str = Field(min_length=1)


@app.get("/health")
async def health() -> dict[str, str]:
    """Returns a minimal liveness response for probes."""
    return {"status": "ok", "service": "realtime_bridge"}


@app.get("/metrics")
async def metrics(runtime: BridgeRuntime = Depends(get_runtime)) -> Response:
    """Exposes the runtime registry in the Prometheus text format."""
    return Response(content=runtime.metrics.exposition(), headers={"Content-Type": CONTENT_TYPE_LATEST})


@app.get("/client-config")
async def client_config() -> dict[str, Any]:
    """Returns playback and reconnect settings for browser clients."""
    return {
        "playback_rate": settings.ASSISTANT_PLAYBACK_RATE,
        "reconnect_floor_ms": settings.CLIENT_RECONNECT_FLOOR_MS,
    }


@app.post("/catalog/reload", dependencies=[Depends(require_admin)])
async def reload_catalog(runtime: BridgeRuntime = Depends(get_runtime)) -> dict[str, Any]:
    await runtime.reload()
    return {
        "status": "ok",
        "tools": len(runtime.catalog.snapshot.tools),
        "sanitization_rules": runtime.sanitizer.rule_count,
    }


@app.post("/transcribe")
async def transcribe(
    body: TranscribeRequest,
    runtime: BridgeRuntime = Depends(get_runtime),
) -> dict[str, str]:
    """Transcribes base64 PCM16 audio with the configured transcription model.

    Raises:
        HTTPException: 400 for invalid audio, 503 when no API key is configured.
    """
    try:
        pcm = base64.b64decode(body.audio, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="audio must be base64-encoded PCM16")
    if not pcm:
        raise HTTPException(status_code=400, detail="audio is empty")
    if runtime.openai_client is None:
        raise HTTPException(status_code=503, detail="Transcription is not configured")

    wav = pcm16_to_wav(pcm, sample_rate=settings.TRANSCRIPTION_SAMPLE_RATE)
    result = await runtime.openai_client.audio.transcriptions.create(
        model=settings.TRANSCRIPTION_MODEL,
        file=("audio.wav", wav, "audio/wav"),
    )
    return {"text": result.text}


@app.websocket("/ws")
async def realtime_stream(websocket: WebSocket) -> None:
    """Handles one client session.

    Query parameters ``assistantId``, ``conversationId`` and ``tier`` bind the
    session before the upstream is configured.

    Args:
        websocket: Upgraded client websocket.
    """
    params = websocket.query_params
    bridge = ConnectionBridge(
        websocket,
        websocket.app.state.runtime,
        assistant_id=params.get("assistantId"),
        conversation_id=params.get("conversationId"),
        model=settings.model_for_tier(params.get("tier")),
    )
    try:
        await bridge.start()
        await bridge.wait_until_done()
    except WebSocketDisconnect:
        _LOGGER.info("Client websocket disconnected.")
    except Exception:
        _LOGGER.exception("Unhandled error while bridging realtime session.")
        await bridge.shutdown(code=1011)
    finally:
        await bridge.shutdown()
