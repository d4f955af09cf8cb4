"""Per-connection relay between a browser client and the realtime model.

``ConnectionBridge`` owns two sockets: the client websocket accepted by
FastAPI and the upstream model websocket. Two loops run per connection:

- ``_client_loop_task``: client frames -> audio gating, cancels, upstream.
- ``_upstream_loop_task``: model events -> sanitization, tool calls, client.

User turns (retrieval plus the upstream turn) and tool calls run as tracked
tasks so neither blocks the loops. Turns on one connection stay ordered.

When either loop ends, ``wait_until_done()`` tears down both sides. The
bridge never reconnects on its own; clients reconnect with their own backoff.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
import logging
from typing import Any

from fastapi import WebSocket
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from ..audio.vad import AudioGate, create_speech_classifier
from ..config import settings
from ..runtime import BridgeRuntime
from ..tools.router import ToolCallContext
from . import protocol
from .events import (
    RESPONSE_OUTPUT_KINDS,
    AudioChunk,
    AudioStart,
    AudioStop,
    ResponseCancel,
    UpstreamEvent,
    UpstreamEventKind,
    UserMessage,
    decode_client_message,
    decode_upstream_event,
)
from .session import BridgeSession, PendingFunctionCall
from .upstream import UpstreamConnection

_LOGGER = logging.getLogger(__name__)


class ConnectionBridge:
    """Bridges one client websocket to one upstream realtime session."""

    def __init__(
        self,
        websocket: WebSocket,
        runtime: BridgeRuntime,
        *,
        upstream: UpstreamConnection | None = None,
        assistant_id: str | None = None,
        conversation_id: str | None = None,
        model: str | None = None,
    ) -> None:
        """Initializes per-connection state.

        Args:
            websocket: Client websocket, not yet accepted.
            runtime: Shared catalogs, retriever, router and metrics.
            upstream: Upstream connection; built from settings when omitted.
            assistant_id: Assistant bound at connect time.
            conversation_id: Conversation bound at connect time.
            model: Realtime model override.
        """
        self.websocket = websocket
        self.runtime = runtime
        self.state = BridgeSession(conversation_id=conversation_id, assistant_id=assistant_id)
        self.upstream = upstream or UpstreamConnection(settings.realtime_url(model), settings.OPENAI_API_KEY)
        self.audio_gate = AudioGate(
            create_speech_classifier(
                enabled=settings.INPUT_VAD_ENABLED,
                sample_rate=settings.INPUT_VAD_SAMPLE_RATE,
                frame_ms=settings.INPUT_VAD_FRAME_MS,
                aggressiveness=settings.INPUT_VAD_AGGRESSIVENESS,
            ),
            min_frames=settings.INPUT_VAD_MIN_FRAMES,
            min_speech_fraction=settings.INPUT_VAD_MIN_SPEECH_FRACTION,
        )

        self._client_loop_task: asyncio.Task[None] | None = None
        self._upstream_loop_task: asyncio.Task[None] | None = None
        self._tool_tasks: set[asyncio.Task[None]] = set()
        self._turn_tasks: set[asyncio.Task[None]] = set()
        self._turn_lock = asyncio.Lock()
        self._client_send_lock = asyncio.Lock()
        self._is_shutting_down = False
        _LOGGER.debug(
            "ConnectionBridge initialized.",
            extra={"client": str(getattr(websocket, "client", None)), "assistant_id": assistant_id},
        )

    async def start(self) -> None:
        """Accepts the client, opens upstream, configures the session and starts loops.

        Raises:
            ValueError: If ``OPENAI_API_KEY`` is not configured.
        """
        if not settings.OPENAI_API_KEY:
            raise ValueError("OPENAI_API_KEY is required")
        await self.websocket.accept()
        await self.upstream.connect()
        await self._send_session_configuration()

        self._upstream_loop_task = asyncio.create_task(self._upstream_loop())
        self._client_loop_task = asyncio.create_task(self._client_loop())
        _LOGGER.debug("ConnectionBridge loops started.")

    async def wait_until_done(self) -> None:
        """Waits until either side ends, then shuts the connection down."""
        loops = [task for task in (self._client_loop_task, self._upstream_loop_task) if task]
        if not loops:
            return
        try:
            await asyncio.wait(loops, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self.shutdown()

    async def shutdown(self, code: int = 1000) -> None:
        """Idempotently closes upstream, cancels tasks and closes the client.

        Args:
            code: Close code sent to the client if it is still connected.
        """
        if self._is_shutting_down:
            return
        self._is_shutting_down = True
        _LOGGER.debug("ConnectionBridge shutdown started.", extra={"code": code})

        with contextlib.suppress(Exception):
            await self.upstream.close()

        await self._cancel_background_tasks()

        if self.websocket.client_state != WebSocketState.DISCONNECTED:
            with contextlib.suppress(Exception):
                await self.websocket.close(code=code)
        _LOGGER.debug("ConnectionBridge shutdown completed.")

    async def _cancel_background_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [self._client_loop_task, self._upstream_loop_task, *self._turn_tasks, *self._tool_tasks]
        for task in tasks:
            if task and task is not current and not task.done():
                task.cancel()
        for task in tasks:
            if task and task is not current:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task

    # ToolChannel

    async def send_upstream(self, payload: dict[str, Any]) -> None:
        await self.upstream.send_json(payload)

    async def send_client(self, payload: dict[str, Any]) -> None:
        await self._send_client_text(json.dumps(payload))

    async def _send_client_text(self, text: str) -> None:
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        async with self._client_send_lock:
            await self.websocket.send_text(text)

    async def _send_client_bytes(self, data: bytes) -> None:
        if self.websocket.client_state == WebSocketState.DISCONNECTED:
            return
        async with self._client_send_lock:
            await self.websocket.send_bytes(data)

    async def _send_session_configuration(self) -> None:
        instructions = self.runtime.instructions_for(self.state.assistant_id)
        tools = await self.runtime.catalog.tools_for_assistant(self.state.assistant_id)
        await self.send_upstream(
            protocol.session_update(
                instructions=instructions,
                tools=tools,
                voice=settings.REALTIME_VOICE,
                turn_detection_type=settings.TURN_DETECTION_TYPE,
            )
        )
        _LOGGER.debug(
            "Session configuration sent upstream.",
            extra={"assistant_id": self.state.assistant_id, "tool_count": len(tools)},
        )

    async def _send_assistant_patch(self) -> None:
        instructions = self.runtime.instructions_for(self.state.assistant_id)
        tools = await self.runtime.catalog.tools_for_assistant(self.state.assistant_id)
        await self.send_upstream(protocol.session_patch(instructions=instructions, tools=tools))

    # Client -> upstream

    async def _client_loop(self) -> None:
        try:
            while not self._is_shutting_down:
                message = await self.websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    _LOGGER.info("Client websocket disconnected.")
                    return
                if message.get("bytes") is not None:
                    await self._forward_audio(message["bytes"])
                elif message.get("text") is not None:
                    await self._handle_client_text(message["text"])
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.exception("Client message loop failed.")

    async def _handle_client_text(self, text: str) -> None:
        try:
            message = decode_client_message(text)
        except ValidationError as exc:
            _LOGGER.warning("Dropping malformed client message.", extra={"errors": exc.error_count()})
            return

        if isinstance(message, UserMessage):
            self._dispatch_user_turn(message)
        elif isinstance(message, AudioChunk):
            await self._handle_audio_chunk(message)
        elif isinstance(message, AudioStart):
            self.state.reset_audio_turn()
            self.state.audio_turn_active = True
            await self.send_upstream(protocol.input_audio_clear())
        elif isinstance(message, AudioStop):
            # Server-side turn detection commits the buffer; nothing to send.
            self.state.reset_audio_turn()
        elif isinstance(message, ResponseCancel):
            await self._handle_cancel(message.response_id)

    def _dispatch_user_turn(self, message: UserMessage) -> None:
        task = asyncio.create_task(self._run_user_turn(message), name="user-turn")
        self._turn_tasks.add(task)
        task.add_done_callback(self._turn_tasks.discard)

    async def _run_user_turn(self, message: UserMessage) -> None:
        try:
            async with self._turn_lock:
                await self._handle_user_message(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.warning("User turn could not be forwarded.", exc_info=True)

    async def _handle_user_message(self, message: UserMessage) -> None:
        if message.conversation_id:
            self.state.conversation_id = message.conversation_id
        if message.assistant_id and message.assistant_id != self.state.assistant_id:
            self.state.assistant_id = message.assistant_id
            await self._send_assistant_patch()

        text = message.text.strip()[: settings.MAX_USER_MESSAGE_CHARS]
        if not text:
            _LOGGER.debug("Ignoring empty user message.")
            return
        scope = message.scope or "general"

        try:
            context = await self.runtime.retriever.build_context(text, scope)
        except Exception:
            _LOGGER.warning("Knowledge retrieval failed; continuing without context.", exc_info=True)
            context = ""

        await self.send_upstream(protocol.user_text_item(protocol.build_contextual_prompt(context, text)))
        await self.send_upstream(protocol.response_create())
        _LOGGER.debug(
            "User turn forwarded upstream.",
            extra={"chars": len(text), "scope": scope, "context_chars": len(context)},
        )

    async def _handle_audio_chunk(self, message: AudioChunk) -> None:
        try:
            pcm = base64.b64decode(message.audio, validate=True)
        except (binascii.Error, ValueError):
            _LOGGER.warning("Dropping client audio chunk with invalid base64.")
            return
        await self._forward_audio(pcm, encoded=message.audio)

    async def _forward_audio(self, pcm: bytes, *, encoded: str | None = None) -> None:
        decision = self.audio_gate.evaluate(pcm)
        if not self.audio_gate.passes_everything:
            self.runtime.metrics.record_vad_sample(
                speech_frames=decision.speech_frames,
                total_frames=decision.total_frames,
                forwarded=decision.forward,
            )
        if not decision.forward:
            return
        await self.send_upstream(protocol.input_audio_append(encoded or base64.b64encode(pcm).decode("ascii")))
        self.state.pending_input_audio = True

    async def _handle_cancel(self, response_id: str | None) -> None:
        current = self.state.current_response_id
        if current is None or (response_id and response_id != current):
            _LOGGER.debug(
                "Ignoring cancel for inactive response.",
                extra={"response_id": response_id, "current_response_id": current},
            )
            return
        self.state.cancel_current_response()
        self.runtime.metrics.record_cancellation("client")
        await self.send_upstream(protocol.response_cancel(current))

    # Upstream -> client

    async def _upstream_loop(self) -> None:
        try:
            async for message in self.upstream.messages():
                if isinstance(message, bytes):
                    if not self.state.should_drop(None):
                        await self._send_client_bytes(message)
                    continue
                try:
                    event = decode_upstream_event(message)
                except ValueError:
                    _LOGGER.warning("Forwarding non-JSON upstream payload as-is.")
                    await self._send_client_text(message)
                    continue
                await self._handle_upstream_event(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.exception("Upstream event loop failed.")

    async def _handle_upstream_event(self, event: UpstreamEvent) -> None:
        kind = event.kind
        if kind in RESPONSE_OUTPUT_KINDS and self.state.should_drop(event.response_id):
            return

        if kind is UpstreamEventKind.RESPONSE_CREATED:
            self.state.begin_response(event.response_id)
        elif kind is UpstreamEventKind.RESPONSE_DONE:
            if event.response_id == self.state.current_response_id:
                self.state.current_response_id = None
        elif kind is UpstreamEventKind.TEXT_DELTA:
            sanitized = self.runtime.sanitizer.sanitize(event.delta or "")
            self.state.text_buffer.append(sanitized)
            await self.send_client({**event.raw, "delta": sanitized})
            return
        elif kind is UpstreamEventKind.TEXT_DONE:
            text = event.text if event.text is not None else "".join(self.state.text_buffer)
            await self.send_client({**event.raw, "text": self.runtime.sanitizer.sanitize(text)})
            return
        elif kind is UpstreamEventKind.AUDIO_TRANSCRIPT_DELTA:
            sanitized = self.runtime.sanitizer.sanitize(event.delta or "")
            self.state.transcript_buffer.append(sanitized)
            await self.send_client({**event.raw, "delta": sanitized})
            return
        elif kind is UpstreamEventKind.AUDIO_TRANSCRIPT_DONE:
            transcript = event.text if event.text is not None else "".join(self.state.transcript_buffer)
            await self.send_client({**event.raw, "transcript": self.runtime.sanitizer.sanitize(transcript)})
            return
        elif kind is UpstreamEventKind.AUDIO_DELTA:
            await self._forward_audio_delta(event)
            return
        elif kind is UpstreamEventKind.OUTPUT_ITEM_ADDED:
            if event.is_function_call_item:
                assert event.call_id is not None
                self.state.register_call(event.call_id, event.name)
        elif kind is UpstreamEventKind.FUNCTION_CALL_ARGUMENTS_DELTA:
            if event.call_id and event.delta:
                self.state.append_arguments(event.call_id, event.delta)
        elif kind is UpstreamEventKind.FUNCTION_CALL_ARGUMENTS_DONE:
            if event.call_id:
                call = self.state.complete_call(event.call_id, name=event.name, arguments=event.arguments)
                if call is not None:
                    self._dispatch_tool_call(call)
                else:
                    _LOGGER.debug("Ignoring repeated function call completion.", extra={"call_id": event.call_id})
        elif kind is UpstreamEventKind.ERROR:
            if event.is_benign_error:
                _LOGGER.debug("Suppressed benign upstream error.", extra={"code": event.error_code})
                return
            _LOGGER.error(
                "Upstream reported an error.",
                extra={"code": event.error_code, "error_message": event.error_message},
            )

        await self.send_client(event.raw)

    async def _forward_audio_delta(self, event: UpstreamEvent) -> None:
        if not event.delta:
            return
        try:
            audio = base64.b64decode(event.delta)
        except (binascii.Error, ValueError):
            _LOGGER.warning("Dropping upstream audio delta with invalid base64.")
            return
        await self._send_client_bytes(audio)

    def _dispatch_tool_call(self, call: PendingFunctionCall) -> None:
        task = asyncio.create_task(self._run_tool_call(call), name=f"tool-call:{call.call_id}")
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool_call(self, call: PendingFunctionCall) -> None:
        context = ToolCallContext(
            conversation_id=self.state.conversation_id,
            assistant_id=self.state.assistant_id,
        )
        try:
            await self.runtime.router.handle_tool_call(call, context=context, channel=self)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Only transport failures reach here; the router answers tool errors itself.
            _LOGGER.warning("Tool call could not be answered.", extra={"call_id": call.call_id}, exc_info=True)
