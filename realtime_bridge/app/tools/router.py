"""Execution of model-initiated tool calls.

Each call runs through one state machine: parse arguments, record the call,
notify the client, dispatch by tool kind, record the outcome and always answer
the model with a ``function_call_output`` followed by ``response.create``.
Persistence writes are detached so a slow database never delays the answer.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from ..background import BackgroundTasks
from ..bridge import protocol
from ..bridge.session import PendingFunctionCall
from ..observability.metrics import MetricsTracker
from ..persistence.tool_calls import STATUS_FAILED, STATUS_STARTED, STATUS_SUCCEEDED, ToolCallStore
from .catalog import ToolCatalog, ToolDefinition, ToolKind
from .http_client import ToolApiClient
from .simulated import simulate_tool_response

_LOGGER = logging.getLogger(__name__)
_SESSION_PARAM_SUFFIX = "Param"


class ToolChannel(Protocol):
    """Outbound paths available to a tool call."""

    async def send_upstream(self, payload: dict[str, Any]) -> None: ...

    async def send_client(self, payload: dict[str, Any]) -> None: ...


@dataclass(frozen=True, slots=True)
class ToolCallContext:
    conversation_id: str | None = None
    assistant_id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolCallOutcome:
    """Result of one executed call.

    Attributes:
        call_id: Function call id answered upstream.
        name: Tool name reported to the client.
        output: Payload submitted to the model.
        status: ``succeeded`` or ``failed``.
        record_id: Persisted record id, when a conversation was known.
    """

    call_id: str
    name: str
    output: Any
    status: str
    record_id: str | None = None


def parse_arguments(raw: str | None, tool_name: str | None) -> dict[str, Any]:
    """Parses an argument string, falling back to ``{}`` with a warning."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        _LOGGER.warning("Tool arguments are not valid JSON.", extra={"tool": tool_name, "error": str(exc)})
        return {}
    if not isinstance(parsed, dict):
        _LOGGER.warning("Tool arguments are not a JSON object.", extra={"tool": tool_name})
        return {}
    return parsed


def _error_of(output: Any) -> str | None:
    if isinstance(output, dict) and output.get("error"):
        error = output["error"]
        return error if isinstance(error, str) else json.dumps(error, default=str)
    return None


class ToolRouter:
    """Resolves and executes tool calls for every connection."""

    def __init__(
        self,
        catalog: ToolCatalog,
        api_client: ToolApiClient | None,
        *,
        store: ToolCallStore | None,
        metrics: MetricsTracker,
        background: BackgroundTasks,
    ) -> None:
        self.catalog = catalog
        self.api_client = api_client
        self.store = store
        self.metrics = metrics
        self.background = background

    async def handle_tool_call(
        self,
        call: PendingFunctionCall,
        *,
        context: ToolCallContext,
        channel: ToolChannel,
    ) -> ToolCallOutcome:
        """Executes one call and answers the model.

        Tool errors never escape this method; they become an ``{"error": ...}``
        output that is still submitted upstream.

        Args:
            call: Completed function call.
            context: Conversation and assistant the call belongs to.
            channel: Upstream and client send paths of the connection.

        Returns:
            The submitted outcome.
        """
        started = time.monotonic()
        args = parse_arguments(call.arguments, call.name)
        tool = self.catalog.get(call.name)
        display_name = tool.name if tool else (call.name or "unknown_tool")

        record_id: str | None = None
        start_write: asyncio.Task[bool] | None = None
        if context.conversation_id and self.store is not None:
            record_id = str(uuid.uuid4())
            start_write = self.background.spawn(
                self.store.start_tool_call(
                    record_id=record_id,
                    conversation_id=context.conversation_id,
                    tool_id=tool.id if tool else None,
                    name=display_name,
                    args=args,
                ),
                name=f"tool-call-start:{call.call_id}",
            )

        await self._notify(channel, protocol.tool_log(display_name, STATUS_STARTED, args))

        failure_message: str | None = None
        try:
            output = await self._dispatch(tool, call.name, args, channel)
        except Exception as exc:
            _LOGGER.warning("Tool call failed.", extra={"tool": display_name, "call_id": call.call_id}, exc_info=True)
            failure_message = str(exc) or type(exc).__name__
            output = {"error": f"Tool {display_name} failed: {failure_message}"}

        error = _error_of(output)
        status = STATUS_FAILED if error else STATUS_SUCCEEDED
        await self._notify(
            channel,
            protocol.tool_log(display_name, status, args, message=(failure_message or error) if error else None),
        )

        if record_id is not None and start_write is not None and context.conversation_id:
            self.background.spawn(
                self._persist_completion(
                    start_write,
                    record_id=record_id,
                    conversation_id=context.conversation_id,
                    name=display_name,
                    status=status,
                    output=output,
                    error=error,
                ),
                name=f"tool-call-complete:{call.call_id}",
            )

        await channel.send_upstream(protocol.function_call_output(call.call_id, json.dumps(output, default=str)))
        await channel.send_upstream(protocol.response_create())

        self.metrics.record_tool_result(
            name=display_name,
            ok=error is None,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        _LOGGER.debug(
            "Tool call answered.",
            extra={"tool": display_name, "call_id": call.call_id, "status": status},
        )
        return ToolCallOutcome(
            call_id=call.call_id,
            name=display_name,
            output=output,
            status=status,
            record_id=record_id,
        )

    async def _dispatch(
        self,
        tool: ToolDefinition | None,
        requested_name: str | None,
        args: dict[str, Any],
        channel: ToolChannel,
    ) -> Any:
        if tool is None:
            return {"error": f"Unknown tool: {requested_name}"}
        if tool.kind is ToolKind.SESSION:
            return await self._run_session_tool(tool, args, channel)
        if tool.routes is not None and self.api_client is not None and self.api_client.configured:
            return await self.api_client.call(tool.routes, args)
        return simulate_tool_response(tool.name, args)

    async def _run_session_tool(
        self,
        tool: ToolDefinition,
        args: dict[str, Any],
        channel: ToolChannel,
    ) -> dict[str, Any]:
        """Emits the UI command and applies any session parameter mapping.

        ``session_update`` maps ``<field>Param`` keys to argument names, for
        example ``{"voiceParam": "voice"}``. Non-empty string arguments are
        sent upstream as a session patch and echoed in the output.
        """
        await channel.send_client(protocol.ui_command(tool.ui_command or tool.name, args))

        patch: dict[str, str] = {}
        for key, param_name in (tool.session_update or {}).items():
            if not key.endswith(_SESSION_PARAM_SUFFIX) or not param_name:
                continue
            value = args.get(str(param_name))
            if isinstance(value, str) and value.strip():
                patch[key[: -len(_SESSION_PARAM_SUFFIX)]] = value.strip()

        if not patch:
            return {"status": "ok"}
        await channel.send_upstream(protocol.session_patch(**patch))
        return {"status": "ok", **patch}

    async def _notify(self, channel: ToolChannel, payload: dict[str, Any]) -> None:
        try:
            await channel.send_client(payload)
        except Exception:
            _LOGGER.debug("Failed to send tool notification to client.", exc_info=True)

    async def _persist_completion(
        self,
        start_write: asyncio.Task[bool],
        *,
        record_id: str,
        conversation_id: str,
        name: str,
        status: str,
        output: Any,
        error: str | None,
    ) -> None:
        """Completes the record once its insert has finished."""
        assert self.store is not None
        if not await start_write:
            return
        transitioned = await self.store.complete_tool_call(
            record_id=record_id,
            status=status,
            result=output,
            error=error,
        )
        if not transitioned:
            return
        await self.store.append_tool_call_message(
            conversation_id=conversation_id,
            record_id=record_id,
            name=name,
            status=status,
        )
