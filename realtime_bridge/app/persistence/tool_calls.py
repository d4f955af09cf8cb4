"""Best-effort persistence of tool-call lifecycle rows and history messages."""

from __future__ import annotations

import json
import logging
from typing import Any

from .db import get_conn, transaction

_LOGGER = logging.getLogger(__name__)

STATUS_STARTED = "started"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


def _to_jsonb(value: Any) -> str:
    """Serializes a Python value for JSONB SQL parameters."""
    return json.dumps(value, default=str)


def _to_jsonb_or_none(value: Any | None) -> str | None:
    if value is None:
        return None
    return _to_jsonb(value)


class ToolCallStore:
    """Writes tool-call records without breaking the live stream.

    Every method logs and swallows database errors and reports success as a
    boolean so callers can chain dependent writes.
    """

    async def start_tool_call(
        self,
        *,
        record_id: str,
        conversation_id: str,
        tool_id: str | None,
        name: str,
        args: dict[str, Any],
    ) -> bool:
        """Inserts a ``started`` row for a dispatched call."""
        return await self._execute(
            operation_name="start_tool_call",
            query="""
                INSERT INTO tool_calls (id, conversation_id, tool_id, name, status, input_json, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, now())
                ON CONFLICT (id) DO NOTHING
            """,
            args=(record_id, conversation_id, tool_id, name, STATUS_STARTED, _to_jsonb(args)),
        )

    async def complete_tool_call(
        self,
        *,
        record_id: str,
        status: str,
        result: Any | None,
        error: str | None,
    ) -> bool:
        """Moves a ``started`` row to its terminal status.

        The update only matches rows still in ``started``, so a record reaches
        a terminal status at most once.

        Returns:
            True when exactly one row transitioned.
        """
        if status not in (STATUS_SUCCEEDED, STATUS_FAILED):
            raise ValueError(f"Unsupported terminal status: {status}")
        try:
            async with get_conn() as conn:
                outcome = await conn.execute(
                    """
                    UPDATE tool_calls
                    SET status = $2, result_json = $3, error = $4, completed_at = now()
                    WHERE id = $1 AND status = $5
                    """,
                    record_id,
                    status,
                    _to_jsonb_or_none(result),
                    error,
                    STATUS_STARTED,
                )
        except Exception:
            _LOGGER.warning("Tool call completion write failed.", extra={"record_id": record_id}, exc_info=True)
            return False
        transitioned = outcome == "UPDATE 1"
        if not transitioned:
            _LOGGER.debug("Tool call already completed or missing.", extra={"record_id": record_id})
        return transitioned

    async def append_tool_call_message(
        self,
        *,
        conversation_id: str,
        record_id: str,
        name: str,
        status: str,
    ) -> bool:
        """Appends the system history message for a completed call.

        A transaction-scoped advisory lock keyed on the conversation serializes
        appends, so concurrent completions in one conversation read distinct
        ``MAX(sequence)`` values.
        """
        meta = {"turnType": "tool_call", "toolName": name, "toolStatus": status}
        try:
            async with transaction() as conn:
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", conversation_id)
                await conn.execute(
                    """
                    INSERT INTO messages (conversation_id, sender, text, sequence, tool_call_id, meta, created_at)
                    SELECT $1, 'system', $2, COALESCE(MAX(sequence), 0) + 1, $3, $4, now()
                    FROM messages
                    WHERE conversation_id = $1
                    """,
                    conversation_id,
                    f"Tool call {name} ({status})",
                    record_id,
                    _to_jsonb(meta),
                )
                await conn.execute(
                    "UPDATE conversations SET updated_at = now() WHERE id = $1",
                    conversation_id,
                )
        except Exception:
            _LOGGER.warning(
                "Tool call history message write failed.",
                extra={"conversation_id": conversation_id, "record_id": record_id},
                exc_info=True,
            )
            return False
        return True

    async def _execute(self, operation_name: str, query: str, args: tuple[Any, ...]) -> bool:
        """Runs a single SQL write and logs failures without raising."""
        _LOGGER.debug(
            "Executing bridge DB write.",
            extra={"operation": operation_name, "arg_count": len(args)},
        )
        try:
            async with get_conn() as conn:
                await conn.execute(query, *args)
        except Exception:
            _LOGGER.warning("Bridge DB write failed during %s.", operation_name, exc_info=True)
            return False
        return True
