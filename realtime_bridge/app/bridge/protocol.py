"""Builders for messages the bridge sends upstream and to the client."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

CONTEXT_HEADER = "INTERNAL CONTEXT (company knowledge, do not read it out verbatim):"
CONTEXT_FOOTER = """INSTRUCTIONS FOR YOU, ASSISTANT:
- Use this context only when it is relevant to the answer.
- If the context does not cover the question, answer generally and say you do not have the exact detail.
- Do not invent booking data, statuses or policies; if the information is missing, say so."""
USER_PROMPT_PREFIX = "USER QUESTION:"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_contextual_prompt(context: str, user_text: str) -> str:
    """Wraps a user turn with retrieved context and usage guardrails."""
    if not context:
        return user_text
    return f"{CONTEXT_HEADER}\n{context}\n\n{CONTEXT_FOOTER}\n\n{USER_PROMPT_PREFIX}\n{user_text}".strip()


def session_update(
    *,
    instructions: str,
    tools: list[dict[str, Any]],
    voice: str,
    turn_detection_type: str,
) -> dict[str, Any]:
    """Full session configuration sent when the upstream connection opens."""
    session: dict[str, Any] = {
        "modalities": ["text", "audio"],
        "instructions": instructions,
        "input_audio_format": "pcm16",
        "output_audio_format": "pcm16",
        "turn_detection": {"type": turn_detection_type},
        "voice": voice,
    }
    if tools:
        session["tools"] = tools
        session["tool_choice"] = "auto"
    return {"type": "session.update", "session": session}


def session_patch(**fields: Any) -> dict[str, Any]:
    return {"type": "session.update", "session": fields}


def user_text_item(text: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def response_create() -> dict[str, Any]:
    return {"type": "response.create"}


def response_cancel(response_id: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": "response.cancel"}
    if response_id:
        payload["response_id"] = response_id
    return payload


def function_call_output(call_id: str, output: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "item": {"type": "function_call_output", "call_id": call_id, "output": output},
    }


def input_audio_append(audio_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio_b64}


def input_audio_clear() -> dict[str, Any]:
    return {"type": "input_audio_buffer.clear"}


def tool_log(name: str, status: str, args: dict[str, Any], message: str | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "tool.log",
        "name": name,
        "status": status,
        "args": args,
        "timestamp": _timestamp(),
    }
    if message is not None:
        payload["message"] = message
    return payload


def ui_command(command: str, args: dict[str, Any]) -> dict[str, Any]:
    return {"type": "ui.command", "command": command, "args": args, "timestamp": _timestamp()}
