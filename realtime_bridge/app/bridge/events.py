"""Typed decoding of upstream events and client messages.

Upstream payloads are decoded once into an ``UpstreamEvent`` whose ``kind``
is a closed enum; the handler dispatches on ``kind`` instead of probing raw
dictionaries. Client frames are validated with a pydantic discriminated union.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

BENIGN_ERROR_CODES = frozenset({"input_audio_buffer_commit_empty"})


class UpstreamEventKind(str, Enum):
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    TEXT_DELTA = "response.text.delta"
    TEXT_DONE = "response.text.done"
    AUDIO_DELTA = "response.audio.delta"
    AUDIO_DONE = "response.audio.done"
    AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    OUTPUT_ITEM_ADDED = "response.output_item.added"
    FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"
    ERROR = "error"
    OTHER = "other"


_KIND_BY_TYPE = {kind.value: kind for kind in UpstreamEventKind if kind is not UpstreamEventKind.OTHER}

# Events whose payload belongs to a specific response and can be dropped after
# that response is cancelled.
RESPONSE_OUTPUT_KINDS = frozenset(
    {
        UpstreamEventKind.TEXT_DELTA,
        UpstreamEventKind.TEXT_DONE,
        UpstreamEventKind.AUDIO_DELTA,
        UpstreamEventKind.AUDIO_DONE,
        UpstreamEventKind.AUDIO_TRANSCRIPT_DELTA,
        UpstreamEventKind.AUDIO_TRANSCRIPT_DONE,
    }
)


@dataclass(frozen=True, slots=True)
class UpstreamEvent:
    """Decoded upstream event.

    Attributes:
        kind: Event discriminant.
        type: Raw ``type`` string, kept for events decoded as ``OTHER``.
        raw: Original payload, forwarded to the client.
        response_id: Response the event belongs to, when present.
        call_id: Function-call id for function-call events.
        name: Function name for ``OUTPUT_ITEM_ADDED`` function calls.
        delta: Text, transcript, audio or argument fragment.
        text: Final text for ``*_DONE`` events.
        arguments: Final argument string on ``FUNCTION_CALL_ARGUMENTS_DONE``.
        error_code: Error code for ``ERROR`` events.
        error_message: Error message for ``ERROR`` events.
    """

    kind: UpstreamEventKind
    type: str
    raw: dict[str, Any] = field(repr=False)
    response_id: str | None = None
    call_id: str | None = None
    name: str | None = None
    delta: str | None = None
    text: str | None = None
    arguments: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_function_call_item(self) -> bool:
        return self.kind is UpstreamEventKind.OUTPUT_ITEM_ADDED and self.call_id is not None

    @property
    def is_benign_error(self) -> bool:
        return self.kind is UpstreamEventKind.ERROR and self.error_code in BENIGN_ERROR_CODES


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def decode_upstream_event(payload: str | bytes) -> UpstreamEvent:
    """Decodes one upstream JSON payload.

    Raises:
        ValueError: If the payload is not a JSON object.
    """
    raw = json.loads(payload)
    if not isinstance(raw, dict):
        raise ValueError("Upstream event is not a JSON object")
    event_type = str(raw.get("type") or "")
    kind = _KIND_BY_TYPE.get(event_type, UpstreamEventKind.OTHER)

    response_id = _as_str(raw.get("response_id"))
    call_id: str | None = None
    name: str | None = None
    delta: str | None = None
    text: str | None = None
    arguments: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    if kind in (UpstreamEventKind.RESPONSE_CREATED, UpstreamEventKind.RESPONSE_DONE):
        response = raw.get("response") or {}
        response_id = _as_str(response.get("id")) if isinstance(response, dict) else None
    elif kind in (
        UpstreamEventKind.TEXT_DELTA,
        UpstreamEventKind.AUDIO_DELTA,
        UpstreamEventKind.AUDIO_TRANSCRIPT_DELTA,
    ):
        delta = _as_str(raw.get("delta"))
    elif kind is UpstreamEventKind.TEXT_DONE:
        text = _as_str(raw.get("text"))
    elif kind is UpstreamEventKind.AUDIO_TRANSCRIPT_DONE:
        text = _as_str(raw.get("transcript"))
    elif kind is UpstreamEventKind.OUTPUT_ITEM_ADDED:
        item = raw.get("item") or {}
        if isinstance(item, dict) and item.get("type") == "function_call":
            call_id = _as_str(item.get("call_id")) or _as_str(item.get("id"))
            name = _as_str(item.get("name"))
    elif kind is UpstreamEventKind.FUNCTION_CALL_ARGUMENTS_DELTA:
        call_id = _as_str(raw.get("call_id")) or _as_str(raw.get("item_id"))
        delta = (
            _as_str(raw.get("delta"))
            or _as_str(raw.get("arguments_delta"))
            or _as_str(raw.get("arguments"))
        )
    elif kind is UpstreamEventKind.FUNCTION_CALL_ARGUMENTS_DONE:
        call_id = _as_str(raw.get("call_id")) or _as_str(raw.get("item_id"))
        name = _as_str(raw.get("name"))
        arguments = _as_str(raw.get("arguments"))
    elif kind is UpstreamEventKind.ERROR:
        error = raw.get("error") or {}
        if isinstance(error, dict):
            error_code = _as_str(error.get("code"))
            error_message = _as_str(error.get("message"))

    return UpstreamEvent(
        kind=kind,
        type=event_type,
        raw=raw,
        response_id=response_id,
        call_id=call_id,
        name=name,
        delta=delta,
        text=text,
        arguments=arguments,
        error_code=error_code,
        error_message=error_message,
    )


class _ClientMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserMessage(_ClientMessage):
    type: Literal["user_message"]
    text: str = ""
    scope: str | None = None
    conversation_id: str | None = Field(default=None, alias="conversationId")
    assistant_id: str | None = Field(default=None, alias="assistantId")


class AudioStart(_ClientMessage):
    type: Literal["client.audio.start"]


class AudioChunk(_ClientMessage):
    type: Literal["client.audio.chunk"]
    audio: str = Field(min_length=1)


class AudioStop(_ClientMessage):
    type: Literal["client.audio.stop"]


class ResponseCancel(_ClientMessage):
    type: Literal["response.cancel"]
    response_id: str | None = None


ClientMessage = Annotated[
    Union[UserMessage, AudioStart, AudioChunk, AudioStop, ResponseCancel],
    Field(discriminator="type"),
]
_CLIENT_MESSAGE_ADAPTER: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def decode_client_message(payload: str) -> ClientMessage:
    """Validates one client JSON frame.

    Raises:
        pydantic.ValidationError: If the frame is malformed or its type unknown.
    """
    return _CLIENT_MESSAGE_ADAPTER.validate_json(payload)
