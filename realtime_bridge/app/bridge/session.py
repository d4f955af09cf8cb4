"""Per-connection bridge state."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class PendingFunctionCall:
    """Function call whose arguments are still streaming.

    Attributes:
        call_id: Opaque id correlating fragments and the eventual output.
        name: Function name, known once the output item is announced.
        arguments: Concatenated argument fragments.
    """

    call_id: str
    name: str | None = None
    arguments: str = ""


@dataclass
class BridgeSession:
    """Mutable state owned by one ``ConnectionBridge``.

    Attributes:
        conversation_id: Conversation the session persists into, if any.
        assistant_id: Assistant whose instructions and tools are active.
        current_response_id: Response currently streaming upstream.
        cancelled_response_id: Response whose output must be dropped.
        pending_calls: Function calls still receiving argument fragments.
        completed_call_ids: Calls already handed to the tool router.
        text_buffer: Sanitized text streamed for the current response.
        transcript_buffer: Sanitized audio transcript for the current response.
        audio_turn_active: Whether the client is between audio start and stop.
        pending_input_audio: Whether audio was forwarded in the current turn.
    """

    conversation_id: str | None = None
    assistant_id: str | None = None
    current_response_id: str | None = None
    cancelled_response_id: str | None = None
    pending_calls: dict[str, PendingFunctionCall] = field(default_factory=dict)
    completed_call_ids: set[str] = field(default_factory=set)
    text_buffer: list[str] = field(default_factory=list)
    transcript_buffer: list[str] = field(default_factory=list)
    audio_turn_active: bool = False
    pending_input_audio: bool = False

    def begin_response(self, response_id: str | None) -> None:
        """Resets per-turn buffers for a newly created response."""
        self.current_response_id = response_id
        self.cancelled_response_id = None
        self.text_buffer.clear()
        self.transcript_buffer.clear()

    def cancel_current_response(self) -> str | None:
        """Marks the current response as cancelled and returns its id."""
        if self.current_response_id is None:
            return None
        self.cancelled_response_id = self.current_response_id
        return self.cancelled_response_id

    def should_drop(self, response_id: str | None) -> bool:
        """Returns whether output for ``response_id`` belongs to a cancelled response."""
        if self.cancelled_response_id is None:
            return False
        # Output without a response id is attributed to the active response.
        return (response_id or self.current_response_id) == self.cancelled_response_id

    def register_call(self, call_id: str, name: str | None) -> PendingFunctionCall | None:
        """Starts accumulating a function call.

        Returns:
            The pending record, or ``None`` if the call already completed.
        """
        if call_id in self.completed_call_ids:
            return None
        pending = self.pending_calls.get(call_id)
        if pending is None:
            pending = PendingFunctionCall(call_id=call_id, name=name)
            self.pending_calls[call_id] = pending
        elif name and not pending.name:
            pending.name = name
        return pending

    def append_arguments(self, call_id: str, fragment: str) -> None:
        pending = self.register_call(call_id, None)
        if pending is not None:
            pending.arguments += fragment

    def complete_call(
        self,
        call_id: str,
        *,
        name: str | None = None,
        arguments: str | None = None,
    ) -> PendingFunctionCall | None:
        """Removes a pending call so it can be executed.

        A call id is returned at most once for the lifetime of the session;
        later completions for the same id return ``None``.

        Args:
            call_id: Function call id.
            name: Function name from the completion event, if present.
            arguments: Final argument string from the completion event; when
                given it replaces the accumulated fragments.
        """
        if call_id in self.completed_call_ids:
            return None
        pending = self.pending_calls.pop(call_id, None) or PendingFunctionCall(call_id=call_id)
        self.completed_call_ids.add(call_id)
        if name and not pending.name:
            pending.name = name
        if arguments is not None:
            pending.arguments = arguments
        return pending

    def reset_audio_turn(self) -> None:
        self.audio_turn_active = False
        self.pending_input_audio = False
