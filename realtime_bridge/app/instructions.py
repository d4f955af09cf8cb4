"""System-instruction composition from named instruction blocks."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger(__name__)
_WORD_START = re.compile(r"\b\w")


@dataclass(frozen=True, slots=True)
class InstructionBlock:
    """Named list of instruction lines.

    Attributes:
        key: Block identifier, for example ``tone_and_style``.
        lines: Ordered instruction lines.
        sort_order: Position when the block is bound to an assistant.
    """

    key: str
    lines: tuple[str, ...]
    sort_order: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> InstructionBlock:
        lines = data.get("lines") or []
        return cls(
            key=str(data.get("key") or data.get("type") or ""),
            lines=tuple(str(line) for line in lines),
            sort_order=int(data.get("sort_order", data.get("sortOrder", 0)) or 0),
        )


def heading_for_key(key: str) -> str:
    """Turns ``tone_and_style`` into ``Tone And Style``."""
    return _WORD_START.sub(lambda match: match.group(0).upper(), key.replace("_", " "))


def compose_instructions(blocks: Mapping[str, Sequence[str]] | Iterable[InstructionBlock]) -> str:
    """Builds one instruction string from named blocks.

    Each non-empty block contributes a heading, its lines and a blank
    separator. Blank runs are collapsed to one line and the result carries no
    leading or trailing blank line.

    Args:
        blocks: Mapping of block key to lines, or ``InstructionBlock`` items in
            the order they should appear.

    Returns:
        Composed instructions, or an empty string when every block is empty.
    """
    if isinstance(blocks, Mapping):
        items = [(key, list(lines)) for key, lines in blocks.items()]
    else:
        items = [(block.key, list(block.lines)) for block in blocks]

    output: list[str] = []
    for key, lines in items:
        if not any(line.strip() for line in lines):
            continue
        output.append(heading_for_key(key))
        output.extend(lines)
        output.append("")

    collapsed: list[str] = []
    for line in output:
        if not line.strip():
            if not collapsed or not collapsed[-1]:
                continue
            collapsed.append("")
            continue
        collapsed.append(line)
    while collapsed and not collapsed[-1]:
        collapsed.pop()
    return "\n".join(collapsed)


def ordered_blocks(blocks: Iterable[InstructionBlock]) -> list[InstructionBlock]:
    """Sorts assistant-bound blocks by their explicit sort order."""
    return sorted(blocks, key=lambda block: block.sort_order)


def join_instructions(*parts: str) -> str:
    """Concatenates composed instruction sets, skipping empty ones."""
    return "\n\n".join(part for part in parts if part)


@dataclass(frozen=True, slots=True)
class InstructionSet:
    """Loaded instruction blocks.

    Attributes:
        global_blocks: Assistant-agnostic blocks in display order.
        assistant_blocks: Blocks bound to each assistant id.
    """

    global_blocks: tuple[InstructionBlock, ...] = ()
    assistant_blocks: Mapping[str, tuple[InstructionBlock, ...]] | None = None

    def global_instructions(self) -> str:
        return compose_instructions(self.global_blocks)

    def for_assistant(self, assistant_id: str | None) -> str:
        """Composes global and assistant instructions for a session."""
        assistant = ""
        if assistant_id and self.assistant_blocks:
            bound = self.assistant_blocks.get(assistant_id, ())
            assistant = compose_instructions(ordered_blocks(bound))
        return join_instructions(self.global_instructions(), assistant)


def load_instructions_from_file(path: str | Path) -> InstructionSet:
    """Reads instruction blocks from JSON.

    The file holds ``{"global": {key: [lines]}, "assistants": {id: [{key,
    lines, sort_order}]}}``. Missing files yield an empty set.
    """
    file_path = Path(path)
    if not file_path.exists():
        _LOGGER.debug("Instruction file not found.", extra={"path": str(file_path)})
        return InstructionSet()
    payload = json.loads(file_path.read_text(encoding="utf-8"))
    global_section = payload.get("global") or {}
    global_blocks = tuple(
        InstructionBlock(key=key, lines=tuple(str(line) for line in lines))
        for key, lines in global_section.items()
    )
    assistant_blocks = {
        str(assistant_id): tuple(InstructionBlock.from_mapping(entry) for entry in entries)
        for assistant_id, entries in (payload.get("assistants") or {}).items()
    }
    return InstructionSet(global_blocks=global_blocks, assistant_blocks=assistant_blocks)
