"""Read queries for tools, instructions and sanitization rules."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from typing import Any

from ..instructions import InstructionBlock, InstructionSet
from ..sanitize import SanitizationRule
from ..tools.catalog import CatalogSnapshot, ToolDefinition
from .db import get_conn

_LOGGER = logging.getLogger(__name__)


def _from_jsonb(value: Any) -> Any:
    """Decodes JSONB columns returned as text by asyncpg."""
    if isinstance(value, str):
        return json.loads(value)
    return value


class CatalogRepository:
    """Loads catalog snapshots from the relational store."""

    async def fetch_tool_catalog(self) -> CatalogSnapshot:
        async with get_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT id, name, kind, definition_json
                FROM tools
                WHERE status = 'active'
                ORDER BY created_at ASC
                """
            )
        tools = []
        for row in rows:
            try:
                tools.append(
                    ToolDefinition.from_record(
                        tool_id=str(row["id"]),
                        name=row["name"],
                        kind=row["kind"],
                        definition=_from_jsonb(row["definition_json"]),
                    )
                )
            except ValueError:
                _LOGGER.warning("Skipping invalid tool row.", extra={"tool": row["name"]}, exc_info=True)
        return CatalogSnapshot(tools=tuple(tools))

    async def fetch_assistant_tool_names(self, assistant_id: str) -> list[str] | None:
        """Returns enabled, active tool names bound to an assistant.

        Returns:
            Tool names in binding order, or ``None`` when the assistant has no
            bindings at all.
        """
        async with get_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT t.name
                FROM assistant_tools AS at
                JOIN tools AS t ON t.id = at.tool_id
                WHERE at.assistant_id = $1 AND at.enabled AND t.status = 'active'
                ORDER BY at.created_at ASC
                """,
                assistant_id,
            )
        if not rows:
            return None
        return [row["name"] for row in rows]

    async def fetch_instruction_set(self) -> InstructionSet:
        async with get_conn() as conn:
            global_rows = await conn.fetch(
                """
                SELECT type, lines
                FROM instructions
                WHERE status = 'active' AND assistant_id IS NULL
                ORDER BY created_at ASC
                """
            )
            bound_rows = await conn.fetch(
                """
                SELECT ai.assistant_id, i.type, i.lines, ai.sort_order
                FROM assistant_instructions AS ai
                JOIN instructions AS i ON i.id = ai.instruction_id
                WHERE ai.enabled AND i.status = 'active'
                ORDER BY ai.assistant_id, ai.sort_order ASC
                """
            )
        global_blocks = tuple(
            InstructionBlock(key=row["type"], lines=tuple(str(line) for line in _from_jsonb(row["lines"]) or ()))
            for row in global_rows
        )
        assistant_blocks: dict[str, list[InstructionBlock]] = defaultdict(list)
        for row in bound_rows:
            assistant_blocks[str(row["assistant_id"])].append(
                InstructionBlock(
                    key=row["type"],
                    lines=tuple(str(line) for line in _from_jsonb(row["lines"]) or ()),
                    sort_order=int(row["sort_order"] or 0),
                )
            )
        return InstructionSet(
            global_blocks=global_blocks,
            assistant_blocks={key: tuple(blocks) for key, blocks in assistant_blocks.items()},
        )

    async def fetch_output_sanitization_rules(self) -> list[SanitizationRule]:
        async with get_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT pattern, flags, replacement, direction
                FROM sanitization_rules
                WHERE status = 'active' AND direction IN ('out', 'both')
                ORDER BY created_at ASC
                """
            )
        return [SanitizationRule.from_mapping(dict(row)) for row in rows]
