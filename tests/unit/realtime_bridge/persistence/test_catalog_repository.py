from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

import pytest

import realtime_bridge.app.persistence.catalog as catalog_module
from realtime_bridge.app.instructions import InstructionBlock
from realtime_bridge.app.persistence.catalog import CatalogRepository
from realtime_bridge.app.sanitize import SanitizationRule
from realtime_bridge.app.tools.catalog import ToolKind


def run(coro):
    return asyncio.run(coro)


class _FakeConnection:
    def __init__(self, fetch_results: list[list[dict[str, Any]]]) -> None:
        self._fetch_results = list(fetch_results)
        self.queries: list[tuple[str, tuple[Any, ...]]] = []

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self.queries.append((sql, args))
        if not self._fetch_results:
            return []
        return self._fetch_results.pop(0)


def _patch_db(monkeypatch: pytest.MonkeyPatch, conn: _FakeConnection) -> None:
    @contextlib.asynccontextmanager
    async def fake_get_conn():
        yield conn

    monkeypatch.setattr(catalog_module, "get_conn", fake_get_conn)


def test_fetch_tool_catalog_decodes_json_definitions(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection(
        [
            [
                {
                    "id": "t-1",
                    "name": "lookup_booking",
                    "kind": "business",
                    "definition_json": json.dumps({"description": "Find", "routes": {"path": "/bookings/:locator"}}),
                },
                {"id": "t-2", "name": "end_call", "kind": "session", "definition_json": {"ui_command": "hang_up"}},
                {"id": "t-3", "name": "", "kind": "business", "definition_json": None},
            ]
        ]
    )
    _patch_db(monkeypatch, conn)

    snapshot = run(CatalogRepository().fetch_tool_catalog())

    assert [tool.name for tool in snapshot.tools] == ["lookup_booking", "end_call"]
    assert snapshot.get("lookup_booking").id == "t-1"
    assert snapshot.get("end_call").kind is ToolKind.SESSION
    assert snapshot.get("end_call").ui_command == "hang_up"


def test_fetch_assistant_tool_names_returns_none_without_bindings(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection([[], [{"name": "end_call"}]])
    _patch_db(monkeypatch, conn)
    repository = CatalogRepository()

    assert run(repository.fetch_assistant_tool_names("a-1")) is None
    assert run(repository.fetch_assistant_tool_names("a-1")) == ["end_call"]
    assert conn.queries[0][1] == ("a-1",)


def test_fetch_instruction_set_groups_assistant_blocks(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection(
        [
            [{"type": "identity", "lines": json.dumps(["You are helpful."])}],
            [
                {"assistant_id": "a-1", "type": "focus", "lines": ["Bookings."], "sort_order": 1},
                {"assistant_id": "a-1", "type": "closing", "lines": ["Bye."], "sort_order": 2},
            ],
        ]
    )
    _patch_db(monkeypatch, conn)

    instruction_set = run(CatalogRepository().fetch_instruction_set())

    assert instruction_set.global_blocks == (InstructionBlock(key="identity", lines=("You are helpful.",)),)
    assert instruction_set.for_assistant("a-1") == (
        "Identity\nYou are helpful.\n\nFocus\nBookings.\n\nClosing\nBye."
    )


def test_fetch_output_sanitization_rules(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = _FakeConnection(
        [[{"pattern": r"\d+", "flags": "g", "replacement": "#", "direction": "both"}]]
    )
    _patch_db(monkeypatch, conn)

    rules = run(CatalogRepository().fetch_output_sanitization_rules())

    assert rules == [SanitizationRule(pattern=r"\d+", flags="g", replacement="#", direction="both")]
