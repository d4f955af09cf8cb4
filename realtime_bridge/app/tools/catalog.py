"""Tool catalog snapshots and per-assistant tool lists.

The catalog is rebuilt from its source on every reload and swapped in as a new
``CatalogSnapshot``. Per-assistant upstream tool lists are cached for a short
TTL and dropped whenever a new snapshot lands.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LOGGER = logging.getLogger(__name__)

AssistantBindingLoader = Callable[[str], Awaitable[list[str] | None]]


class ToolKind(str, Enum):
    BUSINESS = "business"
    SESSION = "session"


class ToolRoute(BaseModel):
    """HTTP route a business tool maps to."""

    model_config = ConfigDict(extra="allow")

    method: str = "GET"
    path: str = "/"

    @field_validator("method")
    @classmethod
    def normalize_method(cls, value: str) -> str:
        return (value or "GET").upper()


class ToolDefinition(BaseModel):
    """Immutable tool metadata resolved by name at call time."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str = Field(min_length=1)
    kind: ToolKind = ToolKind.BUSINESS
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    routes: ToolRoute | None = None
    ui_command: str | None = None
    session_update: dict[str, Any] | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def coerce_kind(cls, value: Any) -> ToolKind:
        # Anything that is not explicitly a session tool is a business tool.
        return ToolKind.SESSION if value == ToolKind.SESSION.value else ToolKind.BUSINESS

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @classmethod
    def from_record(
        cls,
        *,
        name: str,
        kind: str | None,
        definition: Mapping[str, Any] | None,
        tool_id: str | None = None,
    ) -> ToolDefinition:
        """Builds a definition from a catalog row and its JSON definition."""
        definition = definition or {}
        return cls(
            id=tool_id,
            name=name,
            kind=kind or ToolKind.BUSINESS.value,
            description=definition.get("description"),
            parameters=definition.get("parameters") or {"type": "object", "properties": {}},
            routes=definition.get("routes"),
            ui_command=definition.get("ui_command"),
            session_update=definition.get("session_update"),
        )

    def to_upstream_schema(self) -> dict[str, Any]:
        """Returns the function-tool schema advertised to the realtime model."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(frozen=True)
class CatalogSnapshot:
    """Immutable view of the active tools.

    Attributes:
        tools: Active tools in catalog order.
        assistant_bindings: Tool names bound to assistant ids, used when the
            catalog source is a file.
    """

    tools: tuple[ToolDefinition, ...] = ()
    assistant_bindings: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    _by_name: dict[str, ToolDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {tool.name: tool for tool in self.tools})

    def get(self, name: str | None) -> ToolDefinition | None:
        if not name:
            return None
        return self._by_name.get(name)

    def upstream_tools(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        if names is None:
            return [tool.to_upstream_schema() for tool in self.tools]
        return [tool.to_upstream_schema() for name in names if (tool := self.get(name))]


def load_catalog_from_file(path: str | Path) -> CatalogSnapshot:
    """Reads tools from JSON.

    The file holds either a list of tool objects or ``{"tools": [...],
    "assistants": {assistant_id: [tool names]}}``. Entries that fail
    validation are skipped with a warning.
    """
    file_path = Path(path)
    if not file_path.exists():
        _LOGGER.debug("Tool catalog file not found.", extra={"path": str(file_path)})
        return CatalogSnapshot()
    payload = json.loads(file_path.read_text(encoding="utf-8"))
    entries = payload.get("tools", []) if isinstance(payload, dict) else payload
    bindings = payload.get("assistants", {}) if isinstance(payload, dict) else {}
    tools = []
    for entry in entries:
        try:
            tools.append(ToolDefinition.model_validate(entry))
        except ValueError as exc:
            _LOGGER.warning("Skipping invalid tool definition.", extra={"entry": entry, "error": str(exc)})
    return CatalogSnapshot(
        tools=tuple(tools),
        assistant_bindings={str(key): tuple(names) for key, names in bindings.items()},
    )


class ToolCatalog:
    """Holds the current catalog snapshot and a TTL cache of assistant tool lists."""

    def __init__(
        self,
        snapshot: CatalogSnapshot | None = None,
        *,
        binding_loader: AssistantBindingLoader | None = None,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._snapshot = snapshot or CatalogSnapshot()
        self._binding_loader = binding_loader
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._assistant_cache: dict[str, tuple[float, list[dict[str, Any]]]] = {}

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    def replace(self, snapshot: CatalogSnapshot) -> None:
        """Swaps in a new snapshot and invalidates assistant tool lists."""
        self._snapshot = snapshot
        self._assistant_cache = {}
        _LOGGER.info("Tool catalog loaded.", extra={"count": len(snapshot.tools)})

    def get(self, name: str | None) -> ToolDefinition | None:
        return self._snapshot.get(name)

    async def tools_for_assistant(self, assistant_id: str | None) -> list[dict[str, Any]]:
        """Returns upstream tool schemas for an assistant.

        Without an assistant id, or when the assistant has no known bindings,
        the whole active catalog is advertised. Binding lookup failures fall
        back to the whole catalog as well.
        """
        snapshot = self._snapshot
        if not assistant_id:
            return snapshot.upstream_tools()

        now = self._clock()
        cached = self._assistant_cache.get(assistant_id)
        if cached and cached[0] > now:
            return cached[1]

        names: Iterable[str] | None = snapshot.assistant_bindings.get(assistant_id)
        if self._binding_loader is not None:
            try:
                names = await self._binding_loader(assistant_id)
            except Exception:
                _LOGGER.warning(
                    "Assistant tool bindings could not be loaded.",
                    extra={"assistant_id": assistant_id},
                    exc_info=True,
                )
                return snapshot.upstream_tools()

        tools = snapshot.upstream_tools(names)
        if snapshot is self._snapshot:
            self._assistant_cache[assistant_id] = (now + self._ttl_seconds, tools)
        return tools
