"""Process-wide bridge resources shared by every connection.

``BridgeRuntime`` owns the read-mostly snapshots (tool catalog, sanitization
rules, instructions, knowledge artifacts) and the clients used to execute
tools and retrieve knowledge. Reloads build complete replacements and swap
references; connections never observe a half-loaded catalog.
"""

from __future__ import annotations

import asyncio
import logging

from openai import AsyncOpenAI

from .background import BackgroundTasks
from .config import Settings
from .instructions import InstructionSet, load_instructions_from_file
from .knowledge.remote import OpenAIEmbedder, RemoteVectorIndex
from .knowledge.retriever import KnowledgeRetriever, load_artifacts
from .observability.metrics import MetricsTracker
from .persistence.catalog import CatalogRepository
from .persistence.tool_calls import ToolCallStore
from .sanitize import Sanitizer, load_rules_from_file
from .tools.catalog import ToolCatalog, load_catalog_from_file
from .tools.http_client import ToolApiClient
from .tools.router import ToolRouter

_LOGGER = logging.getLogger(__name__)


class BridgeRuntime:
    """Shared services and snapshots for bridge connections."""

    def __init__(
        self,
        config: Settings,
        *,
        repository: CatalogRepository | None = None,
        openai_client: AsyncOpenAI | None = None,
        retriever: KnowledgeRetriever | None = None,
        api_client: ToolApiClient | None = None,
        store: ToolCallStore | None = None,
    ) -> None:
        self.config = config
        self.repository = repository
        self.openai_client = openai_client
        self.metrics = MetricsTracker()
        self.background = BackgroundTasks()
        self.sanitizer = Sanitizer()
        self.instructions = InstructionSet()
        self.catalog = ToolCatalog(
            binding_loader=repository.fetch_assistant_tool_names if repository else None,
            ttl_seconds=config.ASSISTANT_TOOLS_CACHE_TTL_S,
        )
        self.retriever = retriever or KnowledgeRetriever(
            OpenAIEmbedder(openai_client, config.EMBEDDING_MODEL) if openai_client else None,
            remote_index=(
                RemoteVectorIndex(
                    config.PINECONE_INDEX_HOST,
                    config.PINECONE_API_KEY,
                    config.PINECONE_NAMESPACE,
                    config.PINECONE_TOP_K,
                )
                if config.remote_index_enabled
                else None
            ),
            max_snippets=config.VECTOR_CONTEXT_MAX_SNIPPETS,
            max_chars=config.VECTOR_CONTEXT_MAX_CHARS,
            min_score=config.VECTOR_CONTEXT_MIN_SCORE,
        )
        self.api_client = api_client or (
            ToolApiClient(config.TOOL_API_BASE_URL, config.TOOL_API_TOKEN or None)
            if config.TOOL_API_BASE_URL
            else None
        )
        self.router = ToolRouter(
            self.catalog,
            self.api_client,
            store=store,
            metrics=self.metrics,
            background=self.background,
        )

    @classmethod
    def from_settings(cls, config: Settings, *, persistence: bool) -> BridgeRuntime:
        """Builds a runtime wired to real services.

        Args:
            config: Loaded settings.
            persistence: Whether the database is available for catalogs and
                tool-call records.
        """
        return cls(
            config,
            repository=CatalogRepository() if persistence else None,
            openai_client=AsyncOpenAI(api_key=config.OPENAI_API_KEY) if config.OPENAI_API_KEY else None,
            store=ToolCallStore() if persistence else None,
        )

    def instructions_for(self, assistant_id: str | None) -> str:
        return self.instructions.for_assistant(assistant_id)

    async def reload(self) -> None:
        """Reloads every snapshot, keeping the previous one for any part that fails."""
        await self._reload_tools()
        await self._reload_sanitizer()
        await self._reload_instructions()
        self._reload_knowledge()

    async def _reload_tools(self) -> None:
        try:
            if self.repository is not None:
                snapshot = await self.repository.fetch_tool_catalog()
            else:
                snapshot = load_catalog_from_file(self.config.TOOLS_CONFIG_PATH)
        except Exception:
            _LOGGER.exception("Tool catalog reload failed; keeping previous catalog.")
            return
        self.catalog.replace(snapshot)

    async def _reload_sanitizer(self) -> None:
        try:
            if self.repository is not None:
                rules = await self.repository.fetch_output_sanitization_rules()
            else:
                rules = load_rules_from_file(self.config.SANITIZE_CONFIG_PATH)
        except Exception:
            _LOGGER.exception("Sanitization rule reload failed; keeping previous rules.")
            return
        self.sanitizer.set_rules(rules)

    async def _reload_instructions(self) -> None:
        try:
            if self.repository is not None:
                instructions = await self.repository.fetch_instruction_set()
            else:
                instructions = load_instructions_from_file(self.config.INSTRUCTIONS_CONFIG_PATH)
        except Exception:
            _LOGGER.exception("Instruction reload failed; keeping previous instructions.")
            return
        self.instructions = instructions

    def _reload_knowledge(self) -> None:
        try:
            artifacts = load_artifacts(self.config.KNOWLEDGE_ITEMS_PATH, self.config.KNOWLEDGE_VECTORS_PATH)
        except Exception:
            _LOGGER.exception("Knowledge reload failed; keeping previous artifacts.")
            return
        self.retriever.replace_artifacts(artifacts)

    async def refresh_periodically(self, interval_s: float) -> None:
        """Reloads snapshots every ``interval_s`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval_s)
            _LOGGER.debug("Periodic catalog refresh starting.")
            await self.reload()

    async def close(self) -> None:
        await self.background.drain()
        if self.api_client is not None:
            await self.api_client.close()
        await self.retriever.close()
        if self.openai_client is not None:
            await self.openai_client.close()
