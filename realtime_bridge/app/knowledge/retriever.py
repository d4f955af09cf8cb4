"""Knowledge retrieval for user turns.

Local knowledge is loaded once into an immutable ``KnowledgeArtifacts``
snapshot (item texts plus an embedding matrix). A reload builds a fresh
snapshot and swaps the reference; in-flight lookups keep using the one they
started with.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from .remote import Embedder, RemoteVectorIndex

_LOGGER = logging.getLogger(__name__)
BLOCK_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True, slots=True)
class KnowledgeItem:
    """Retrievable knowledge entry.

    Attributes:
        id: Stable item id used in citations.
        text: Item text injected as context.
        scope: Coarse topical filter.
        tags: Free-form labels.
        languages: Language codes the text covers.
    """

    id: str
    text: str
    scope: str | None = None
    tags: tuple[str, ...] = ()
    languages: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> KnowledgeItem:
        return cls(
            id=str(data["id"]),
            text=str(data.get("text") or ""),
            scope=data.get("scope"),
            tags=tuple(data.get("tags") or ()),
            languages=tuple(data.get("languages") or ()),
        )


@dataclass(frozen=True)
class KnowledgeArtifacts:
    """Snapshot of loaded knowledge.

    Attributes:
        vector_items: Items that carry an embedding, aligned with ``matrix`` rows.
        matrix: ``(len(vector_items), dim)`` float matrix, or ``None``.
        text_by_id: Every known item by id, used to resolve remote matches.
    """

    vector_items: tuple[KnowledgeItem, ...] = ()
    matrix: np.ndarray | None = None
    text_by_id: Mapping[str, KnowledgeItem] = field(default_factory=dict)

    @property
    def has_vectors(self) -> bool:
        return self.matrix is not None and len(self.vector_items) > 0

    @classmethod
    def from_records(
        cls,
        items: Sequence[Mapping[str, Any]],
        vectors: Sequence[Mapping[str, Any]],
    ) -> KnowledgeArtifacts:
        """Builds a snapshot from item and vector records.

        Vector records whose embeddings do not share the first record's
        dimension are dropped with a warning.
        """
        text_by_id: dict[str, KnowledgeItem] = {}
        for record in items:
            item = KnowledgeItem.from_mapping(record)
            text_by_id[item.id] = item

        vector_items: list[KnowledgeItem] = []
        rows: list[list[float]] = []
        for record in vectors:
            embedding = record.get("embedding")
            if not embedding:
                continue
            if rows and len(embedding) != len(rows[0]):
                _LOGGER.warning(
                    "Skipping knowledge vector with mismatched dimension.",
                    extra={"id": record.get("id"), "dimension": len(embedding)},
                )
                continue
            item = KnowledgeItem.from_mapping(record)
            vector_items.append(item)
            rows.append([float(value) for value in embedding])
            text_by_id.setdefault(item.id, item)

        matrix = np.asarray(rows, dtype=np.float32) if rows else None
        return cls(vector_items=tuple(vector_items), matrix=matrix, text_by_id=text_by_id)


def _read_json_list(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        _LOGGER.debug("Knowledge file not found.", extra={"path": str(path)})
        return []
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON list")
    return [entry for entry in payload if isinstance(entry, dict)]


def load_artifacts(items_path: str | Path, vectors_path: str | Path) -> KnowledgeArtifacts:
    """Loads knowledge files; missing files produce an empty snapshot."""
    artifacts = KnowledgeArtifacts.from_records(
        _read_json_list(Path(items_path)),
        _read_json_list(Path(vectors_path)),
    )
    _LOGGER.info(
        "Knowledge artifacts loaded.",
        extra={"vectors": len(artifacts.vector_items), "items": len(artifacts.text_by_id)},
    )
    return artifacts


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Returns cosine similarity, or 0.0 for zero-norm or mismatched vectors."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape or left.size == 0:
        return 0.0
    norm = float(np.linalg.norm(left) * np.linalg.norm(right))
    if norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / norm)


def format_block(item: KnowledgeItem) -> str:
    return f"[#{item.id}]\n{item.text}"


def assemble_context(items: Sequence[KnowledgeItem], max_chars: int) -> str:
    """Joins item blocks without exceeding ``max_chars``.

    The last block that does not fit is truncated to the remaining budget.
    """
    output = ""
    for item in items:
        block = format_block(item)
        separator = BLOCK_SEPARATOR if output else ""
        remaining = max_chars - len(output) - len(separator)
        if remaining <= 0:
            break
        if len(block) > remaining:
            output += separator + block[:remaining]
            break
        output += separator + block
    return output.strip()


class KnowledgeRetriever:
    """Builds a bounded, citation-tagged context block for a question."""

    def __init__(
        self,
        embedder: Embedder | None,
        artifacts: KnowledgeArtifacts | None = None,
        *,
        remote_index: RemoteVectorIndex | None = None,
        max_snippets: int = 5,
        max_chars: int = 3000,
        min_score: float = 0.2,
    ) -> None:
        self._embedder = embedder
        self._artifacts = artifacts or KnowledgeArtifacts()
        self._remote_index = remote_index
        self.max_snippets = max_snippets
        self.max_chars = max_chars
        self.min_score = min_score

    @property
    def artifacts(self) -> KnowledgeArtifacts:
        return self._artifacts

    def replace_artifacts(self, artifacts: KnowledgeArtifacts) -> None:
        self._artifacts = artifacts

    @property
    def enabled(self) -> bool:
        return self._embedder is not None and (
            self._artifacts.has_vectors or self._remote_index is not None
        )

    async def build_context(self, question: str, scope: str | None = None) -> str:
        """Returns context for ``question``, or ``""`` when nothing relevant exists.

        Args:
            question: User text to embed.
            scope: Optional scope filter.

        Returns:
            Context block no longer than ``max_chars``. Embedding or index
            failures degrade to the local fallback or to an empty string.
        """
        artifacts = self._artifacts
        if self._embedder is None or not question.strip():
            return ""
        if not artifacts.has_vectors and self._remote_index is None:
            return ""

        try:
            query_vector = await self._embedder.embed(question)
        except Exception:
            _LOGGER.warning("Query embedding failed; continuing without context.", exc_info=True)
            return ""

        if self._remote_index is not None:
            context = await self._remote_context(query_vector, scope, artifacts)
            if context:
                return context

        if not artifacts.has_vectors:
            _LOGGER.debug("No local knowledge vectors; returning empty context.")
            return ""
        return self._local_context(query_vector, scope, artifacts)

    async def _remote_context(
        self,
        query_vector: list[float],
        scope: str | None,
        artifacts: KnowledgeArtifacts,
    ) -> str:
        assert self._remote_index is not None
        try:
            ids = await self._remote_index.query(query_vector, scope)
        except Exception:
            _LOGGER.warning("Remote vector index query failed; using local fallback.", exc_info=True)
            return ""
        items = [artifacts.text_by_id[match_id] for match_id in ids if match_id in artifacts.text_by_id]
        _LOGGER.debug(
            "Remote vector index matches resolved.",
            extra={"matches": len(ids), "resolved": len(items)},
        )
        return assemble_context(items, self.max_chars)

    def _local_context(
        self,
        query_vector: list[float],
        scope: str | None,
        artifacts: KnowledgeArtifacts,
    ) -> str:
        assert artifacts.matrix is not None
        query = np.asarray(query_vector, dtype=np.float32)
        if query.shape[0] != artifacts.matrix.shape[1]:
            _LOGGER.warning(
                "Query embedding dimension does not match knowledge vectors.",
                extra={"query_dimension": int(query.shape[0]), "index_dimension": int(artifacts.matrix.shape[1])},
            )
            return ""

        norms = np.linalg.norm(artifacts.matrix, axis=1) * np.linalg.norm(query)
        dots = artifacts.matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        candidates = [
            (float(scores[index]), item)
            for index, item in enumerate(artifacts.vector_items)
            if not scope or item.scope == scope
        ]
        candidates.sort(key=lambda pair: pair[0], reverse=True)
        selected = [item for score, item in candidates[: self.max_snippets] if score >= self.min_score]
        if not selected:
            return ""
        return assemble_context(selected, self.max_chars)

    async def close(self) -> None:
        if self._remote_index is not None:
            await self._remote_index.close()
