"""External services used by knowledge retrieval: embeddings and a vector index."""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import httpx
from openai import AsyncOpenAI

_LOGGER = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbedder:
    """Computes query embeddings with the OpenAI embeddings API."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self.model = model

    async def embed(self, text: str) -> list[float]:
        started = time.monotonic()
        response = await self._client.embeddings.create(model=self.model, input=text)
        _LOGGER.debug(
            "Query embedding computed.",
            extra={
                "model": self.model,
                "latency_ms": int((time.monotonic() - started) * 1000),
                "chars": len(text),
            },
        )
        return list(response.data[0].embedding)


class VectorIndexError(RuntimeError):
    """Raised when the remote vector index rejects a query."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Vector index request failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class RemoteVectorIndex:
    """Queries a Pinecone-compatible ``/query`` endpoint.

    The index stores only ids and metadata; callers map returned ids back to
    text through the local knowledge index.
    """

    def __init__(self, host: str, api_key: str, namespace: str, top_k: int) -> None:
        self.host = host.rstrip("/")
        self.api_key = api_key
        self.namespace = namespace
        self.top_k = top_k
        self._client = httpx.AsyncClient(timeout=10.0)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Api-Key": self.api_key}

    def build_query(self, vector: list[float], scope: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "vector": vector,
            "topK": self.top_k,
            "namespace": self.namespace,
            "includeMetadata": True,
            "includeValues": False,
        }
        if scope:
            body["filter"] = {"scope": scope}
        return body

    async def query(self, vector: list[float], scope: str | None) -> list[str]:
        """Returns matching ids in index order.

        Raises:
            VectorIndexError: If the index returns a non-2xx status.
            httpx.HTTPError: On transport failures.
        """
        started = time.monotonic()
        response = await self._client.post(
            f"{self.host}/query",
            json=self.build_query(vector, scope),
            headers=self._headers(),
        )
        _LOGGER.debug(
            "Vector index query completed.",
            extra={
                "status_code": response.status_code,
                "latency_ms": int((time.monotonic() - started) * 1000),
                "scope": scope,
            },
        )
        if response.status_code >= 400:
            raise VectorIndexError(response.status_code, response.text)
        body = response.json()
        matches = body.get("matches") if isinstance(body, dict) else None
        if not isinstance(matches, list):
            return []
        return [str(match["id"]) for match in matches if isinstance(match, dict) and "id" in match]

    async def close(self) -> None:
        await self._client.aclose()
