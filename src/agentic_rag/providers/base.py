"""Provider contracts consumed by the engine.

Concrete LLM, embedding, vector store, key-value and remote search backends
live outside the engine and are injected through these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class LLMProvider(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        json_mode: bool = False,
    ) -> str:
        """Return the model completion; raise ``ProviderError`` on failure."""


class EmbeddingProvider(Protocol):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, one vector per input."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None:
        """Return the stored value or None."""

    async def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value."""

    async def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""

    async def has(self, key: str) -> bool:
        """Return whether the key exists."""

    async def keys(self, prefix: str | None = None) -> list[str]:
        """List keys, optionally restricted to a prefix."""


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A remote search hit that maps back to a local document id."""

    id: str
    score: float
    reranker_score: float | None = None
    document_id: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)


class SearchBackend(Protocol):
    async def search(
        self,
        query: str,
        top: int,
        *,
        mode: str = "keyword",
        timeout: float | None = None,
    ) -> list[SearchHit]:
        """Lexical search."""

    async def vector_search(
        self,
        embedding: list[float],
        top: int,
        *,
        timeout: float | None = None,
    ) -> list[SearchHit]:
        """Vector similarity search."""

    async def hybrid_search(
        self,
        query: str,
        embedding: list[float],
        top: int,
        *,
        semantic_rerank: bool = True,
        timeout: float | None = None,
    ) -> list[SearchHit]:
        """Combined vector + keyword search with optional reranking."""
