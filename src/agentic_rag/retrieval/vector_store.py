"""Vector store contract and the in-memory adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from agentic_rag.ingest.embedder import cosine_similarity


@dataclass(frozen=True, slots=True)
class VectorRecord:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore(Protocol):
    """Minimal similarity-query contract keyed by chunk id."""

    async def upsert(self, vectors: list[VectorRecord]) -> None:
        """Insert or replace vectors."""

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return the closest vectors, best first."""

    async def delete(self, ids: list[str]) -> None:
        """Remove vectors by id; unknown ids are ignored."""


class InMemoryVectorStore:
    """Deterministic brute-force store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._store: dict[str, VectorRecord] = {}

    async def upsert(self, vectors: list[VectorRecord]) -> None:
        for record in vectors:
            self._store[record.id] = record

    async def query(
        self,
        vector: list[float],
        top_k: int = 5,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        ranked = sorted(
            (
                VectorMatch(
                    id=record.id,
                    score=cosine_similarity(vector, record.values),
                    metadata=dict(record.metadata),
                )
                for record in self._store.values()
                if _metadata_match(record.metadata, metadata_filter)
            ),
            key=lambda match: match.score,
            reverse=True,
        )
        return ranked[:top_k]

    async def delete(self, ids: list[str]) -> None:
        for vector_id in ids:
            self._store.pop(vector_id, None)

    def __len__(self) -> int:
        return len(self._store)


def _metadata_match(
    metadata: dict[str, Any], metadata_filter: dict[str, Any] | None
) -> bool:
    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        if metadata.get(key) != value:
            return False
    return True
