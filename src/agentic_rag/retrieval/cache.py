"""Short-lived retrieval cache and the embedding-keyed response cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Hashable
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter

from agentic_rag.ingest.embedder import EmbeddingService
from agentic_rag.providers.base import KeyValueStore
from agentic_rag.types import AgenticResponse

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Map whose entries expire ``ttl_seconds`` after they were written.

    Expired entries are dropped when read; there is no other eviction.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, V]] = {}

    def get(self, key: Hashable) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_RESPONSE_ADAPTER: TypeAdapter[AgenticResponse] = TypeAdapter(AgenticResponse)


class SemanticCache:
    """Caches whole responses per knowledge base under a coarse embedding key.

    The key is the first eight embedding components rounded to four decimals,
    so only queries with (near) identical embeddings share an entry.
    """

    KEY_PREFIX = "semantic-cache"

    def __init__(
        self,
        kv: KeyValueStore,
        embedder: EmbeddingService,
        *,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        self.embedder = embedder
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def get(self, query: str, knowledge_base_id: str) -> AgenticResponse | None:
        key = await self._key(query, knowledge_base_id)
        entry: dict[str, Any] | None = await self.kv.get(key)
        if entry is None:
            return None
        if self._clock() >= entry["expires_at"]:
            await self.kv.delete(key)
            return None
        logger.debug("Semantic cache hit for %r in %s", query, knowledge_base_id)
        return _RESPONSE_ADAPTER.validate_python(entry["response"])

    async def set(self, query: str, knowledge_base_id: str, response: AgenticResponse) -> None:
        key = await self._key(query, knowledge_base_id)
        await self.kv.set(
            key,
            {
                "response": _RESPONSE_ADAPTER.dump_python(response, mode="json"),
                "expires_at": self._clock() + self.ttl_seconds,
            },
        )

    async def _key(self, query: str, knowledge_base_id: str) -> str:
        embedding = await self.embedder.embed(query)
        digest = ":".join(str(round(value * 10000)) for value in embedding[:8])
        return f"{self.KEY_PREFIX}:{knowledge_base_id}:{digest}"
