"""Embedding generation with a deterministic simulated fallback."""

from __future__ import annotations

import logging
from math import cos, sin, sqrt

from agentic_rag.config import ChunkingConfig
from agentic_rag.errors import ProviderError
from agentic_rag.providers.base import EmbeddingProvider

logger = logging.getLogger(__name__)


def string_hash(text: str) -> int:
    """32-bit signed rolling hash (``h * 31 + code``) of ``text``."""
    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    return value - (1 << 32) if value >= (1 << 31) else value


def simulated_embedding(text: str, dimension: int = 384) -> list[float]:
    """Deterministic pseudo-embedding seeded by ``string_hash(text)``.

    Identical text always yields an identical unit vector. The vector carries
    no semantics; it only keeps the pipeline running without a provider.
    """

    seed = string_hash(text)
    vector = [sin(seed * (i + 1)) * cos(seed * (i + 1) * 0.5) for i in range(dimension)]
    norm = sqrt(sum(value * value for value in vector))
    if norm == 0:
        return vector
    return [value / norm for value in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


class EmbeddingService:
    """Embeds text through the injected provider, falling back to simulation.

    The service never returns an empty vector: a missing provider, a provider
    error or a malformed provider response all produce the simulated
    embedding for the affected text.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        config: ChunkingConfig | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or ChunkingConfig()

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        if self.provider is not None:
            limit = self.config.max_embedding_text_length
            try:
                vectors = await self.provider.embed([text[:limit] for text in texts])
            except ProviderError as exc:
                logger.warning("Embedding provider failed, using simulated embeddings: %s", exc)
            else:
                if len(vectors) == len(texts):
                    return [
                        list(vector) if vector else self._simulate(text)
                        for text, vector in zip(texts, vectors)
                    ]
                logger.warning(
                    "Embedding provider returned %d vectors for %d texts, using simulated embeddings",
                    len(vectors),
                    len(texts),
                )
        return [self._simulate(text) for text in texts]

    def _simulate(self, text: str) -> list[float]:
        return simulated_embedding(text, self.config.embedding_dimension)
