import asyncio

import pytest

from agentic_rag.config import ChunkingConfig
from agentic_rag.errors import ProviderError
from agentic_rag.ingest.embedder import EmbeddingService, cosine_similarity, simulated_embedding, string_hash


class _RecordingProvider:
    def __init__(self, vectors=None, error=None) -> None:
        self.vectors = vectors
        self.error = error
        self.inputs: list[list[str]] = []

    async def embed(self, texts):
        self.inputs.append(list(texts))
        if self.error:
            raise self.error
        return self.vectors


def test_simulated_embedding_is_deterministic_unit_vector() -> None:
    first = simulated_embedding("customer data encryption")
    second = simulated_embedding("customer data encryption")

    assert first == second
    assert len(first) == 384
    assert sum(v * v for v in first) == pytest.approx(1.0)


def test_string_hash_matches_signed_32_bit_rolling_hash() -> None:
    assert string_hash("") == 0
    assert string_hash("a") == 97
    assert string_hash("ab") == 97 * 31 + 98
    assert -(2**31) <= string_hash("x" * 500) < 2**31


def test_cosine_similarity_properties() -> None:
    vector = simulated_embedding("policy")
    near = simulated_embedding("policy")
    other = simulated_embedding("holiday arrangements in the handbook")

    assert cosine_similarity(vector, vector) == pytest.approx(1.0)
    assert cosine_similarity(vector, near) > cosine_similarity(vector, other)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_service_falls_back_when_provider_fails() -> None:
    provider = _RecordingProvider(error=ProviderError("embeddings", "rate limited"))
    service = EmbeddingService(provider, ChunkingConfig(embedding_dimension=16))

    vectors = asyncio.run(service.embed_many(["a", "b"]))

    assert vectors == [simulated_embedding("a", 16), simulated_embedding("b", 16)]


def test_service_falls_back_on_count_mismatch_and_empty_vectors() -> None:
    mismatched = EmbeddingService(_RecordingProvider(vectors=[[1.0]]), ChunkingConfig(embedding_dimension=8))
    partial = EmbeddingService(_RecordingProvider(vectors=[[0.5, 0.5], []]), ChunkingConfig(embedding_dimension=8))

    assert asyncio.run(mismatched.embed_many(["a", "b"])) == [
        simulated_embedding("a", 8),
        simulated_embedding("b", 8),
    ]
    assert asyncio.run(partial.embed_many(["a", "b"])) == [[0.5, 0.5], simulated_embedding("b", 8)]


def test_service_truncates_long_inputs() -> None:
    provider = _RecordingProvider(vectors=[[1.0, 0.0]])
    service = EmbeddingService(provider, ChunkingConfig(max_embedding_text_length=5))

    asyncio.run(service.embed("abcdefghij"))

    assert provider.inputs == [["abcde"]]
