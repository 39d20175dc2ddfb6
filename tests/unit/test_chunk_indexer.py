import asyncio

from agentic_rag.ingest.embedder import EmbeddingService
from agentic_rag.ingest.pipeline import ChunkIndexer
from agentic_rag.retrieval.vector_store import InMemoryVectorStore
from agentic_rag.types import ChunkStrategy, Document

TEXT = "First paragraph about encryption.\n\nSecond paragraph about key rotation.\n\nThird about holidays."


def _indexer(kv, vector_store=None) -> ChunkIndexer:
    return ChunkIndexer(kv, EmbeddingService(), vector_store=vector_store, clock=lambda: 42.0)


def _chunk(indexer: ChunkIndexer, document_id: str = "doc-1", text: str = TEXT, kb: str = "kb-1"):
    return asyncio.run(
        indexer.chunk_document(
            document_id, kb, "Security", text, "markdown", "https://example.test/security", "paragraph"
        )
    )


def test_chunks_carry_parent_metadata_and_embeddings(kv) -> None:
    chunks = _chunk(_indexer(kv))

    assert [chunk.chunk_index for chunk in chunks] == [0, 1, 2]
    assert all(chunk.strategy is ChunkStrategy.PARAGRAPH for chunk in chunks)
    assert all(chunk.created_at == 42.0 for chunk in chunks)
    assert all(len(chunk.embedding) == 384 for chunk in chunks)
    assert chunks[0].metadata["parent_document"] == {
        "title": "Security",
        "source_type": "markdown",
        "source_url": "https://example.test/security",
    }
    assert len({chunk.id for chunk in chunks}) == 3


def test_rechunking_replaces_previous_chunks(kv) -> None:
    store = InMemoryVectorStore()
    indexer = _indexer(kv, store)
    _chunk(indexer)
    _chunk(indexer, document_id="doc-2", text="Other document.")

    replaced = _chunk(indexer, text="Only one paragraph now.")

    stored = asyncio.run(indexer.get_chunks_by_document("doc-1", "kb-1"))
    assert [chunk.id for chunk in stored] == [chunk.id for chunk in replaced]
    assert len(asyncio.run(indexer.get_chunks_by_kb("kb-1"))) == 2
    assert len(store) == 2


def test_vector_store_failure_keeps_key_value_chunks(kv, backends) -> None:
    indexer = _indexer(kv, backends["failing_vector"]())

    chunks = _chunk(indexer)

    assert len(asyncio.run(indexer.get_chunks_by_kb("kb-1"))) == len(chunks)


def test_delete_by_knowledge_base_removes_vectors(kv) -> None:
    store = InMemoryVectorStore()
    indexer = _indexer(kv, store)
    _chunk(indexer)
    _chunk(indexer, document_id="doc-3", kb="kb-2")

    asyncio.run(indexer.delete_chunks_by_kb("kb-1"))

    assert asyncio.run(indexer.get_chunks_by_kb("kb-1")) == []
    assert len(asyncio.run(indexer.get_chunks_by_kb("kb-2"))) == 3
    assert len(store) == 3


def test_vector_query_is_scoped_to_knowledge_base(kv) -> None:
    store = InMemoryVectorStore()
    indexer = _indexer(kv, store)
    [chunk, *_] = _chunk(indexer)
    _chunk(indexer, document_id="doc-3", kb="kb-2")

    matches = asyncio.run(indexer.query_vectors(chunk.embedding, "kb-1", limit=5))

    assert {match.chunk.knowledge_base_id for match in matches} == {"kb-1"}
    assert matches[0].chunk.id == chunk.id
    assert all(0.0 <= match.score <= 1.0 for match in matches)


def test_lexical_chunk_search(kv) -> None:
    indexer = _indexer(kv)
    _chunk(indexer)

    [best] = asyncio.run(indexer.search_chunks("key rotation", "kb-1", limit=1))

    assert best.chunk.text == "Second paragraph about key rotation."


def test_index_document_uses_document_strategy(kv) -> None:
    document = Document(
        id="doc-9",
        title="Guide",
        content=TEXT,
        knowledge_base_id="kb-9",
        chunk_strategy=ChunkStrategy.FIXED,
    )

    chunks = asyncio.run(_indexer(kv).index_document(document))

    assert {chunk.strategy for chunk in chunks} == {ChunkStrategy.FIXED}
