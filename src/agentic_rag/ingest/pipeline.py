"""Chunk index: chunk -> embed -> persist -> mirror into the vector store."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable

from agentic_rag.errors import ProviderError
from agentic_rag.ingest.chunker import Chunker
from agentic_rag.ingest.embedder import EmbeddingService, cosine_similarity
from agentic_rag.providers.base import KeyValueStore
from agentic_rag.retrieval.local import term_frequency_score
from agentic_rag.retrieval.vector_store import VectorRecord, VectorStore
from agentic_rag.types import ChunkStrategy, Document, DocumentChunk, ScoredChunk

logger = logging.getLogger(__name__)


class ChunkIndexer:
    """Maintains the per-knowledge-base chunk index.

    Chunks live in the key-value store under ``chunks-<kb_id>`` and, when a
    vector store is configured, as vectors carrying ``kbId``/``docId``/
    ``chunkIndex`` metadata. Re-chunking a document first deletes its old
    chunks, so a document's chunk set is always replaced wholesale.
    """

    KEY_PREFIX = "chunks"

    def __init__(
        self,
        kv: KeyValueStore,
        embedder: EmbeddingService,
        *,
        vector_store: VectorStore | None = None,
        chunker: Chunker | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or Chunker()
        self._clock = clock

    async def chunk_document(
        self,
        document_id: str,
        knowledge_base_id: str,
        title: str,
        content: str,
        source_type: str,
        source_url: str,
        strategy: ChunkStrategy | str = ChunkStrategy.SEMANTIC,
    ) -> list[DocumentChunk]:
        """Chunk, embed and store one document, replacing any earlier chunks."""

        strategy = ChunkStrategy(strategy)
        await self.delete_chunks_by_document(document_id, knowledge_base_id)

        pieces = self.chunker.chunk(content, strategy)
        embeddings = await self.embedder.embed_many([piece.text for piece in pieces])
        created_at = self._clock()
        chunks = [
            DocumentChunk(
                id=uuid.uuid4().hex,
                document_id=document_id,
                knowledge_base_id=knowledge_base_id,
                chunk_index=index,
                text=piece.text,
                start_index=piece.start_index,
                end_index=piece.end_index,
                tokens=piece.tokens,
                strategy=strategy,
                created_at=created_at,
                embedding=embedding,
                metadata={
                    "parent_document": {
                        "title": title,
                        "source_type": source_type,
                        "source_url": source_url,
                    }
                },
            )
            for index, (piece, embedding) in enumerate(zip(pieces, embeddings))
        ]

        await self.save_chunks(knowledge_base_id, chunks)
        await self._upsert_vectors(chunks)
        logger.info(
            "Indexed %d %s chunks for document %s in %s",
            len(chunks),
            strategy.value,
            document_id,
            knowledge_base_id,
        )
        return chunks

    async def index_document(
        self, document: Document, strategy: ChunkStrategy | str | None = None
    ) -> list[DocumentChunk]:
        return await self.chunk_document(
            document.id,
            document.knowledge_base_id,
            document.title,
            document.content,
            document.source_type,
            document.source_url,
            strategy or document.chunk_strategy or ChunkStrategy.SEMANTIC,
        )

    async def save_chunks(self, knowledge_base_id: str, chunks: list[DocumentChunk]) -> None:
        existing = await self.get_chunks_by_kb(knowledge_base_id)
        await self.kv.set(
            self._key(knowledge_base_id),
            [chunk.to_dict() for chunk in [*existing, *chunks]],
        )

    async def get_chunks_by_kb(self, knowledge_base_id: str) -> list[DocumentChunk]:
        stored = await self.kv.get(self._key(knowledge_base_id)) or []
        return [DocumentChunk.from_dict(item) for item in stored]

    async def get_chunks_by_document(self, document_id: str, knowledge_base_id: str) -> list[DocumentChunk]:
        chunks = await self.get_chunks_by_kb(knowledge_base_id)
        return [chunk for chunk in chunks if chunk.document_id == document_id]

    async def delete_chunks_by_document(self, document_id: str, knowledge_base_id: str) -> None:
        chunks = await self.get_chunks_by_kb(knowledge_base_id)
        removed = [chunk.id for chunk in chunks if chunk.document_id == document_id]
        if not removed:
            return
        kept = [chunk.to_dict() for chunk in chunks if chunk.document_id != document_id]
        await self.kv.set(self._key(knowledge_base_id), kept)
        await self._delete_vectors(removed)

    async def delete_chunks_by_kb(self, knowledge_base_id: str) -> None:
        chunks = await self.get_chunks_by_kb(knowledge_base_id)
        await self.kv.delete(self._key(knowledge_base_id))
        await self._delete_vectors([chunk.id for chunk in chunks])

    async def query_vectors(
        self, embedding: list[float], knowledge_base_id: str, limit: int
    ) -> list[ScoredChunk]:
        """Query the vector store and map matches back to stored chunks.

        Raises ``ProviderError`` when the vector store fails; returns an empty
        list when no vector store is configured.
        """

        if self.vector_store is None:
            return []
        matches = await self.vector_store.query(embedding, limit, {"kbId": knowledge_base_id})
        by_id = {chunk.id: chunk for chunk in await self.get_chunks_by_kb(knowledge_base_id)}
        return [
            ScoredChunk(chunk=by_id[match.id], score=_unit(match.score))
            for match in matches
            if match.id in by_id
        ]

    async def search_chunks(self, query: str, knowledge_base_id: str, limit: int = 5) -> list[ScoredChunk]:
        """Lexical chunk search over the key-value copy of the index."""
        chunks = await self.get_chunks_by_kb(knowledge_base_id)
        scored = [ScoredChunk(chunk=chunk, score=term_frequency_score(query, chunk.text)) for chunk in chunks]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:limit]

    async def search_chunks_with_embedding(
        self, embedding: list[float], knowledge_base_id: str, limit: int = 5
    ) -> list[ScoredChunk]:
        chunks = await self.get_chunks_by_kb(knowledge_base_id)
        scored = [
            ScoredChunk(chunk=chunk, score=_unit(cosine_similarity(embedding, chunk.embedding)))
            for chunk in chunks
            if chunk.embedding
        ]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:limit]

    async def _upsert_vectors(self, chunks: list[DocumentChunk]) -> None:
        if self.vector_store is None:
            return
        records = [
            VectorRecord(
                id=chunk.id,
                values=chunk.embedding,
                metadata={
                    "kbId": chunk.knowledge_base_id,
                    "docId": chunk.document_id,
                    "chunkIndex": chunk.chunk_index,
                },
            )
            for chunk in chunks
            if chunk.embedding
        ]
        try:
            await self.vector_store.upsert(records)
        except ProviderError as exc:
            logger.warning("Vector upsert failed; continuing without vector index: %s", exc)

    async def _delete_vectors(self, ids: list[str]) -> None:
        if self.vector_store is None or not ids:
            return
        try:
            await self.vector_store.delete(ids)
        except ProviderError as exc:
            logger.warning("Vector delete failed; chunks removed from key-value store only: %s", exc)

    def _key(self, knowledge_base_id: str) -> str:
        return f"{self.KEY_PREFIX}-{knowledge_base_id}"


def _unit(score: float) -> float:
    return min(max(score, 0.0), 1.0)
