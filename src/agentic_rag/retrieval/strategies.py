"""Retrieval strategies and the backend fallback chain they run on.

Each strategy exposes ``retrieve(request) -> RetrievalResult``. Semantic and
keyword retrieval walk an ordered chain of steps (remote search, chunk index,
in-process scoring); a step that fails records a reason and hands over to the
next one, so a strategy always produces a result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Protocol

from agentic_rag.config import RetrievalConfig
from agentic_rag.errors import AgenticRagError, ProviderError
from agentic_rag.ingest.embedder import EmbeddingService
from agentic_rag.ingest.pipeline import ChunkIndexer
from agentic_rag.providers.base import SearchBackend, SearchHit
from agentic_rag.retrieval.cache import TTLCache
from agentic_rag.retrieval.fusion import FusionLayer, Ranked, clamp_score
from agentic_rag.retrieval.local import simulated_keyword_search, simulated_semantic_search
from agentic_rag.retrieval.query_expansion import QueryExpander
from agentic_rag.types import (
    Document,
    RetrievalBackend,
    RetrievalMetadata,
    RetrievalResult,
    ScoredChunk,
    Strategy,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetrievalRequest:
    query: str
    documents: list[Document]
    top_k: int
    knowledge_base_id: str | None = None
    sub_queries: list[str] | None = None

    def with_query(self, query: str, top_k: int | None = None) -> "RetrievalRequest":
        return replace(self, query=query, top_k=top_k or self.top_k)


class StepUnavailable(AgenticRagError):
    """A fallback step could not produce a result; the message is the reason."""


class RetrievalStep(Protocol):
    name: str

    async def retrieve(self, kind: Strategy, request: RetrievalRequest) -> RetrievalResult | None:
        """Return a result, None when the step is not configured, or raise StepUnavailable."""


class RemoteSearchStep:
    """Queries the remote search backend under an explicit timeout."""

    name = "remote"

    def __init__(
        self,
        backend: SearchBackend | None,
        embedder: EmbeddingService,
        config: RetrievalConfig,
    ) -> None:
        self.backend = backend
        self.embedder = embedder
        self.config = config

    async def retrieve(self, kind: Strategy, request: RetrievalRequest) -> RetrievalResult | None:
        if self.backend is None:
            return None
        timeout = self.config.remote_timeout_seconds
        try:
            hits = await asyncio.wait_for(self._search(kind, request, timeout), timeout)
        except asyncio.TimeoutError as exc:
            raise StepUnavailable(f"remote {kind.value} search timed out after {timeout}s") from exc
        except Exception as exc:
            logger.warning("Remote %s search failed: %s", kind.value, exc)
            raise StepUnavailable(f"remote {kind.value} search failed: {exc}") from exc

        ranked = _map_hits(hits, request.documents)
        if not ranked:
            raise StepUnavailable(
                f"remote {kind.value} search returned {len(hits)} hits with no matching documents"
            )
        top = ranked[: request.top_k]
        return RetrievalResult(
            documents=[doc for doc, _ in top],
            scores=[score for _, score in top],
            method=kind,
            query_used=request.query,
            metadata=RetrievalMetadata(
                retrieval_backend=RetrievalBackend.AZURE,
                remote_hit_count=len(hits),
            ),
        )

    async def _search(self, kind: Strategy, request: RetrievalRequest, timeout: float) -> list[SearchHit]:
        top = request.top_k
        if kind is Strategy.KEYWORD:
            return await self.backend.search(request.query, top, mode="keyword", timeout=timeout)
        embedding = await self.embedder.embed(request.query)
        if kind is Strategy.HYBRID:
            return await self.backend.hybrid_search(
                request.query, embedding, top, semantic_rerank=True, timeout=timeout
            )
        return await self.backend.vector_search(embedding, top, timeout=timeout)


class ChunkIndexStep:
    """Searches the per-knowledge-base chunk index and folds chunks into documents."""

    name = "chunks"

    def __init__(
        self,
        indexer: ChunkIndexer | None,
        embedder: EmbeddingService,
        fusion: FusionLayer,
        cache: TTLCache[RetrievalResult],
        config: RetrievalConfig,
    ) -> None:
        self.indexer = indexer
        self.embedder = embedder
        self.fusion = fusion
        self.cache = cache
        self.config = config

    async def retrieve(self, kind: Strategy, request: RetrievalRequest) -> RetrievalResult | None:
        if self.indexer is None or not request.knowledge_base_id:
            return None
        cache_key = (request.knowledge_base_id, kind.value, request.query, request.top_k)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return replace(cached, metadata=replace(cached.metadata, cache_hit=True))

        chunks = await self._search_chunks(kind, request)
        if not chunks:
            raise StepUnavailable(f"no chunks indexed for knowledge base {request.knowledge_base_id}")

        folded = self.fusion.fold_chunks(chunks, request.documents, request.top_k)
        if not folded:
            raise StepUnavailable(f"{len(chunks)} chunk hits matched none of the supplied documents")

        result = RetrievalResult(
            documents=[doc for doc, _ in folded],
            scores=[score for _, score in folded],
            method=kind,
            query_used=request.query,
            metadata=RetrievalMetadata(
                retrieval_backend=RetrievalBackend.LOCAL,
                chunk_based=True,
                total_chunks=len(chunks),
                unique_documents=len(folded),
            ),
        )
        self.cache.set(cache_key, result)
        return result

    async def _search_chunks(self, kind: Strategy, request: RetrievalRequest) -> list[ScoredChunk]:
        kb_id = request.knowledge_base_id
        limit = request.top_k * self.config.chunk_candidate_multiplier
        embedding = await self.embedder.embed(request.query) if kind is not Strategy.KEYWORD else None

        if embedding is not None:
            try:
                matches = await self.indexer.query_vectors(embedding, kb_id, limit)
            except ProviderError as exc:
                logger.warning("Vector query failed, using key-value chunk search: %s", exc)
            else:
                if matches:
                    return matches

        try:
            if embedding is not None:
                return await self.indexer.search_chunks_with_embedding(embedding, kb_id, limit)
            return await self.indexer.search_chunks(request.query, kb_id, limit)
        except ProviderError as exc:
            raise StepUnavailable(f"chunk store unavailable: {exc}") from exc


class SimulatedStep:
    """Term-frequency scoring over the supplied documents. Never fails."""

    name = "simulated"

    async def retrieve(self, kind: Strategy, request: RetrievalRequest) -> RetrievalResult:
        if kind is Strategy.KEYWORD:
            return simulated_keyword_search(request.query, request.documents, request.top_k)
        return simulated_semantic_search(request.query, request.documents, request.top_k)


class FallbackChain:
    """Runs steps in order until one produces a result."""

    def __init__(self, steps: list[RetrievalStep]) -> None:
        self.steps = steps

    async def run(self, kind: Strategy, request: RetrievalRequest) -> RetrievalResult:
        reasons: list[str] = []
        for step in self.steps:
            try:
                result = await step.retrieve(kind, request)
            except StepUnavailable as exc:
                reasons.append(str(exc))
                continue
            if result is None:
                continue
            if reasons:
                logger.info("%s retrieval fell back to %s: %s", kind.value, step.name, "; ".join(reasons))
                result = _with_reason(result, reasons)
            return result
        # The last step is always SimulatedStep, so this is only reached with an empty chain.
        return _with_reason(RetrievalResult.empty(request.query, kind), reasons)


class RetrievalStrategy(Protocol):
    async def retrieve(self, request: RetrievalRequest) -> RetrievalResult:
        """Return ranked documents for the request."""


class ChainStrategy:
    """Semantic or keyword retrieval over the full remote-first chain."""

    def __init__(self, kind: Strategy, chain: FallbackChain) -> None:
        self.kind = kind
        self.chain = chain

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResult:
        return await self.chain.run(self.kind, request)


class HybridStrategy:
    """Remote hybrid search, else a weighted blend of local semantic and keyword runs.

    The manual form runs both branches concurrently on the local chain at
    twice ``top_k`` and combines them with the configured weights.
    """

    def __init__(
        self,
        remote: RemoteSearchStep,
        local_chain: FallbackChain,
        fusion: FusionLayer,
    ) -> None:
        self.remote = remote
        self.local_chain = local_chain
        self.fusion = fusion

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResult:
        reasons: list[str] = []
        try:
            remote = await self.remote.retrieve(Strategy.HYBRID, request)
        except StepUnavailable as exc:
            reasons.append(str(exc))
        else:
            if remote is not None:
                return remote

        branch_request = request.with_query(request.query, request.top_k * 2)
        semantic, keyword = await asyncio.gather(
            self.local_chain.run(Strategy.SEMANTIC, branch_request),
            self.local_chain.run(Strategy.KEYWORD, branch_request),
        )
        ranked = self.fusion.weighted(semantic, keyword, request.top_k)
        for branch in (semantic, keyword):
            if branch.metadata.fallback_reason:
                reasons.append(branch.metadata.fallback_reason)
        return _from_ranked(
            ranked,
            Strategy.HYBRID,
            request.query,
            RetrievalMetadata(
                retrieval_backend=RetrievalBackend.LOCAL,
                chunk_based=semantic.metadata.chunk_based or keyword.metadata.chunk_based,
                fallback_reason="; ".join(reasons) or None,
                cache_hit=semantic.metadata.cache_hit and keyword.metadata.cache_hit,
            ),
        )


class MultiQueryStrategy:
    """Hybrid retrieval per sub-query, merged with an appearance boost."""

    def __init__(self, hybrid: HybridStrategy, fusion: FusionLayer) -> None:
        self.hybrid = hybrid
        self.fusion = fusion

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResult:
        if not request.sub_queries:
            return await self.hybrid.retrieve(request)

        results = await asyncio.gather(
            *(self.hybrid.retrieve(request.with_query(sub_query)) for sub_query in request.sub_queries)
        )
        ranked = self.fusion.by_appearance(list(results), request.top_k)
        return _from_ranked(
            ranked,
            Strategy.MULTI_QUERY,
            request.query,
            _merged_metadata(
                list(results),
                sub_query_results=dict(zip(request.sub_queries, results)),
            ),
        )


class RagFusionStrategy:
    """Hybrid retrieval per query variation, merged by Reciprocal Rank Fusion."""

    def __init__(
        self,
        hybrid: HybridStrategy,
        fusion: FusionLayer,
        expander: QueryExpander,
        config: RetrievalConfig,
    ) -> None:
        self.hybrid = hybrid
        self.fusion = fusion
        self.expander = expander
        self.config = config

    async def retrieve(self, request: RetrievalRequest) -> RetrievalResult:
        variations = await self.expander.variations(request.query, self.config.fusion_variations)
        results = await asyncio.gather(
            *(self.hybrid.retrieve(request.with_query(v, request.top_k * 2)) for v in variations)
        )
        ranked = self.fusion.reciprocal_rank(list(results), request.top_k)
        return _from_ranked(
            ranked,
            Strategy.RAG_FUSION,
            request.query,
            _merged_metadata(list(results), fusion_variations=variations),
        )


class DirectAnswerStrategy:
    async def retrieve(self, request: RetrievalRequest) -> RetrievalResult:
        return RetrievalResult.empty(request.query)


def _map_hits(hits: list[SearchHit], documents: list[Document]) -> Ranked:
    """Map remote hits to local documents, best hit per document, scores in [0, 1].

    Reranker scores take precedence; raw scores above 1 are divided by the
    largest one.
    """

    by_id = {doc.id: doc for doc in documents}
    raw: dict[str, float] = {}
    for hit in hits:
        doc_id = hit.document_id or hit.id
        if doc_id not in by_id:
            continue
        score = hit.reranker_score if hit.reranker_score is not None else hit.score
        raw[doc_id] = max(score, raw.get(doc_id, float("-inf")))
    if not raw:
        return []
    high = max(raw.values())
    scale = high if high > 1.0 else 1.0
    ranked = [(by_id[doc_id], clamp_score(score / scale)) for doc_id, score in raw.items()]
    return sorted(ranked, key=lambda item: item[1], reverse=True)


def _from_ranked(
    ranked: Ranked, method: Strategy, query: str, metadata: RetrievalMetadata
) -> RetrievalResult:
    return RetrievalResult(
        documents=[doc for doc, _ in ranked],
        scores=[score for _, score in ranked],
        method=method,
        query_used=query,
        metadata=metadata,
    )


def _merged_metadata(results: list[RetrievalResult], **extra) -> RetrievalMetadata:
    backend = (
        RetrievalBackend.AZURE
        if any(r.metadata.retrieval_backend is RetrievalBackend.AZURE for r in results)
        else RetrievalBackend.LOCAL
    )
    reasons = sorted({r.metadata.fallback_reason for r in results if r.metadata.fallback_reason})
    return RetrievalMetadata(
        retrieval_backend=backend,
        chunk_based=any(r.metadata.chunk_based for r in results),
        fallback_reason="; ".join(reasons) or None,
        **extra,
    )


def _with_reason(result: RetrievalResult, reasons: list[str]) -> RetrievalResult:
    if not reasons:
        return result
    return replace(result, metadata=replace(result.metadata, fallback_reason="; ".join(reasons)))
