"""Strategy dispatch for retrieval."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from agentic_rag.config import RetrievalConfig
from agentic_rag.ingest.embedder import EmbeddingService
from agentic_rag.ingest.pipeline import ChunkIndexer
from agentic_rag.obs.tracing import Timer
from agentic_rag.providers.base import LLMProvider, SearchBackend
from agentic_rag.retrieval.cache import TTLCache
from agentic_rag.retrieval.fusion import FusionLayer
from agentic_rag.retrieval.query_expansion import QueryExpander
from agentic_rag.retrieval.strategies import (
    ChainStrategy,
    ChunkIndexStep,
    DirectAnswerStrategy,
    FallbackChain,
    HybridStrategy,
    MultiQueryStrategy,
    RagFusionStrategy,
    RemoteSearchStep,
    RetrievalRequest,
    RetrievalStrategy,
    SimulatedStep,
)
from agentic_rag.types import Document, RetrievalResult, Strategy

logger = logging.getLogger(__name__)


class RetrievalExecutor:
    """Runs one of the retrieval strategies against a document set.

    Semantic and keyword retrieval try the remote search backend first, then
    the chunk index of ``knowledge_base_id``, then in-process scoring. The
    outcome of every call is annotated with the backend that served it and,
    when a step was skipped because it failed, the reason.
    """

    def __init__(
        self,
        config: RetrievalConfig | None = None,
        *,
        search_backend: SearchBackend | None = None,
        chunk_indexer: ChunkIndexer | None = None,
        embedder: EmbeddingService | None = None,
        llm: LLMProvider | None = None,
        expander: QueryExpander | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RetrievalConfig()
        self.embedder = embedder or (chunk_indexer.embedder if chunk_indexer else EmbeddingService())
        self.cache: TTLCache[RetrievalResult] = TTLCache(self.config.chunk_cache_ttl_seconds, clock=clock)

        fusion = FusionLayer(self.config)
        remote = RemoteSearchStep(search_backend, self.embedder, self.config)
        chunks = ChunkIndexStep(chunk_indexer, self.embedder, fusion, self.cache, self.config)
        full_chain = FallbackChain([remote, chunks, SimulatedStep()])
        local_chain = FallbackChain([chunks, SimulatedStep()])

        hybrid = HybridStrategy(remote, local_chain, fusion)
        self._strategies: dict[Strategy, RetrievalStrategy] = {
            Strategy.SEMANTIC: ChainStrategy(Strategy.SEMANTIC, full_chain),
            Strategy.KEYWORD: ChainStrategy(Strategy.KEYWORD, full_chain),
            Strategy.HYBRID: hybrid,
            Strategy.MULTI_QUERY: MultiQueryStrategy(hybrid, fusion),
            Strategy.RAG_FUSION: RagFusionStrategy(
                hybrid, fusion, expander or QueryExpander(llm), self.config
            ),
            Strategy.DIRECT_ANSWER: DirectAnswerStrategy(),
        }

    async def execute_retrieval(
        self,
        query: str,
        documents: list[Document],
        strategy: Strategy | str,
        top_k: int | None = None,
        sub_queries: list[str] | None = None,
        *,
        knowledge_base_id: str | None = None,
    ) -> RetrievalResult:
        strategy = Strategy(strategy)
        request = RetrievalRequest(
            query=query,
            documents=documents,
            top_k=top_k or self.config.top_k,
            knowledge_base_id=knowledge_base_id,
            sub_queries=sub_queries,
        )
        with Timer() as timer:
            result = await self._strategies[strategy].retrieve(request)
        logger.info(
            "Retrieved %d documents with %s via %s%s in %.1f ms",
            len(result.documents),
            strategy.value,
            result.metadata.retrieval_backend.value,
            " (chunks)" if result.metadata.chunk_based else "",
            timer.elapsed_ms,
        )
        return result

    def clear_cache(self) -> None:
        self.cache.clear()
