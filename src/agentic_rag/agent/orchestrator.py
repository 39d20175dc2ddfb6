"""The agentic control loop: route, retrieve, generate, evaluate, retry."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

from agentic_rag.agent.conversation import ConversationWindow
from agentic_rag.agent.evaluator import SelfEvaluator, suggest_improvements
from agentic_rag.agent.generator import CLARIFY_FALLBACK_QUESTION, AnswerGenerator
from agentic_rag.agent.router import QueryRouter
from agentic_rag.config import AgentConfig, RetrievalConfig, Settings, TrackerConfig
from agentic_rag.errors import ProviderError, StructuralError
from agentic_rag.ingest.embedder import EmbeddingService
from agentic_rag.ingest.pipeline import ChunkIndexer
from agentic_rag.learning.tracker import PerformanceTracker
from agentic_rag.obs.tracing import LoopTrace, Timer
from agentic_rag.providers.base import EmbeddingProvider, KeyValueStore, LLMProvider, SearchBackend
from agentic_rag.retrieval.cache import SemanticCache
from agentic_rag.retrieval.executor import RetrievalExecutor
from agentic_rag.retrieval.query_expansion import QueryExpander
from agentic_rag.retrieval.vector_store import VectorStore
from agentic_rag.types import (
    AgenticResponse,
    ConversationTurn,
    CriticFeedback,
    Document,
    Intent,
    LoopState,
    ProgressStep,
    RelevanceToken,
    ResponseMetadata,
    RetrievalResult,
    RoutingDecision,
    SelfEvaluation,
    Strategy,
    SupportToken,
    UtilityToken,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressStep], None]

_DIRECT_EVALUATION = SelfEvaluation(
    relevance_token=RelevanceToken.RELEVANT,
    support_token=SupportToken.FULLY_SUPPORTED,
    utility_token=UtilityToken.USEFUL,
    confidence=0.9,
    needs_retry=False,
    reasoning="Direct answer without retrieval",
)

_CLARIFY_EVALUATION = SelfEvaluation(
    relevance_token=RelevanceToken.PARTIALLY_RELEVANT,
    support_token=SupportToken.NOT_SUPPORTED,
    utility_token=UtilityToken.SOMEWHAT_USEFUL,
    confidence=0.4,
    needs_retry=False,
    reasoning="Query too vague, requesting clarification",
)


@dataclass(frozen=True, slots=True)
class IterationResult:
    """Everything one pass through the loop produced, plus where to go next."""

    routing: RoutingDecision
    retrieval: RetrievalResult
    answer: str
    evaluation: SelfEvaluation
    next_state: LoopState
    criticism: CriticFeedback | None = None
    next_query: str | None = None


class Orchestrator:
    """Answers queries against one knowledge base with bounded self-correction.

    Each call to ``query`` walks an explicit state machine:
    ROUTE, then DIRECT_ANSWER, CLARIFY or RETRIEVE/GENERATE/EVALUATE, ending
    in ACCEPT, EXHAUSTED or CLARIFY, or looping through REFORMULATE. Every
    iteration yields an immutable ``IterationResult`` and the path taken is
    returned as the response trace.
    """

    def __init__(
        self,
        documents: list[Document],
        corpus_name: str,
        *,
        router: QueryRouter,
        executor: RetrievalExecutor,
        evaluator: SelfEvaluator,
        generator: AnswerGenerator,
        tracker: PerformanceTracker | None = None,
        semantic_cache: SemanticCache | None = None,
        knowledge_base_id: str | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.documents = documents
        self.corpus_name = corpus_name
        self.router = router
        self.executor = executor
        self.evaluator = evaluator
        self.generator = generator
        self.tracker = tracker
        self.semantic_cache = semantic_cache
        self.knowledge_base_id = knowledge_base_id
        self.config = config or AgentConfig()
        self._conversation = ConversationWindow(self.config.history_window)

    @classmethod
    def from_providers(
        cls,
        documents: list[Document],
        corpus_name: str,
        *,
        llm: LLMProvider | None = None,
        embeddings: EmbeddingProvider | None = None,
        kv: KeyValueStore | None = None,
        vector_store: VectorStore | None = None,
        search_backend: SearchBackend | None = None,
        knowledge_base_id: str | None = None,
        settings: Settings | None = None,
        config: AgentConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
        tracker_config: TrackerConfig | None = None,
        use_semantic_cache: bool = False,
    ) -> "Orchestrator":
        """Wire the default components around the given providers.

        When a search backend is given and ``settings`` configure remote
        search, the validated remote timeout replaces
        ``retrieval_config.remote_timeout_seconds``.
        """

        settings = settings or Settings()
        config = config or AgentConfig()
        retrieval_config = retrieval_config or RetrievalConfig()
        remote = settings.remote_search() if search_backend is not None else None
        if remote is not None:
            retrieval_config = retrieval_config.model_copy(
                update={"remote_timeout_seconds": remote.timeout_seconds}
            )
        embedder = EmbeddingService(embeddings)
        expander = QueryExpander(llm, model=settings.llm_model)
        indexer = ChunkIndexer(kv, embedder, vector_store=vector_store) if kv is not None else None
        return cls(
            documents,
            corpus_name,
            router=QueryRouter(
                llm,
                model=settings.llm_model,
                expander=expander,
                sub_query_count=retrieval_config.sub_query_count,
                variation_count=retrieval_config.fusion_variations,
            ),
            executor=RetrievalExecutor(
                retrieval_config,
                search_backend=search_backend,
                chunk_indexer=indexer,
                embedder=embedder,
                expander=expander,
            ),
            evaluator=SelfEvaluator(
                llm,
                support_model=settings.critic_model,
                utility_model=settings.llm_model,
                critic_model=settings.critic_model,
            ),
            generator=AnswerGenerator(
                llm,
                answer_model=settings.critic_model,
                chat_model=settings.llm_model,
                context_chars=config.context_chars_per_document,
            ),
            tracker=PerformanceTracker(kv, tracker_config) if kv is not None else None,
            semantic_cache=SemanticCache(kv, embedder) if kv is not None and use_semantic_cache else None,
            knowledge_base_id=knowledge_base_id,
            config=config,
        )

    async def query(
        self,
        text: str,
        config: AgentConfig | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> AgenticResponse:
        config = config or self.config
        cached = await self._cached_response(text)
        if cached is not None:
            self._conversation.append(text, cached.answer)
            return cached

        trace = LoopTrace()
        iteration = 0
        current_query = text
        last: IterationResult | None = None

        with Timer() as timer:
            while iteration < config.max_iterations:
                iteration += 1
                last = await self._iterate(iteration, text, current_query, config, trace, on_progress)
                trace.record(iteration, last.next_state)
                if last.next_state is not LoopState.REFORMULATE:
                    break
                current_query = last.next_query or text

        if last is None or last.routing is None or last.retrieval is None or last.evaluation is None:
            raise StructuralError("control loop finished without routing, retrieval or evaluation")

        self._conversation.append(text, last.answer)
        plan = suggest_improvements(last.evaluation, last.criticism)
        response = AgenticResponse(
            query_id=uuid.uuid4().hex,
            answer=last.answer,
            sources=[doc.title for doc in last.retrieval.documents],
            routing=last.routing,
            retrieval=last.retrieval,
            evaluation=last.evaluation,
            iterations=iteration,
            metadata=ResponseMetadata(
                total_time_ms=timer.elapsed_ms,
                retrieval_method=last.retrieval.method.value,
                confidence=last.evaluation.confidence,
                needs_improvement=plan.should_retry,
                improvement_suggestions=plan.actions or None,
            ),
            criticism=last.criticism,
            trace=trace.freeze(),
        )

        await self._record(text, response)
        if last.next_state is LoopState.ACCEPT and last.evaluation.confidence >= config.confidence_threshold:
            await self._cache_response(text, response)
        return response

    def get_conversation_history(self) -> list[ConversationTurn]:
        return self._conversation.turns()

    def clear_history(self) -> None:
        self._conversation.clear()

    async def _iterate(
        self,
        iteration: int,
        original_query: str,
        current_query: str,
        config: AgentConfig,
        trace: LoopTrace,
        on_progress: ProgressCallback | None,
    ) -> IterationResult:
        max_iterations = config.max_iterations
        emit = _Emitter(on_progress)

        trace.record(iteration, LoopState.ROUTE, current_query)
        emit("routing", "in_progress", f"Analyzing query (Iteration {iteration}/{max_iterations})", progress=10)
        routing = await self.router.route(
            current_query, self.corpus_name, len(self.documents), self._conversation.turns()
        )
        emit(
            "routing",
            "complete",
            "Query analysis complete",
            f"Intent: {routing.intent.value}, Strategy: {routing.strategy.value}",
            progress=20,
            metadata={"intent": routing.intent.value, "strategy": routing.strategy.value},
        )

        if iteration == 1 and routing.needs_retrieval:
            routing = await self._apply_learned_strategy(current_query, routing, emit)

        if routing.intent is Intent.CHITCHAT or not routing.needs_retrieval:
            trace.record(iteration, LoopState.DIRECT_ANSWER, routing.intent.value)
            emit("generation", "in_progress", "Generating direct response", progress=60)
            answer = await self.generator.direct_answer(current_query, routing.intent, self.corpus_name)
            emit("complete", "complete", "Response generated", progress=100)
            return IterationResult(
                routing=routing,
                retrieval=RetrievalResult.empty(current_query),
                answer=answer,
                evaluation=_DIRECT_EVALUATION,
                next_state=LoopState.ACCEPT,
            )

        if iteration == 1:
            clarification = await self.router.should_clarify(current_query, len(self.documents))
            if clarification.needs_clarification:
                emit("routing", "complete", "Clarification needed", progress=100)
                return IterationResult(
                    routing=replace(routing, reasoning="Query requires clarification"),
                    retrieval=RetrievalResult.empty(current_query),
                    answer=clarification.question or CLARIFY_FALLBACK_QUESTION,
                    evaluation=_CLARIFY_EVALUATION,
                    next_state=LoopState.CLARIFY,
                )

        retrieval = await self._retrieve(iteration, current_query, routing, config, trace, emit)

        trace.record(iteration, LoopState.GENERATE)
        emit("generation", "in_progress", "Generating response", progress=70)
        answer = await self.generator.answer(current_query, retrieval, self.corpus_name)

        trace.record(iteration, LoopState.EVALUATE)
        emit("evaluation", "in_progress", "Self-evaluating response quality", progress=80)
        evaluation = await self.evaluator.perform_self_evaluation(current_query, answer, retrieval)
        criticism = None
        if config.enable_criticism:
            emit("criticism", "in_progress", "Running critic analysis", progress=88)
            criticism = await self.evaluator.critic_response(current_query, answer, retrieval.documents)
        emit(
            "evaluation",
            "complete",
            f"Quality assessment: {evaluation.confidence * 100:.0f}% confidence",
            progress=90,
            metadata={"confidence": evaluation.confidence},
        )

        result = IterationResult(
            routing=routing,
            retrieval=retrieval,
            answer=answer,
            evaluation=evaluation,
            criticism=criticism,
            next_state=LoopState.ACCEPT,
        )

        if evaluation.confidence >= config.confidence_threshold or not config.enable_auto_retry:
            emit("complete", "complete", "Response meets quality threshold", progress=100)
            return result
        if iteration >= max_iterations:
            emit("complete", "complete", "Maximum iterations reached", progress=100)
            return replace(result, next_state=LoopState.EXHAUSTED)
        plan = suggest_improvements(evaluation, criticism)
        if not (evaluation.needs_retry and plan.should_retry):
            emit("complete", "complete", "Response finalized", "No further improvements possible", progress=100)
            return result

        emit(
            "retry",
            "in_progress",
            f"Retrying with improved query ({iteration + 1}/{max_iterations})",
            ", ".join(plan.actions[:2]),
            progress=96,
            metadata={"improvements": plan.actions},
        )
        reformulated = await self.generator.reformulate(original_query, evaluation, plan.actions)
        return replace(result, next_state=LoopState.REFORMULATE, next_query=reformulated)

    async def _retrieve(
        self,
        iteration: int,
        query: str,
        routing: RoutingDecision,
        config: AgentConfig,
        trace: LoopTrace,
        emit: "_Emitter",
    ) -> RetrievalResult:
        sub_queries = None
        if routing.strategy is Strategy.MULTI_QUERY:
            sub_queries = routing.sub_queries or await self.router.generate_sub_queries(query)

        trace.record(iteration, LoopState.RETRIEVE, routing.strategy.value)
        emit("retrieval", "in_progress", f"Executing {routing.strategy.value} retrieval", progress=45)
        retrieval = await self.executor.execute_retrieval(
            query,
            self.documents,
            routing.strategy,
            config.top_k,
            sub_queries,
            knowledge_base_id=self.knowledge_base_id,
        )
        emit(
            "retrieval",
            "complete",
            f"Retrieved {len(retrieval.documents)} documents",
            progress=55,
            metadata={
                "documents_found": len(retrieval.documents),
                "backend": retrieval.metadata.retrieval_backend.value,
                "fallback_reason": retrieval.metadata.fallback_reason,
            },
        )

        quality = self.router.evaluate_retrieval_quality(retrieval.documents, query, config.top_k)
        if quality.needs_fallback and routing.fallback_strategies and iteration < config.max_iterations:
            fallback = routing.fallback_strategies[0]
            trace.record(iteration, LoopState.RETRIEVE, f"fallback {fallback.value}")
            emit(
                "retrieval",
                "in_progress",
                "Trying fallback strategy",
                f"Initial results insufficient, using {fallback.value} strategy...",
                progress=62,
            )
            retrieval = await self.executor.execute_retrieval(
                query,
                self.documents,
                fallback,
                config.top_k,
                knowledge_base_id=self.knowledge_base_id,
            )
        return retrieval

    async def _apply_learned_strategy(
        self, query: str, routing: RoutingDecision, emit: "_Emitter"
    ) -> RoutingDecision:
        if self.tracker is None:
            return routing
        try:
            recommendation = await self.tracker.get_strategy_recommendation(
                query, routing.intent, len(self.documents)
            )
        except ProviderError as exc:
            logger.warning("Strategy recommendation unavailable: %s", exc)
            return routing
        if not (recommendation.based_on_historical_data and recommendation.confidence > 0.7):
            return routing
        emit(
            "routing",
            "complete",
            "Strategy optimized from learning",
            f"Using {recommendation.recommended_strategy.value}",
            progress=30,
            metadata={"learned": True, "strategy": recommendation.recommended_strategy.value},
        )
        return replace(
            routing,
            strategy=recommendation.recommended_strategy,
            reasoning=f"{routing.reasoning} (Using learned strategy: {recommendation.reasoning})",
        )

    async def _record(self, text: str, response: AgenticResponse) -> None:
        if self.tracker is None:
            return
        try:
            await self.tracker.record_query_performance(text, response)
        except ProviderError as exc:
            logger.error("Failed to record query performance for %s: %s", response.query_id, exc)

    async def _cached_response(self, text: str) -> AgenticResponse | None:
        if self.semantic_cache is None or not self.knowledge_base_id:
            return None
        try:
            return await self.semantic_cache.get(text, self.knowledge_base_id)
        except ProviderError as exc:
            logger.warning("Semantic cache lookup failed: %s", exc)
            return None

    async def _cache_response(self, text: str, response: AgenticResponse) -> None:
        if self.semantic_cache is None or not self.knowledge_base_id:
            return
        try:
            await self.semantic_cache.set(text, self.knowledge_base_id, response)
        except ProviderError as exc:
            logger.warning("Semantic cache write failed: %s", exc)


class _Emitter:
    """Sends progress steps to an optional callback; callback errors are logged."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self.callback = callback

    def __call__(
        self,
        phase: str,
        status: str,
        message: str,
        details: str = "",
        *,
        progress: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self.callback is None:
            return
        step = ProgressStep(
            phase=phase,
            status=status,
            message=message,
            timestamp=time.time(),
            details=details,
            progress=progress,
            metadata=metadata or {},
        )
        try:
            self.callback(step)
        except Exception:
            logger.exception("Progress callback failed for %s/%s", phase, status)
