"""Per (intent, strategy) outcome tracking and strategy recommendation."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from agentic_rag.config import TrackerConfig
from agentic_rag.learning.insights import DAY_SECONDS, generate_insights
from agentic_rag.learning.models import (
    AlternativeStrategy,
    Feedback,
    LearningInsight,
    QueryPerformanceRecord,
    StrategyPerformanceMetric,
    StrategyRecommendation,
)
from agentic_rag.providers.base import KeyValueStore
from agentic_rag.types import AgenticResponse, Intent, Strategy

logger = logging.getLogger(__name__)


class PerformanceTracker:
    """Learns which retrieval strategy works for which intent.

    Every answered query is appended to a capped history and folded into the
    running averages of its ``(intent, strategy)`` metric. Updates are
    serialized with a lock, so concurrent queries on one tracker do not lose
    writes. Timestamps are seconds from ``clock``.
    """

    METRICS_KEY = "strategy-performance-data"
    HISTORY_KEY = "query-performance-history"
    INSIGHTS_KEY = "learning-insights"

    def __init__(
        self,
        kv: KeyValueStore,
        config: TrackerConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        self.config = config or TrackerConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def record_query_performance(self, query: str, response: AgenticResponse) -> QueryPerformanceRecord:
        record = QueryPerformanceRecord(
            id=response.query_id,
            timestamp=self._clock(),
            query=query,
            intent=response.routing.intent,
            strategy=response.routing.strategy,
            confidence=response.evaluation.confidence,
            iterations=response.iterations,
            time_ms=response.metadata.total_time_ms,
            needs_improvement=response.metadata.needs_improvement,
            retrieval_method=response.metadata.retrieval_method,
            documents_retrieved=len(response.retrieval.documents),
        )
        async with self._lock:
            history = await self.get_query_history()
            history.append(record)
            history = history[-self.config.history_limit :]
            await self._save_history(history)

            metrics = await self.get_all_metrics()
            metrics = self._apply_record(metrics, record)
            await self._save_metrics(metrics)
            await self._refresh_insights(metrics, history)
        return record

    async def record_user_feedback(self, query_id: str, feedback: Feedback | str) -> bool:
        """Attach feedback to a recorded query and re-score its success.

        The query is not counted again; only the success tally of its metric
        changes. Returns False when the query id is unknown.
        """

        feedback = Feedback(feedback)
        async with self._lock:
            history = await self.get_query_history()
            for index, record in enumerate(history):
                if record.id == query_id:
                    break
            else:
                logger.debug("Feedback for unknown query %s ignored", query_id)
                return False

            updated = record.model_copy(update={"user_feedback": feedback})
            history[index] = updated
            await self._save_history(history)

            metrics = await self.get_all_metrics()
            metrics = self._rescore(metrics, record, updated)
            await self._save_metrics(metrics)
            await self._refresh_insights(metrics, history)
        return True

    async def get_strategy_recommendation(
        self, query: str, intent: Intent, doc_count: int
    ) -> StrategyRecommendation:
        metrics = await self.get_metrics_for_intent(intent)
        if not metrics or all(m.total_queries < self.config.min_samples for m in metrics):
            return default_recommendation(intent, doc_count)

        history = await self.get_query_history()
        similar = self._similar_queries(query, history)
        now = self._clock()
        average_time = sum(m.average_retrieval_time_ms for m in metrics) / len(metrics)

        candidates: list[tuple[StrategyPerformanceMetric, float]] = []
        for metric in metrics:
            score = metric.success_rate * 0.5 + metric.average_confidence * 0.3
            if average_time > 0:
                score += (1 - metric.average_retrieval_time_ms / average_time) * 0.1
            if now - metric.last_used < DAY_SECONDS:
                score += 0.05
            score += metric.improvement_trend * 0.05
            similar_success = self._similar_success_rate(similar, metric.strategy)
            if similar_success > 0:
                score = score * 0.7 + similar_success * 0.3
            candidates.append((metric, score))

        candidates.sort(key=lambda item: item[1], reverse=True)
        best, best_score = candidates[0]
        return StrategyRecommendation(
            recommended_strategy=best.strategy,
            confidence=min(best_score, 0.95),
            reasoning=_recommendation_reasoning(best, len(similar)),
            alternative_strategies=[
                AlternativeStrategy(
                    strategy=metric.strategy,
                    score=score,
                    reason=(
                        f"Success rate: {metric.success_rate * 100:.1f}%, "
                        f"Avg confidence: {metric.average_confidence:.2f}"
                    ),
                )
                for metric, score in candidates[1:4]
            ],
            based_on_historical_data=True,
            similar_queries_analyzed=len(similar),
        )

    async def get_all_metrics(self) -> list[StrategyPerformanceMetric]:
        stored = await self.kv.get(self.METRICS_KEY) or []
        return [StrategyPerformanceMetric.model_validate(item) for item in stored]

    async def get_query_history(self) -> list[QueryPerformanceRecord]:
        stored = await self.kv.get(self.HISTORY_KEY) or []
        return [QueryPerformanceRecord.model_validate(item) for item in stored]

    async def get_insights(self) -> list[LearningInsight]:
        stored = await self.kv.get(self.INSIGHTS_KEY) or []
        return [LearningInsight.model_validate(item) for item in stored]

    async def get_metrics_for_intent(self, intent: Intent) -> list[StrategyPerformanceMetric]:
        return [m for m in await self.get_all_metrics() if m.intent is Intent(intent)]

    async def get_metrics_for_strategy(self, strategy: Strategy) -> list[StrategyPerformanceMetric]:
        return [m for m in await self.get_all_metrics() if m.strategy is Strategy(strategy)]

    async def clear_all_data(self) -> None:
        async with self._lock:
            for key in (self.METRICS_KEY, self.HISTORY_KEY, self.INSIGHTS_KEY):
                await self.kv.delete(key)

    def is_successful(self, record: QueryPerformanceRecord) -> bool:
        if record.confidence < self.config.success_confidence:
            return False
        if record.user_feedback is None:
            return not record.needs_improvement
        return record.user_feedback is Feedback.POSITIVE

    def _apply_record(
        self, metrics: list[StrategyPerformanceMetric], record: QueryPerformanceRecord
    ) -> list[StrategyPerformanceMetric]:
        strategy_id = f"{record.intent.value}-{record.strategy.value}"
        index, metric = _find_metric(metrics, strategy_id)
        if metric is None:
            metric = StrategyPerformanceMetric(
                strategy_id=strategy_id, intent=record.intent, strategy=record.strategy
            )

        n = metric.total_queries + 1
        successful = metric.successful_queries + (1 if self.is_successful(record) else 0)
        success_rate = successful / n
        updated = metric.model_copy(
            update={
                "total_queries": n,
                "successful_queries": successful,
                "average_confidence": _running(metric.average_confidence, record.confidence, n),
                "average_retrieval_time_ms": _running(metric.average_retrieval_time_ms, record.time_ms, n),
                "average_iterations": _running(metric.average_iterations, record.iterations, n),
                "success_rate": success_rate,
                "last_used": record.timestamp,
                "improvement_trend": success_rate - metric.success_rate,
            }
        )
        return _replace_metric(metrics, index, updated)

    def _rescore(
        self,
        metrics: list[StrategyPerformanceMetric],
        before: QueryPerformanceRecord,
        after: QueryPerformanceRecord,
    ) -> list[StrategyPerformanceMetric]:
        strategy_id = f"{after.intent.value}-{after.strategy.value}"
        index, metric = _find_metric(metrics, strategy_id)
        if metric is None or metric.total_queries == 0:
            return metrics
        delta = int(self.is_successful(after)) - int(self.is_successful(before))
        if delta == 0:
            return metrics
        successful = min(max(metric.successful_queries + delta, 0), metric.total_queries)
        success_rate = successful / metric.total_queries
        updated = metric.model_copy(
            update={
                "successful_queries": successful,
                "success_rate": success_rate,
                "improvement_trend": success_rate - metric.success_rate,
            }
        )
        return _replace_metric(metrics, index, updated)

    def _similar_queries(
        self, query: str, history: list[QueryPerformanceRecord]
    ) -> list[QueryPerformanceRecord]:
        words = query.lower().split()
        scored = []
        for record in history:
            record_words = record.query.lower().split()
            longest = max(len(words), len(record_words))
            if longest == 0:
                continue
            common = [w for w in words if len(w) > 3 and w in record_words]
            similarity = len(common) / longest
            if similarity > self.config.similar_query_threshold:
                scored.append((similarity, record))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [record for _, record in scored[: self.config.similar_query_limit]]

    def _similar_success_rate(self, similar: list[QueryPerformanceRecord], strategy: Strategy) -> float:
        matching = [record for record in similar if record.strategy is strategy]
        if not matching:
            return 0.0
        successes = sum(
            1
            for record in matching
            if record.confidence >= self.config.success_confidence
            and record.user_feedback is not Feedback.NEGATIVE
        )
        return successes / len(matching)

    async def _refresh_insights(
        self, metrics: list[StrategyPerformanceMetric], history: list[QueryPerformanceRecord]
    ) -> None:
        insights = generate_insights(metrics, history, self._clock(), self.config)
        if insights is None:
            return
        await self.kv.set(self.INSIGHTS_KEY, [i.model_dump(mode="json") for i in insights])

    async def _save_history(self, history: list[QueryPerformanceRecord]) -> None:
        await self.kv.set(self.HISTORY_KEY, [r.model_dump(mode="json") for r in history])

    async def _save_metrics(self, metrics: list[StrategyPerformanceMetric]) -> None:
        await self.kv.set(self.METRICS_KEY, [m.model_dump(mode="json") for m in metrics])


def default_recommendation(intent: Intent, doc_count: int) -> StrategyRecommendation:
    """Static per-intent choice used until there is enough history."""

    if intent is Intent.FACTUAL:
        strategy = Strategy.HYBRID if doc_count > 20 else Strategy.SEMANTIC
        reasoning = f"Default for factual queries: {strategy.value} retrieval works best for precise information lookup"
    elif intent is Intent.ANALYTICAL:
        strategy = Strategy.MULTI_QUERY
        reasoning = "Default for analytical queries: multi-query decomposition helps gather comprehensive information"
    elif intent is Intent.COMPARATIVE:
        strategy = Strategy.RAG_FUSION
        reasoning = "Default for comparative queries: RAG fusion captures multiple perspectives effectively"
    elif intent is Intent.PROCEDURAL:
        strategy = Strategy.SEMANTIC
        reasoning = "Default for procedural queries: semantic search finds step-by-step instructions"
    else:
        strategy = Strategy.HYBRID
        reasoning = "Default hybrid strategy balances keyword and semantic search"
    return StrategyRecommendation(
        recommended_strategy=strategy,
        confidence=0.5,
        reasoning=f"{reasoning} (no historical data yet)",
        based_on_historical_data=False,
    )


def _recommendation_reasoning(metric: StrategyPerformanceMetric, similar_count: int) -> str:
    reasons = []
    if metric.success_rate > 0.8:
        reasons.append(f"{metric.success_rate * 100:.0f}% success rate")
    if metric.average_confidence > 0.75:
        reasons.append(f"high confidence ({metric.average_confidence:.2f})")
    if metric.average_iterations < 1.5:
        reasons.append("typically resolves in one iteration")
    if similar_count > 5:
        reasons.append(f"{similar_count} similar successful queries")
    if metric.improvement_trend > 0.1:
        reasons.append("improving performance trend")
    if not reasons:
        return f"Based on {metric.total_queries} queries with {metric.strategy.value} strategy"
    return "Best choice: " + ", ".join(reasons)


def _running(average: float, value: float, n: int) -> float:
    return (average * (n - 1) + value) / n


def _find_metric(
    metrics: list[StrategyPerformanceMetric], strategy_id: str
) -> tuple[int | None, StrategyPerformanceMetric | None]:
    for index, metric in enumerate(metrics):
        if metric.strategy_id == strategy_id:
            return index, metric
    return None, None


def _replace_metric(
    metrics: list[StrategyPerformanceMetric], index: int | None, metric: StrategyPerformanceMetric
) -> list[StrategyPerformanceMetric]:
    if index is None:
        return [*metrics, metric]
    return [*metrics[:index], metric, *metrics[index + 1 :]]
