import asyncio
import uuid

import pytest

from agentic_rag.config import TrackerConfig
from agentic_rag.learning.insights import DAY_SECONDS, generate_insights
from agentic_rag.learning.models import Feedback, InsightType, QueryPerformanceRecord, StrategyPerformanceMetric
from agentic_rag.learning.tracker import PerformanceTracker
from agentic_rag.types import (
    AgenticResponse,
    Intent,
    RelevanceToken,
    ResponseMetadata,
    RetrievalResult,
    RoutingDecision,
    SelfEvaluation,
    Strategy,
    SupportToken,
    UtilityToken,
)


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _response(
    confidence: float,
    intent: Intent = Intent.FACTUAL,
    strategy: Strategy = Strategy.HYBRID,
    *,
    iterations: int = 1,
    time_ms: float = 100.0,
    needs_improvement: bool = False,
) -> AgenticResponse:
    return AgenticResponse(
        query_id=uuid.uuid4().hex,
        answer="answer",
        sources=[],
        routing=RoutingDecision(
            intent=intent,
            strategy=strategy,
            needs_retrieval=True,
            parallelizable=False,
            confidence=0.7,
            reasoning="test",
        ),
        retrieval=RetrievalResult.empty("q", strategy),
        evaluation=SelfEvaluation(
            relevance_token=RelevanceToken.RELEVANT,
            support_token=SupportToken.FULLY_SUPPORTED,
            utility_token=UtilityToken.USEFUL,
            confidence=confidence,
            needs_retry=False,
            reasoning="test",
        ),
        iterations=iterations,
        metadata=ResponseMetadata(
            total_time_ms=time_ms,
            retrieval_method=strategy.value,
            confidence=confidence,
            needs_improvement=needs_improvement,
        ),
    )


def _record(tracker: PerformanceTracker, query: str, response: AgenticResponse):
    return asyncio.run(tracker.record_query_performance(query, response))


def test_running_averages_and_trend(kv) -> None:
    tracker = PerformanceTracker(kv)

    _record(tracker, "encryption policy", _response(0.8, time_ms=100.0))
    _record(tracker, "encryption keys", _response(0.6, time_ms=300.0, iterations=3))

    [metric] = asyncio.run(tracker.get_all_metrics())
    assert metric.strategy_id == "factual-hybrid"
    assert metric.total_queries == 2
    assert metric.successful_queries == 1
    assert metric.average_confidence == pytest.approx(0.7)
    assert metric.average_retrieval_time_ms == pytest.approx(200.0)
    assert metric.average_iterations == pytest.approx(2.0)
    assert metric.success_rate == pytest.approx(0.5)
    assert metric.improvement_trend < 0


def test_needs_improvement_is_not_a_success(kv) -> None:
    tracker = PerformanceTracker(kv)

    _record(tracker, "q", _response(0.9, needs_improvement=True))

    [metric] = asyncio.run(tracker.get_all_metrics())
    assert metric.successful_queries == 0


def test_default_recommendation_until_enough_samples(kv) -> None:
    tracker = PerformanceTracker(kv)
    _record(tracker, "q1", _response(0.9))
    _record(tracker, "q2", _response(0.9))

    factual_small = asyncio.run(tracker.get_strategy_recommendation("q", Intent.FACTUAL, 5))
    factual_large = asyncio.run(tracker.get_strategy_recommendation("q", Intent.FACTUAL, 50))
    comparative = asyncio.run(tracker.get_strategy_recommendation("q", Intent.COMPARATIVE, 5))

    assert factual_small.recommended_strategy is Strategy.SEMANTIC
    assert factual_large.recommended_strategy is Strategy.HYBRID
    assert comparative.recommended_strategy is Strategy.RAG_FUSION
    assert not factual_small.based_on_historical_data
    assert factual_small.confidence == 0.5
    assert "no historical data yet" in factual_small.reasoning


def test_history_based_recommendation_prefers_successful_strategy(kv) -> None:
    clock = _Clock()
    tracker = PerformanceTracker(kv, clock=clock)
    for _ in range(4):
        _record(tracker, "encryption policy details", _response(0.9, strategy=Strategy.KEYWORD))
        _record(tracker, "encryption policy overview", _response(0.3, strategy=Strategy.SEMANTIC))

    recommendation = asyncio.run(
        tracker.get_strategy_recommendation("encryption policy scope", Intent.FACTUAL, 5)
    )

    assert recommendation.based_on_historical_data
    assert recommendation.recommended_strategy is Strategy.KEYWORD
    assert recommendation.confidence <= 0.95
    assert [alt.strategy for alt in recommendation.alternative_strategies] == [Strategy.SEMANTIC]
    assert recommendation.similar_queries_analyzed == 8
    assert recommendation.reasoning.startswith("Best choice: 100% success rate")


def test_feedback_rescores_without_counting_again(kv) -> None:
    tracker = PerformanceTracker(kv)
    record = _record(tracker, "q", _response(0.9))

    assert asyncio.run(tracker.record_user_feedback(record.id, "negative"))

    [metric] = asyncio.run(tracker.get_all_metrics())
    [stored] = asyncio.run(tracker.get_query_history())
    assert metric.total_queries == 1
    assert metric.successful_queries == 0
    assert stored.user_feedback is Feedback.NEGATIVE

    assert asyncio.run(tracker.record_user_feedback(record.id, Feedback.POSITIVE))
    [metric] = asyncio.run(tracker.get_all_metrics())
    assert metric.successful_queries == 1


def test_feedback_for_unknown_query_is_ignored(kv) -> None:
    tracker = PerformanceTracker(kv)

    assert not asyncio.run(tracker.record_user_feedback("missing", Feedback.POSITIVE))


def test_history_is_capped(kv) -> None:
    tracker = PerformanceTracker(kv, TrackerConfig(history_limit=3))

    for index in range(5):
        _record(tracker, f"query {index}", _response(0.8))

    history = asyncio.run(tracker.get_query_history())
    assert [record.query for record in history] == ["query 2", "query 3", "query 4"]
    [metric] = asyncio.run(tracker.get_all_metrics())
    assert metric.total_queries == 5


def test_concurrent_records_are_not_lost(kv) -> None:
    tracker = PerformanceTracker(kv)

    async def record_many() -> None:
        await asyncio.gather(*(tracker.record_query_performance(f"q{i}", _response(0.8)) for i in range(10)))

    asyncio.run(record_many())

    [metric] = asyncio.run(tracker.get_all_metrics())
    assert metric.total_queries == 10
    assert len(asyncio.run(tracker.get_query_history())) == 10


def test_filters_and_clear(kv) -> None:
    tracker = PerformanceTracker(kv)
    _record(tracker, "q", _response(0.8, Intent.FACTUAL, Strategy.HYBRID))
    _record(tracker, "q", _response(0.8, Intent.ANALYTICAL, Strategy.MULTI_QUERY))

    assert len(asyncio.run(tracker.get_metrics_for_intent(Intent.ANALYTICAL))) == 1
    assert len(asyncio.run(tracker.get_metrics_for_strategy(Strategy.HYBRID))) == 1

    asyncio.run(tracker.clear_all_data())

    assert asyncio.run(tracker.get_all_metrics()) == []
    assert asyncio.run(tracker.get_query_history()) == []
    assert asyncio.run(tracker.get_insights()) == []


def test_insights_appear_once_enough_data_is_tracked(kv) -> None:
    tracker = PerformanceTracker(kv, clock=_Clock())
    strategies = [Strategy.HYBRID, Strategy.SEMANTIC, Strategy.KEYWORD, Strategy.MULTI_QUERY, Strategy.RAG_FUSION]
    for strategy in strategies:
        for _ in range(4):
            confidence = 0.95 if strategy is Strategy.HYBRID else 0.2
            _record(tracker, "q", _response(confidence, strategy=strategy, iterations=2))

    insights = asyncio.run(tracker.get_insights())

    types = [insight.type for insight in insights]
    assert InsightType.INTENT_PATTERN in types
    assert InsightType.OPTIMIZATION_OPPORTUNITY in types


def test_insights_need_minimum_data() -> None:
    metric = StrategyPerformanceMetric(strategy_id="factual-hybrid", intent=Intent.FACTUAL, strategy=Strategy.HYBRID)

    assert generate_insights([metric], [], now=0.0) is None


def test_best_and_poor_performers() -> None:
    def metric(strategy: Strategy, rate: float) -> StrategyPerformanceMetric:
        return StrategyPerformanceMetric(
            strategy_id=f"analytical-{strategy.value}",
            intent=Intent.ANALYTICAL,
            strategy=strategy,
            total_queries=10,
            successful_queries=int(rate * 10),
            success_rate=rate,
            average_confidence=0.8,
        )

    metrics = [
        metric(Strategy.HYBRID, 0.9),
        metric(Strategy.SEMANTIC, 0.3),
        metric(Strategy.KEYWORD, 0.6),
        metric(Strategy.MULTI_QUERY, 0.6),
        metric(Strategy.RAG_FUSION, 0.6),
    ]
    tracker_config = TrackerConfig(insight_min_history=1)

    old = QueryPerformanceRecord(
        id="r1",
        timestamp=0.0,
        query="q",
        intent=Intent.ANALYTICAL,
        strategy=Strategy.HYBRID,
        confidence=0.9,
        iterations=1,
        time_ms=10.0,
        needs_improvement=False,
        retrieval_method="hybrid",
        documents_retrieved=2,
    )

    insights = generate_insights(metrics, [old], now=30 * DAY_SECONDS, config=tracker_config)

    titles = [insight.title for insight in insights]
    assert "High Success Rate: hybrid for analytical" in titles
    assert "Low Success Rate: semantic for analytical" in titles
    poor = next(i for i in insights if i.type is InsightType.FAILURE_MODE)
    assert poor.suggested_action == "Avoid semantic for analytical queries, try multi_query"
    assert InsightType.OPTIMIZATION_OPPORTUNITY not in [i.type for i in insights]
