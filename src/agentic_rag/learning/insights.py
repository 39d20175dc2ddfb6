"""Insight generation over tracked strategy metrics and query history."""

from __future__ import annotations

import uuid
from collections import Counter

from agentic_rag.config import TrackerConfig
from agentic_rag.learning.models import (
    Impact,
    InsightType,
    LearningInsight,
    QueryPerformanceRecord,
    StrategyPerformanceMetric,
    SupportingData,
)
from agentic_rag.types import Intent, Strategy

DAY_SECONDS = 86_400.0

_ALTERNATIVES = {
    Intent.FACTUAL: Strategy.HYBRID,
    Intent.ANALYTICAL: Strategy.MULTI_QUERY,
    Intent.COMPARATIVE: Strategy.RAG_FUSION,
    Intent.PROCEDURAL: Strategy.SEMANTIC,
    Intent.CLARIFICATION: Strategy.SEMANTIC,
    Intent.CHITCHAT: Strategy.DIRECT_ANSWER,
    Intent.OUT_OF_SCOPE: Strategy.DIRECT_ANSWER,
}


def suggest_alternative_strategy(intent: Intent) -> Strategy:
    return _ALTERNATIVES.get(intent, Strategy.HYBRID)


def generate_insights(
    metrics: list[StrategyPerformanceMetric],
    history: list[QueryPerformanceRecord],
    now: float,
    config: TrackerConfig | None = None,
) -> list[LearningInsight] | None:
    """Build the full insight list, or return None while there is too little data.

    Produces at most: one best-performer insight, one insight per poor
    performer, one dominant-intent insight and one high-iteration warning.
    """

    config = config or TrackerConfig()
    if len(metrics) < config.insight_min_metrics or len(history) < config.insight_min_history:
        return None

    insights: list[LearningInsight] = []
    established = [m for m in metrics if m.total_queries >= 5]

    if established:
        best = max(established, key=lambda m: m.success_rate)
        if best.success_rate > 0.85:
            insights.append(
                _insight(
                    now,
                    InsightType.STRATEGY_PERFORMANCE,
                    f"High Success Rate: {best.strategy.value} for {best.intent.value}",
                    f"The {best.strategy.value} strategy achieves {best.success_rate * 100:.1f}% success rate "
                    f"for {best.intent.value} queries with average confidence of {best.average_confidence:.2f}.",
                    Impact.HIGH,
                    f"Prioritize {best.strategy.value} strategy for {best.intent.value} intent queries",
                    SupportingData(
                        queries_analyzed=best.total_queries,
                        time_range="All time",
                        key_metrics={
                            "success_rate": best.success_rate,
                            "avg_confidence": best.average_confidence,
                            "avg_time_ms": best.average_retrieval_time_ms,
                        },
                    ),
                )
            )

    for poor in (m for m in established if m.success_rate < 0.5):
        alternative = suggest_alternative_strategy(poor.intent)
        insights.append(
            _insight(
                now,
                InsightType.FAILURE_MODE,
                f"Low Success Rate: {poor.strategy.value} for {poor.intent.value}",
                f"The {poor.strategy.value} strategy only achieves {poor.success_rate * 100:.1f}% success rate "
                f"for {poor.intent.value} queries. Consider using alternative strategies.",
                Impact.MEDIUM,
                f"Avoid {poor.strategy.value} for {poor.intent.value} queries, try {alternative.value}",
                SupportingData(
                    queries_analyzed=poor.total_queries,
                    time_range="All time",
                    key_metrics={
                        "success_rate": poor.success_rate,
                        "avg_confidence": poor.average_confidence,
                        "avg_iterations": poor.average_iterations,
                    },
                ),
            )
        )

    intent, count = Counter(record.intent for record in history).most_common(1)[0]
    share = count / len(history)
    if share > 0.4:
        insights.append(
            _insight(
                now,
                InsightType.INTENT_PATTERN,
                f"Dominant Query Pattern: {intent.value}",
                f"{share * 100:.1f}% of queries are {intent.value} type. "
                "Consider optimizing the knowledge base structure for this use case.",
                Impact.MEDIUM,
                f"Optimize document structure and chunking strategy for {intent.value} queries",
                SupportingData(
                    queries_analyzed=len(history),
                    time_range="Recent",
                    key_metrics={"dominant_intent_share": share, "total_queries": float(len(history))},
                ),
            )
        )

    recent = [record for record in history if now - record.timestamp < 7 * DAY_SECONDS]
    if len(recent) >= 10:
        average_iterations = sum(record.iterations for record in recent) / len(recent)
        if average_iterations > 1.5:
            insights.append(
                _insight(
                    now,
                    InsightType.OPTIMIZATION_OPPORTUNITY,
                    "High Iteration Count Detected",
                    f"Recent queries average {average_iterations:.1f} iterations, indicating initial "
                    "strategies often need refinement. This suggests opportunities for better routing decisions.",
                    Impact.MEDIUM,
                    "Review and improve initial query analysis and strategy selection",
                    SupportingData(
                        queries_analyzed=len(recent),
                        time_range="Last 7 days",
                        key_metrics={
                            "avg_iterations": average_iterations,
                            "multi_iteration_queries": float(sum(1 for r in recent if r.iterations > 1)),
                        },
                    ),
                )
            )

    return insights


def _insight(
    now: float,
    type_: InsightType,
    title: str,
    description: str,
    impact: Impact,
    suggested_action: str,
    supporting_data: SupportingData,
) -> LearningInsight:
    return LearningInsight(
        id=uuid.uuid4().hex,
        type=type_,
        title=title,
        description=description,
        impact=impact,
        actionable=True,
        suggested_action=suggested_action,
        supporting_data=supporting_data,
        timestamp=now,
    )
