"""Persisted records of the strategy performance tracker."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from agentic_rag.types import Intent, Strategy


class Feedback(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class InsightType(str, Enum):
    STRATEGY_PERFORMANCE = "strategy_performance"
    INTENT_PATTERN = "intent_pattern"
    FAILURE_MODE = "failure_mode"
    OPTIMIZATION_OPPORTUNITY = "optimization_opportunity"


class Impact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class StrategyPerformanceMetric(_Frozen):
    """Running aggregates for one (intent, strategy) pair."""

    strategy_id: str
    intent: Intent
    strategy: Strategy
    total_queries: int = 0
    successful_queries: int = 0
    average_confidence: float = 0.0
    average_retrieval_time_ms: float = 0.0
    average_iterations: float = 0.0
    success_rate: float = 0.0
    last_used: float = 0.0
    improvement_trend: float = 0.0


class QueryPerformanceRecord(_Frozen):
    id: str
    timestamp: float
    query: str
    intent: Intent
    strategy: Strategy
    confidence: float
    iterations: int
    time_ms: float
    needs_improvement: bool
    retrieval_method: str
    documents_retrieved: int
    user_feedback: Feedback | None = None


class AlternativeStrategy(_Frozen):
    strategy: Strategy
    score: float
    reason: str


class StrategyRecommendation(_Frozen):
    recommended_strategy: Strategy
    confidence: float
    reasoning: str
    alternative_strategies: list[AlternativeStrategy] = Field(default_factory=list)
    based_on_historical_data: bool = False
    similar_queries_analyzed: int = 0


class SupportingData(_Frozen):
    queries_analyzed: int
    time_range: str
    key_metrics: dict[str, float] = Field(default_factory=dict)


class LearningInsight(_Frozen):
    id: str
    type: InsightType
    title: str
    description: str
    impact: Impact
    actionable: bool = True
    suggested_action: str | None = None
    supporting_data: SupportingData
    timestamp: float
