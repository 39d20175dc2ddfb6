"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Intent(str, Enum):
    FACTUAL = "factual"
    ANALYTICAL = "analytical"
    COMPARATIVE = "comparative"
    PROCEDURAL = "procedural"
    CLARIFICATION = "clarification"
    CHITCHAT = "chitchat"
    OUT_OF_SCOPE = "out_of_scope"


class Strategy(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"
    MULTI_QUERY = "multi_query"
    RAG_FUSION = "rag_fusion"
    DIRECT_ANSWER = "direct_answer"


class ChunkStrategy(str, Enum):
    FIXED = "fixed"
    SENTENCE = "sentence"
    PARAGRAPH = "paragraph"
    SEMANTIC = "semantic"


class RetrievalBackend(str, Enum):
    AZURE = "azure"
    LOCAL = "local"


class RelevanceToken(str, Enum):
    RELEVANT = "RELEVANT"
    PARTIALLY_RELEVANT = "PARTIALLY_RELEVANT"
    NOT_RELEVANT = "NOT_RELEVANT"


class SupportToken(str, Enum):
    FULLY_SUPPORTED = "FULLY_SUPPORTED"
    PARTIALLY_SUPPORTED = "PARTIALLY_SUPPORTED"
    NOT_SUPPORTED = "NOT_SUPPORTED"


class UtilityToken(str, Enum):
    USEFUL = "USEFUL"
    SOMEWHAT_USEFUL = "SOMEWHAT_USEFUL"
    NOT_USEFUL = "NOT_USEFUL"


@dataclass(frozen=True, slots=True)
class Document:
    """A knowledge base document as handed over by the ingestion side."""

    id: str
    title: str
    content: str
    source_type: str = "markdown"
    source_url: str = ""
    added_at: float = 0.0
    knowledge_base_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    chunk_strategy: ChunkStrategy | None = None


@dataclass(frozen=True, slots=True)
class TextChunk:
    """A slice of text produced by a chunking strategy."""

    text: str
    start_index: int
    end_index: int
    tokens: int


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """A persisted, embeddable chunk of a document."""

    id: str
    document_id: str
    knowledge_base_id: str
    chunk_index: int
    text: str
    start_index: int
    end_index: int
    tokens: int
    strategy: ChunkStrategy
    created_at: float
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["strategy"] = self.strategy.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocumentChunk":
        return cls(**{**data, "strategy": ChunkStrategy(data["strategy"])})


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    chunk: DocumentChunk
    score: float


@dataclass(frozen=True, slots=True)
class QueryAnalysis:
    complexity: str = "moderate"
    specificity: str = "specific"
    temporality: str = "timeless"
    scope: str = "narrow"
    requires_multi_hop: bool = False


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    intent: Intent
    strategy: Strategy
    needs_retrieval: bool
    parallelizable: bool
    confidence: float
    reasoning: str
    sub_queries: list[str] | None = None
    fallback_strategies: list[Strategy] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RetrievalMetadata:
    retrieval_backend: RetrievalBackend = RetrievalBackend.LOCAL
    chunk_based: bool = False
    fallback_reason: str | None = None
    cache_hit: bool = False
    total_chunks: int | None = None
    unique_documents: int | None = None
    remote_hit_count: int | None = None
    sub_query_results: dict[str, "RetrievalResult"] | None = None
    fusion_variations: list[str] | None = None


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    """Ranked documents with parallel scores in ``[0, 1]``."""

    documents: list[Document]
    scores: list[float]
    method: Strategy
    query_used: str
    metadata: RetrievalMetadata = field(default_factory=RetrievalMetadata)

    def __post_init__(self) -> None:
        if len(self.documents) != len(self.scores):
            raise ValueError("documents and scores must have the same length")
        if any(score < 0.0 or score > 1.0 for score in self.scores):
            raise ValueError("retrieval scores must lie in [0, 1]")

    @classmethod
    def empty(cls, query: str, method: Strategy = Strategy.DIRECT_ANSWER) -> "RetrievalResult":
        return cls(documents=[], scores=[], method=method, query_used=query)


@dataclass(frozen=True, slots=True)
class SelfEvaluation:
    relevance_token: RelevanceToken
    support_token: SupportToken
    utility_token: UtilityToken
    confidence: float
    needs_retry: bool
    reasoning: str
    suggestions: list[str] | None = None


@dataclass(frozen=True, slots=True)
class CriticFeedback:
    logical_consistency: float
    factual_accuracy: float
    completeness: float
    hallucinations: list[str] = field(default_factory=list)
    gaps: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ImprovementPlan:
    should_retry: bool
    actions: list[str]


class LoopState(str, Enum):
    ROUTE = "route"
    DIRECT_ANSWER = "direct_answer"
    CLARIFY = "clarify"
    RETRIEVE = "retrieve"
    GENERATE = "generate"
    EVALUATE = "evaluate"
    REFORMULATE = "reformulate"
    ACCEPT = "accept"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class LoopStep:
    iteration: int
    state: LoopState
    detail: str = ""


@dataclass(frozen=True, slots=True)
class ProgressStep:
    phase: str
    status: str
    message: str
    timestamp: float
    details: str = ""
    progress: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    query: str
    response: str


@dataclass(frozen=True, slots=True)
class ResponseMetadata:
    total_time_ms: float
    retrieval_method: str
    confidence: float
    needs_improvement: bool
    improvement_suggestions: list[str] | None = None


@dataclass(frozen=True, slots=True)
class AgenticResponse:
    """Final answer of one orchestrated query together with its evidence."""

    query_id: str
    answer: str
    sources: list[str]
    routing: RoutingDecision
    retrieval: RetrievalResult
    evaluation: SelfEvaluation
    iterations: int
    metadata: ResponseMetadata
    criticism: CriticFeedback | None = None
    trace: tuple[LoopStep, ...] = ()
