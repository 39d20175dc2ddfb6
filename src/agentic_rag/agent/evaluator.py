"""Self-evaluation and critique of generated answers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from agentic_rag.agent.decoding import ask_structured
from agentic_rag.providers.base import LLMProvider
from agentic_rag.types import (
    CriticFeedback,
    Document,
    ImprovementPlan,
    RelevanceToken,
    RetrievalResult,
    SelfEvaluation,
    SupportToken,
    UtilityToken,
)

logger = logging.getLogger(__name__)

_SUPPORT_PROMPT = """Evaluate if this AI response is supported by the provided source documents.

Query: "{query}"

Response: "{answer}"

Source Documents:
{sources}

Determine support level:
- FULLY_SUPPORTED: All claims in response are backed by sources
- PARTIALLY_SUPPORTED: Some claims backed, some may be inferred
- NOT_SUPPORTED: Response contains claims not in sources (potential hallucination)

Provide JSON: {{"token": "...", "confidence": 0.0-1.0, "reasoning": "brief explanation"}}

Respond with ONLY valid JSON."""

_UTILITY_PROMPT = """Evaluate if this response is useful for answering the user's query.

Query: "{query}"
Response: "{answer}"

Determine utility:
- USEFUL: Directly answers the question, actionable and complete
- SOMEWHAT_USEFUL: Partially answers, may be too vague or incomplete
- NOT_USEFUL: Doesn't answer the question or is off-topic

Provide JSON: {{"token": "...", "confidence": 0.0-1.0, "reasoning": "brief explanation"}}

Respond with ONLY valid JSON."""

_CRITIC_PROMPT = """You are a critical evaluator of RAG system responses. Evaluate this response for quality issues.

Query: "{query}"
Response: "{answer}"

Sources Available: {source_count} documents

Evaluate:
1. Logical consistency (0.0-1.0): Is the reasoning sound?
2. Factual accuracy (0.0-1.0): Are claims verifiable from sources?
3. Completeness (0.0-1.0): Does it fully answer the question?
4. Hallucinations: List any claims not supported by sources
5. Gaps: List missing information that should be included
6. Suggestions: How to improve this response

Provide JSON:
{{
  "logicalConsistency": 0.0-1.0,
  "factualAccuracy": 0.0-1.0,
  "completeness": 0.0-1.0,
  "hallucinations": ["claim 1", "claim 2"],
  "gaps": ["missing info 1", "missing info 2"],
  "suggestions": ["suggestion 1", "suggestion 2"]
}}

Respond with ONLY valid JSON."""


class SupportOutput(BaseModel):
    token: SupportToken = SupportToken.PARTIALLY_SUPPORTED
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = "Automated evaluation"


class UtilityOutput(BaseModel):
    token: UtilityToken = UtilityToken.SOMEWHAT_USEFUL
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    reasoning: str = "Automated evaluation"


class CriticOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    logical_consistency: float = Field(default=0.7, ge=0.0, le=1.0, alias="logicalConsistency")
    factual_accuracy: float = Field(default=0.7, ge=0.0, le=1.0, alias="factualAccuracy")
    completeness: float = Field(default=0.7, ge=0.0, le=1.0)
    hallucinations: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AxisVerdict:
    token: RelevanceToken | SupportToken | UtilityToken
    confidence: float
    reasoning: str


class SelfEvaluator:
    """Judges an answer on relevance, support and utility, plus an optional critic pass.

    Relevance is computed from retrieval scores; support and utility are
    model judgements with fixed defaults when the model is unavailable or
    answers in the wrong shape.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        *,
        support_model: str | None = None,
        utility_model: str | None = None,
        critic_model: str | None = None,
    ) -> None:
        self.llm = llm
        self.support_model = support_model
        self.utility_model = utility_model
        self.critic_model = critic_model

    async def evaluate_relevance(self, query: str, retrieval: RetrievalResult) -> AxisVerdict:
        if not retrieval.documents:
            return AxisVerdict(RelevanceToken.NOT_RELEVANT, 1.0, "No documents retrieved")
        average = sum(retrieval.scores) / len(retrieval.scores)
        if average > 0.7:
            return AxisVerdict(
                RelevanceToken.RELEVANT, average, "High relevance scores indicate strong document match"
            )
        if average > 0.4:
            return AxisVerdict(
                RelevanceToken.PARTIALLY_RELEVANT, average, "Moderate relevance scores, may need refinement"
            )
        return AxisVerdict(
            RelevanceToken.NOT_RELEVANT, 1 - average, "Low relevance scores, retrieval may have failed"
        )

    async def evaluate_support(self, query: str, answer: str, documents: list[Document]) -> AxisVerdict:
        if not documents:
            return AxisVerdict(SupportToken.NOT_SUPPORTED, 0.9, "No source documents to support the response")
        sources = "\n".join(
            f"{i}. {doc.title}: {doc.content[:300]}..." for i, doc in enumerate(documents, start=1)
        )
        decoded = await ask_structured(
            self.llm,
            _SUPPORT_PROMPT.format(query=query, answer=answer, sources=sources),
            SupportOutput,
            model=self.support_model,
            purpose="support evaluation",
        )
        if not decoded.ok:
            return AxisVerdict(SupportToken.PARTIALLY_SUPPORTED, 0.5, "Unable to evaluate support level")
        output: SupportOutput = decoded.value
        return AxisVerdict(output.token, output.confidence, output.reasoning)

    async def evaluate_utility(self, query: str, answer: str) -> AxisVerdict:
        decoded = await ask_structured(
            self.llm,
            _UTILITY_PROMPT.format(query=query, answer=answer),
            UtilityOutput,
            model=self.utility_model,
            purpose="utility evaluation",
        )
        if not decoded.ok:
            return AxisVerdict(UtilityToken.SOMEWHAT_USEFUL, 0.6, "Unable to evaluate utility")
        output: UtilityOutput = decoded.value
        return AxisVerdict(output.token, output.confidence, output.reasoning)

    async def perform_self_evaluation(
        self, query: str, answer: str, retrieval: RetrievalResult
    ) -> SelfEvaluation:
        relevance, support, utility = await asyncio.gather(
            self.evaluate_relevance(query, retrieval),
            self.evaluate_support(query, answer, retrieval.documents),
            self.evaluate_utility(query, answer),
        )
        confidence = (relevance.confidence + support.confidence + utility.confidence) / 3
        needs_retry = (
            relevance.token is RelevanceToken.NOT_RELEVANT
            or support.token is SupportToken.NOT_SUPPORTED
            or utility.token is UtilityToken.NOT_USEFUL
            or confidence < 0.5
        )

        suggestions: list[str] = []
        if relevance.token is not RelevanceToken.RELEVANT:
            suggestions.append("Try reformulating the query for better retrieval")
            suggestions.append("Use a different retrieval strategy (e.g., hybrid or multi-query)")
        if support.token is SupportToken.NOT_SUPPORTED:
            suggestions.append("Response may contain hallucinations, retrieve more documents")
            suggestions.append("Use stricter grounding to source documents")
        if utility.token is not UtilityToken.USEFUL:
            suggestions.append("Regenerate response with clearer instructions")
            suggestions.append("Break query into sub-questions")

        return SelfEvaluation(
            relevance_token=relevance.token,
            support_token=support.token,
            utility_token=utility.token,
            confidence=confidence,
            needs_retry=needs_retry,
            reasoning=(
                f"Relevance: {relevance.reasoning}. Support: {support.reasoning}. "
                f"Utility: {utility.reasoning}."
            ),
            suggestions=suggestions if needs_retry else None,
        )

    async def critic_response(self, query: str, answer: str, sources: list[Document]) -> CriticFeedback:
        decoded = await ask_structured(
            self.llm,
            _CRITIC_PROMPT.format(query=query, answer=answer, source_count=len(sources)),
            CriticOutput,
            model=self.critic_model,
            purpose="critic pass",
        )
        if not decoded.ok:
            return CriticFeedback(
                logical_consistency=0.7,
                factual_accuracy=0.7,
                completeness=0.7,
                suggestions=["Unable to provide detailed feedback"],
            )
        output: CriticOutput = decoded.value
        return CriticFeedback(
            logical_consistency=output.logical_consistency,
            factual_accuracy=output.factual_accuracy,
            completeness=output.completeness,
            hallucinations=list(output.hallucinations),
            gaps=list(output.gaps),
            suggestions=list(output.suggestions),
        )


def suggest_improvements(
    evaluation: SelfEvaluation, criticism: CriticFeedback | None = None
) -> ImprovementPlan:
    """Fold evaluation and critique into concrete actions.

    Every axis that falls below its threshold adds an action and forces a
    retry; the evaluation's own suggestions are appended last.
    """

    actions: list[str] = []
    should_retry = evaluation.needs_retry

    if evaluation.relevance_token is RelevanceToken.NOT_RELEVANT:
        actions.append("Reformulate query with more specific terms")
        actions.append("Try alternative retrieval strategy")
        should_retry = True
    if evaluation.support_token is SupportToken.NOT_SUPPORTED:
        actions.append("Retrieve additional documents")
        actions.append("Use stricter citation requirements")
        should_retry = True

    if criticism is not None:
        if criticism.logical_consistency < 0.6:
            actions.append("Improve logical flow in response generation")
            should_retry = True
        if criticism.factual_accuracy < 0.7:
            actions.append("Verify all facts against source documents")
            should_retry = True
        if criticism.completeness < 0.7:
            actions.append("Expand response to cover all aspects of query")
            if criticism.gaps:
                actions.append("Consider missing information: " + ", ".join(criticism.gaps))
            should_retry = True
        if criticism.hallucinations:
            actions.append("Remove hallucinated claims: " + ", ".join(criticism.hallucinations))
            should_retry = True

    if evaluation.suggestions:
        actions.extend(evaluation.suggestions)

    return ImprovementPlan(should_retry=should_retry, actions=actions)
