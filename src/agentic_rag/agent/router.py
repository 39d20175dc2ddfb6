"""Intent classification, query analysis and strategy routing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from agentic_rag.agent.decoding import ask_structured
from agentic_rag.errors import ProviderError
from agentic_rag.providers.base import LLMProvider
from agentic_rag.retrieval.query_expansion import QueryExpander
from agentic_rag.types import ConversationTurn, Document, Intent, QueryAnalysis, RoutingDecision, Strategy

logger = logging.getLogger(__name__)

_INTENT_PROMPT = """You are a query intent classifier. Analyze the user's query and classify it into one of these categories:
- factual: Looking for specific facts, definitions, or data points
- analytical: Requires analysis, synthesis, or reasoning across information
- comparative: Comparing multiple items, concepts, or approaches
- procedural: How-to questions or step-by-step instructions
- clarification: Follow-up questions or requests for more detail
- chitchat: Casual conversation or greetings
- out_of_scope: Questions unrelated to the knowledge base

Query: "{query}"

Respond with ONLY the category name (lowercase, no explanation)."""

_ANALYSIS_PROMPT = """Analyze this query and provide a JSON analysis with these fields:
- complexity: "simple" (single fact), "moderate" (multiple facts), or "complex" (reasoning required)
- specificity: "vague" (unclear), "specific" (clear), or "precise" (very detailed)
- temporality: "timeless" (general knowledge), "recent" (last year), or "time_specific" (exact dates)
- scope: "narrow" (single topic), "broad" (multiple topics), or "multi_domain" (cross-domain)
- requiresMultiHop: true if needs multiple retrieval steps, false otherwise

Query: "{query}"

Respond with ONLY valid JSON, no markdown formatting."""

_ROUTING_PROMPT = """You are an intelligent query routing agent for a RAG system.

Knowledge Base: "{corpus_name}"
Document Count: {doc_count}
Query Intent: {intent}
Query Complexity: {complexity}
Requires Multi-Hop: {multi_hop}

Query: "{query}"
{history}
Choose the best retrieval strategy:
- semantic: Use for conceptual queries requiring meaning-based matching
- keyword: Use for specific terms, IDs, proper nouns
- hybrid: Combine semantic and keyword for balanced retrieval
- multi_query: Break query into sub-questions for complex needs
- rag_fusion: Multiple query variations + rank fusion for thorough coverage

Provide a routing plan as JSON with:
{{
  "strategy": "chosen_strategy",
  "needsRetrieval": true/false,
  "parallelizable": true/false,
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation",
  "subQueries": ["query1", "query2"] (only if multi_query),
  "fallbackStrategies": ["strategy1", "strategy2"] (optional fallbacks)
}}

Respond with ONLY valid JSON."""

_CLARIFY_PROMPT = """This query is vague and broad: "{query}"

Generate a helpful clarification question to narrow the scope.
Make it specific and actionable.

Respond with just the clarification question, no explanation."""

RetrievalStrategyName = Literal["semantic", "keyword", "hybrid", "multi_query", "rag_fusion"]


class QueryAnalysisOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    complexity: Literal["simple", "moderate", "complex"] = "moderate"
    specificity: Literal["vague", "specific", "precise"] = "specific"
    temporality: Literal["timeless", "recent", "time_specific"] = "timeless"
    scope: Literal["narrow", "broad", "multi_domain"] = "narrow"
    requires_multi_hop: bool = Field(default=False, alias="requiresMultiHop")


class RoutePlanOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    strategy: RetrievalStrategyName = "hybrid"
    needs_retrieval: bool = Field(default=True, alias="needsRetrieval")
    parallelizable: bool = False
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    reasoning: str = "Automatic routing based on query analysis"
    sub_queries: list[str] | None = Field(default=None, alias="subQueries")
    fallback_strategies: list[RetrievalStrategyName] = Field(
        default_factory=lambda: ["hybrid", "semantic"], alias="fallbackStrategies"
    )


@dataclass(frozen=True, slots=True)
class ClarificationDecision:
    needs_clarification: bool
    question: str | None = None


@dataclass(frozen=True, slots=True)
class RetrievalQuality:
    quality: float
    coverage: float
    needs_fallback: bool


class QueryRouter:
    """Chooses how a query is answered.

    Every model-backed step has a documented default, so routing itself never
    fails: an unusable intent answer means ``factual``, an unusable analysis
    means the moderate/specific default and an unusable routing plan falls
    back to a rule table over the analysis.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        *,
        model: str | None = None,
        expander: QueryExpander | None = None,
        sub_query_count: int = 3,
        variation_count: int = 3,
    ) -> None:
        self.llm = llm
        self.model = model
        self.expander = expander or QueryExpander(llm, model=model)
        self.sub_query_count = sub_query_count
        self.variation_count = variation_count

    async def classify_intent(self, query: str) -> Intent:
        if self.llm is None:
            return Intent.FACTUAL
        try:
            raw = await self.llm.generate(_INTENT_PROMPT.format(query=query), model=self.model)
        except ProviderError as exc:
            logger.warning("Intent classification failed, assuming factual: %s", exc)
            return Intent.FACTUAL
        label = raw.strip().strip(".\"'`").lower()
        try:
            return Intent(label)
        except ValueError:
            logger.debug("Unrecognized intent %r, assuming factual", label)
            return Intent.FACTUAL

    async def analyze_query(self, query: str) -> QueryAnalysis:
        decoded = await ask_structured(
            self.llm,
            _ANALYSIS_PROMPT.format(query=query),
            QueryAnalysisOutput,
            model=self.model,
            purpose="query analysis",
        )
        if not decoded.ok:
            return QueryAnalysis()
        output: QueryAnalysisOutput = decoded.value
        return QueryAnalysis(
            complexity=output.complexity,
            specificity=output.specificity,
            temporality=output.temporality,
            scope=output.scope,
            requires_multi_hop=output.requires_multi_hop,
        )

    async def route(
        self,
        query: str,
        corpus_name: str,
        doc_count: int,
        history: list[ConversationTurn] | None = None,
    ) -> RoutingDecision:
        intent = await self.classify_intent(query)

        if intent is Intent.CHITCHAT:
            return RoutingDecision(
                intent=intent,
                strategy=Strategy.DIRECT_ANSWER,
                needs_retrieval=False,
                parallelizable=False,
                confidence=0.95,
                reasoning="Casual conversation does not require knowledge base retrieval",
            )
        if intent is Intent.OUT_OF_SCOPE:
            return RoutingDecision(
                intent=intent,
                strategy=Strategy.DIRECT_ANSWER,
                needs_retrieval=False,
                parallelizable=False,
                confidence=0.8,
                reasoning="Query appears outside knowledge base scope",
            )

        analysis = await self.analyze_query(query)
        prompt = _ROUTING_PROMPT.format(
            corpus_name=corpus_name,
            doc_count=doc_count,
            intent=intent.value,
            complexity=analysis.complexity,
            multi_hop=str(analysis.requires_multi_hop).lower(),
            query=query,
            history=_format_history(history),
        )
        decoded = await ask_structured(
            self.llm, prompt, RoutePlanOutput, model=self.model, purpose="strategy routing"
        )
        if not decoded.ok:
            return rule_based_route(intent, analysis)

        plan: RoutePlanOutput = decoded.value
        return RoutingDecision(
            intent=intent,
            strategy=Strategy(plan.strategy),
            needs_retrieval=plan.needs_retrieval,
            parallelizable=plan.parallelizable,
            confidence=plan.confidence,
            reasoning=plan.reasoning,
            sub_queries=plan.sub_queries or None,
            fallback_strategies=[Strategy(name) for name in plan.fallback_strategies],
        )

    async def should_clarify(self, query: str, doc_count: int) -> ClarificationDecision:
        """Ask for clarification only for vague, broad queries over a non-empty corpus."""

        if doc_count == 0 or self.llm is None:
            return ClarificationDecision(needs_clarification=False)
        analysis = await self.analyze_query(query)
        if not (analysis.specificity == "vague" and analysis.scope == "broad"):
            return ClarificationDecision(needs_clarification=False)
        try:
            question = await self.llm.generate(_CLARIFY_PROMPT.format(query=query), model=self.model)
        except ProviderError as exc:
            logger.warning("Clarification question generation failed: %s", exc)
            return ClarificationDecision(needs_clarification=False)
        question = question.strip()
        if not question:
            return ClarificationDecision(needs_clarification=False)
        return ClarificationDecision(needs_clarification=True, question=question)

    async def generate_sub_queries(self, query: str) -> list[str]:
        return await self.expander.sub_queries(query, self.sub_query_count)

    async def expand_query(self, query: str) -> list[str]:
        return await self.expander.variations(query, self.variation_count)

    def evaluate_retrieval_quality(
        self, documents: list[Document], query: str, top_k: int = 5
    ) -> RetrievalQuality:
        """Cheap lexical gate over the top ``top_k`` documents.

        ``quality`` is the share of (query term, document) pairs where a term
        longer than three characters occurs in the document; ``coverage`` is
        how much of ``top_k`` was filled.
        """

        if not documents:
            return RetrievalQuality(quality=0.0, coverage=0.0, needs_fallback=True)
        terms = query.lower().split()
        top = documents[:top_k]
        matches = 0
        for doc in top:
            text = f"{doc.title} {doc.content}".lower()
            matches += sum(1 for term in terms if len(term) > 3 and term in text)
        quality = min(matches / (len(terms) * top_k), 1.0) if terms else 0.0
        coverage = min(len(top) / top_k, 1.0)
        return RetrievalQuality(
            quality=quality,
            coverage=coverage,
            needs_fallback=quality < 0.3 or coverage < 0.6,
        )


def rule_based_route(intent: Intent, analysis: QueryAnalysis) -> RoutingDecision:
    """Deterministic routing used when the model's routing plan is unusable."""

    if analysis.complexity == "complex" or analysis.requires_multi_hop:
        return RoutingDecision(
            intent=intent,
            strategy=Strategy.MULTI_QUERY,
            needs_retrieval=True,
            parallelizable=True,
            confidence=0.6,
            reasoning="Complex query detected, using multi-query strategy as fallback",
            fallback_strategies=[Strategy.RAG_FUSION, Strategy.HYBRID],
        )
    if analysis.specificity == "precise":
        return RoutingDecision(
            intent=intent,
            strategy=Strategy.KEYWORD,
            needs_retrieval=True,
            parallelizable=False,
            confidence=0.7,
            reasoning="Precise query detected, using keyword search",
            fallback_strategies=[Strategy.HYBRID, Strategy.SEMANTIC],
        )
    return RoutingDecision(
        intent=intent,
        strategy=Strategy.HYBRID,
        needs_retrieval=True,
        parallelizable=False,
        confidence=0.75,
        reasoning="Default hybrid strategy for balanced retrieval",
        fallback_strategies=[Strategy.SEMANTIC, Strategy.KEYWORD],
    )


def _format_history(history: list[ConversationTurn] | None) -> str:
    if not history:
        return ""
    turns = "\n\n".join(f"Q: {turn.query}\nA: {turn.response}" for turn in history)
    return f"\nConversation History:\n{turns}\n"
