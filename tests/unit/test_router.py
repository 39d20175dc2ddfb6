import asyncio
import json

import pytest

from agentic_rag.agent.router import QueryRouter, rule_based_route
from agentic_rag.errors import ProviderError
from agentic_rag.types import ConversationTurn, Intent, QueryAnalysis, Strategy

from conftest import ANALYSIS, CLARIFY, INTENT, ROUTING, SUB_QUERIES


def _route(router: QueryRouter, query: str, **kwargs):
    return asyncio.run(router.route(query, "Handbook", 3, **kwargs))


def test_chitchat_routes_to_direct_answer_without_analysis(make_llm) -> None:
    llm = make_llm({INTENT: "chitchat"})

    decision = _route(QueryRouter(llm), "hi there")

    assert decision.intent is Intent.CHITCHAT
    assert decision.strategy is Strategy.DIRECT_ANSWER
    assert not decision.needs_retrieval
    assert decision.confidence == 0.95
    assert llm.count(ANALYSIS) == 0
    assert llm.count(ROUTING) == 0


def test_out_of_scope_routes_to_direct_answer(make_llm) -> None:
    decision = _route(QueryRouter(make_llm({INTENT: "out_of_scope"})), "what's the weather on mars")

    assert decision.strategy is Strategy.DIRECT_ANSWER
    assert decision.confidence == 0.8


@pytest.mark.parametrize(
    "reply, expected",
    [
        ("Comparative.", Intent.COMPARATIVE),
        ('"procedural"', Intent.PROCEDURAL),
        ("  ANALYTICAL\n", Intent.ANALYTICAL),
        ("a question about facts", Intent.FACTUAL),
        (ProviderError("llm", "timeout"), Intent.FACTUAL),
    ],
)
def test_intent_labels_are_normalized(make_llm, reply, expected) -> None:
    router = QueryRouter(make_llm({INTENT: reply}))

    assert asyncio.run(router.classify_intent("compare a and b")) is expected


def test_no_model_means_factual_and_rule_routing() -> None:
    decision = _route(QueryRouter(), "encryption policy")

    assert decision.intent is Intent.FACTUAL
    assert decision.strategy is Strategy.HYBRID
    assert decision.confidence == 0.75
    assert decision.fallback_strategies == [Strategy.SEMANTIC, Strategy.KEYWORD]


def test_model_routing_plan_is_used(make_llm) -> None:
    plan = {
        "strategy": "multi_query",
        "needsRetrieval": True,
        "parallelizable": True,
        "confidence": 0.82,
        "reasoning": "two topics",
        "subQueries": ["encryption at rest", "key rotation"],
        "fallbackStrategies": ["rag_fusion"],
    }
    llm = make_llm({INTENT: "analytical", ANALYSIS: '{"complexity": "complex"}', ROUTING: json.dumps(plan)})

    decision = _route(QueryRouter(llm), "how do encryption and rotation relate")

    assert decision.intent is Intent.ANALYTICAL
    assert decision.strategy is Strategy.MULTI_QUERY
    assert decision.sub_queries == ["encryption at rest", "key rotation"]
    assert decision.fallback_strategies == [Strategy.RAG_FUSION]
    assert decision.confidence == 0.82


def test_routing_prompt_carries_history(make_llm) -> None:
    llm = make_llm({INTENT: "factual", ANALYSIS: "{}", ROUTING: '{"strategy": "keyword"}'})
    history = [ConversationTurn(query="who owns keys", response="The security team.")]

    decision = _route(QueryRouter(llm), "and who rotates them", history=history)

    routing_prompt = next(p for p in llm.prompts if ROUTING in p)
    assert "Q: who owns keys\nA: The security team." in routing_prompt
    assert decision.strategy is Strategy.KEYWORD
    assert decision.fallback_strategies == [Strategy.HYBRID, Strategy.SEMANTIC]


@pytest.mark.parametrize(
    "routing_reply",
    ['{"strategy": "direct_answer"}', '{"confidence": 4}', "not json at all"],
)
def test_unusable_routing_plan_falls_back_to_rules(make_llm, routing_reply) -> None:
    llm = make_llm({INTENT: "factual", ANALYSIS: '{"specificity": "precise"}', ROUTING: routing_reply})

    decision = _route(QueryRouter(llm), "policy SEC-42")

    assert decision.strategy is Strategy.KEYWORD
    assert decision.confidence == 0.7


def test_rule_table() -> None:
    complex_route = rule_based_route(Intent.ANALYTICAL, QueryAnalysis(complexity="complex"))
    multi_hop = rule_based_route(Intent.FACTUAL, QueryAnalysis(requires_multi_hop=True))
    precise = rule_based_route(Intent.FACTUAL, QueryAnalysis(specificity="precise"))
    default = rule_based_route(Intent.FACTUAL, QueryAnalysis())

    assert (complex_route.strategy, complex_route.confidence) == (Strategy.MULTI_QUERY, 0.6)
    assert complex_route.parallelizable
    assert multi_hop.strategy is Strategy.MULTI_QUERY
    assert (precise.strategy, precise.confidence) == (Strategy.KEYWORD, 0.7)
    assert (default.strategy, default.confidence) == (Strategy.HYBRID, 0.75)


def test_analysis_defaults_on_bad_output(make_llm) -> None:
    router = QueryRouter(make_llm({ANALYSIS: '{"complexity": "enormous"}'}))

    assert asyncio.run(router.analyze_query("anything")) == QueryAnalysis()


def test_clarification_only_for_vague_broad_queries(make_llm) -> None:
    vague = make_llm({ANALYSIS: '{"specificity": "vague", "scope": "broad"}', CLARIFY: " Which policy? "})
    narrow = make_llm({ANALYSIS: '{"specificity": "vague", "scope": "narrow"}', CLARIFY: "Which policy?"})

    asked = asyncio.run(QueryRouter(vague).should_clarify("tell me stuff", 3))
    not_asked = asyncio.run(QueryRouter(narrow).should_clarify("tell me stuff", 3))
    empty_corpus = asyncio.run(QueryRouter(vague).should_clarify("tell me stuff", 0))

    assert asked.needs_clarification
    assert asked.question == "Which policy?"
    assert not not_asked.needs_clarification
    assert narrow.count(CLARIFY) == 0
    assert not empty_corpus.needs_clarification


def test_sub_queries_fall_back_to_original(make_llm) -> None:
    failing = QueryRouter(make_llm({SUB_QUERIES: "[]"}))
    working = QueryRouter(make_llm({SUB_QUERIES: '["a part", " ", "b part"]'}), sub_query_count=2)

    assert asyncio.run(failing.generate_sub_queries("whole question")) == ["whole question"]
    assert asyncio.run(working.generate_sub_queries("whole question")) == ["a part", "b part"]


def test_retrieval_quality_gate(corpus) -> None:
    router = QueryRouter()

    good = router.evaluate_retrieval_quality(corpus, "encryption of customer data", top_k=3)
    poor = router.evaluate_retrieval_quality(corpus, "quarterly revenue figures", top_k=3)
    sparse = router.evaluate_retrieval_quality(corpus[:1], "encryption of customer data", top_k=5)
    empty = router.evaluate_retrieval_quality([], "anything")

    assert good.quality == pytest.approx(0.5)
    assert not good.needs_fallback
    assert poor.needs_fallback
    assert sparse.coverage == pytest.approx(0.2)
    assert sparse.needs_fallback
    assert (empty.quality, empty.coverage, empty.needs_fallback) == (0.0, 0.0, True)
