from agentic_rag.agent.generator import build_answer_prompt, build_reformulation_prompt
from agentic_rag.types import (
    Document,
    RelevanceToken,
    RetrievalResult,
    SelfEvaluation,
    Strategy,
    SupportToken,
    UtilityToken,
)


def _retrieval() -> RetrievalResult:
    return RetrievalResult(
        documents=[
            Document(id="a", title="Encryption policy", content="x" * 1000),
            Document(id="b", title="Key rotation", content="Keys rotate every ninety days."),
        ],
        scores=[0.91, 0.456],
        method=Strategy.HYBRID,
        query_used="q",
    )


def test_answer_prompt_requires_grounded_cited_answers() -> None:
    prompt = build_answer_prompt("How is data protected?", _retrieval(), "Security Handbook")

    assert "based ONLY on the provided context" in prompt
    assert "Cite sources using [1], [2]" in prompt
    assert "Do not make up information" in prompt
    assert '"Security Handbook" knowledge base' in prompt
    assert "Context from hybrid retrieval:" in prompt
    assert "User Question: How is data protected?" in prompt


def test_answer_prompt_numbers_and_truncates_context() -> None:
    prompt = build_answer_prompt("q", _retrieval(), "kb")

    assert "[1] Encryption policy (relevance: 0.91)\n" + "x" * 800 + "\n\n---\n\n" in prompt
    assert "x" * 801 not in prompt
    assert "[2] Key rotation (relevance: 0.46)\nKeys rotate every ninety days." in prompt


def test_reformulation_prompt_reports_issues_for_original_query() -> None:
    evaluation = SelfEvaluation(
        relevance_token=RelevanceToken.NOT_RELEVANT,
        support_token=SupportToken.NOT_SUPPORTED,
        utility_token=UtilityToken.SOMEWHAT_USEFUL,
        confidence=0.234,
        needs_retry=True,
        reasoning="weak",
    )

    prompt = build_reformulation_prompt(
        "encryption of customer data", evaluation, ["Retrieve additional documents"]
    )

    assert 'Original Query: "encryption of customer data"' in prompt
    assert "- Relevance: NOT_RELEVANT" in prompt
    assert "- Support: NOT_SUPPORTED" in prompt
    assert "- Confidence: 0.23" in prompt
    assert "- Retrieve additional documents" in prompt
    assert prompt.rstrip().endswith("Respond with ONLY the reformulated query, no explanation.")
