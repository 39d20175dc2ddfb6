"""In-process lexical scoring used when no index is available."""

from __future__ import annotations

from agentic_rag.types import Document, RetrievalResult, Strategy


def term_frequency_score(query: str, text: str) -> float:
    """Score ``text`` by weighted query-term counts plus an exact-phrase bonus.

    Each query term longer than two characters adds ``count * len(term) / 10``;
    containing the whole query adds 5. The sum is divided by 10 and capped at 1.
    """

    query_lower = query.lower().strip()
    text = text.lower()
    score = 0.0
    for term in query_lower.split():
        if len(term) > 2:
            score += text.count(term) * (len(term) / 10)
    if query_lower and query_lower in text:
        score += 5
    return min(score / 10, 1.0)


def exact_term_score(query: str, text: str) -> float:
    """Score ``text`` by whole-word matches of query terms (five hits per term saturate)."""
    terms = [term for term in query.lower().split() if len(term) > 2]
    if not terms:
        return 0.0
    words = text.lower().split()
    matches = sum(words.count(term) for term in terms)
    return min(matches / (len(terms) * 5), 1.0)


def simulated_semantic_search(query: str, documents: list[Document], top_k: int) -> RetrievalResult:
    return _rank(query, documents, top_k, Strategy.SEMANTIC, term_frequency_score)


def simulated_keyword_search(query: str, documents: list[Document], top_k: int) -> RetrievalResult:
    return _rank(query, documents, top_k, Strategy.KEYWORD, exact_term_score)


def _rank(query, documents, top_k, method, scorer) -> RetrievalResult:
    scored = [(doc, scorer(query, f"{doc.title} {doc.content}")) for doc in documents]
    scored.sort(key=lambda item: item[1], reverse=True)
    top = scored[:top_k]
    return RetrievalResult(
        documents=[doc for doc, _ in top],
        scores=[score for _, score in top],
        method=method,
        query_used=query,
    )
