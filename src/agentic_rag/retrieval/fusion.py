"""Score fusion for hybrid, multi-query and RAG-fusion retrieval."""

from __future__ import annotations

from dataclasses import replace

from agentic_rag.config import RetrievalConfig
from agentic_rag.types import Document, RetrievalResult, ScoredChunk

Ranked = list[tuple[Document, float]]


def clamp_score(score: float) -> float:
    return min(max(score, 0.0), 1.0)


class FusionLayer:
    """Merges ranked result lists into one ranking keyed by document id.

    Every method returns ``(document, score)`` pairs sorted best first with
    scores clamped to ``[0, 1]``.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def weighted(self, semantic: RetrievalResult, keyword: RetrievalResult, top_k: int) -> Ranked:
        """Linear blend of the two branches; a document missing from a branch scores 0 there."""

        documents: dict[str, Document] = {}
        semantic_scores = _scores_by_id(semantic, documents)
        keyword_scores = _scores_by_id(keyword, documents)
        combined = [
            (
                doc,
                clamp_score(
                    self.config.semantic_weight * semantic_scores.get(doc_id, 0.0)
                    + self.config.keyword_weight * keyword_scores.get(doc_id, 0.0)
                ),
            )
            for doc_id, doc in documents.items()
        ]
        return _top(combined, top_k)

    def by_appearance(self, results: list[RetrievalResult], top_k: int) -> Ranked:
        """Mean score boosted by how many result lists surfaced the document.

        Ranking uses the raw boosted scores; when the best of them exceeds 1
        every score is divided by it.
        """

        documents: dict[str, Document] = {}
        appearances: dict[str, list[float]] = {}
        for result in results:
            for doc, score in zip(result.documents, result.scores):
                documents.setdefault(doc.id, doc)
                appearances.setdefault(doc.id, []).append(score)

        merged = []
        for doc_id, scores in appearances.items():
            mean = sum(scores) / len(scores)
            boost = 1 + self.config.appearance_boost * len(scores)
            merged.append((documents[doc_id], mean * boost))

        ranked = _top(merged, top_k)
        if not ranked:
            return []
        high = max(ranked[0][1], 1.0)
        return [(doc, clamp_score(score / high)) for doc, score in ranked]

    def reciprocal_rank(self, results: list[RetrievalResult], top_k: int) -> Ranked:
        """Reciprocal Rank Fusion, normalized so the best document scores exactly 1."""

        documents: dict[str, Document] = {}
        scores: dict[str, float] = {}
        for result in results:
            for rank, doc in enumerate(result.documents):
                documents.setdefault(doc.id, doc)
                scores[doc.id] = scores.get(doc.id, 0.0) + 1.0 / (self.config.rrf_k + rank + 1)

        if not scores:
            return []
        high = max(scores.values())
        fused = [(documents[doc_id], score / high) for doc_id, score in scores.items()]
        return _top(fused, top_k)

    def fold_chunks(
        self,
        chunks: list[ScoredChunk],
        documents: list[Document],
        top_k: int,
    ) -> Ranked:
        """Group chunk hits by parent document.

        A document scores its best chunk; its content becomes its best
        ``chunks_per_document`` chunk texts so generation sees bounded context.
        Chunks whose parent is not in ``documents`` are dropped.
        """

        by_id = {doc.id: doc for doc in documents}
        grouped: dict[str, list[ScoredChunk]] = {}
        for item in chunks:
            if item.chunk.document_id in by_id:
                grouped.setdefault(item.chunk.document_id, []).append(item)

        folded = []
        for doc_id, items in grouped.items():
            items.sort(key=lambda item: item.score, reverse=True)
            best = items[: self.config.chunks_per_document]
            content = "\n\n---\n\n".join(item.chunk.text for item in best)
            folded.append((replace(by_id[doc_id], content=content), clamp_score(best[0].score)))
        return _top(folded, top_k)


def _scores_by_id(result: RetrievalResult, documents: dict[str, Document]) -> dict[str, float]:
    scores: dict[str, float] = {}
    for doc, score in zip(result.documents, result.scores):
        documents.setdefault(doc.id, doc)
        scores[doc.id] = max(score, scores.get(doc.id, 0.0))
    return scores


def _top(ranked: Ranked, top_k: int) -> Ranked:
    return sorted(ranked, key=lambda item: item[1], reverse=True)[:top_k]
