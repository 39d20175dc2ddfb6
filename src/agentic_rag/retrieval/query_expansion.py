"""Model-backed query decomposition and paraphrasing."""

from __future__ import annotations

import logging

from agentic_rag.agent.decoding import ask_structured
from agentic_rag.providers.base import LLMProvider

logger = logging.getLogger(__name__)


class QueryExpander:
    """Generates sub-queries and RAG-fusion variations.

    Both generators degrade to ``[query]`` when the model is missing, fails,
    or answers with anything other than a JSON array of strings.
    """

    def __init__(self, llm: LLMProvider | None = None, *, model: str | None = None) -> None:
        self.llm = llm
        self.model = model

    async def sub_queries(self, query: str, count: int = 3) -> list[str]:
        prompt = (
            f"Generate {count} different sub-queries that break down this complex query "
            "into simpler parts:\n\n"
            f'Original Query: "{query}"\n\n'
            "Provide a JSON array of sub-queries that together would answer the original "
            "question. Each sub-query should be standalone and focus on one aspect.\n\n"
            'Example format: ["sub-query 1", "sub-query 2", "sub-query 3"]\n\n'
            "Respond with ONLY a valid JSON array."
        )
        decoded = await ask_structured(
            self.llm, prompt, list[str], model=self.model, purpose="sub-query generation"
        )
        queries = _clean(decoded.value_or([]))
        if not queries:
            return [query]
        logger.debug("Generated %d sub-queries for: %s", len(queries), query)
        return queries

    async def variations(self, query: str, count: int = 3) -> list[str]:
        """Return ``[query, *variations]`` for RAG fusion."""

        prompt = (
            f"Generate {count} semantically similar query variations for RAG fusion:\n\n"
            f'Original: "{query}"\n\n'
            "Create variations that:\n"
            "1. Use synonyms and alternative phrasings\n"
            "2. Expand abbreviations or add context\n"
            "3. Rephrase from different angles\n\n"
            'Provide JSON array: ["variation 1", "variation 2", "variation 3"]\n\n'
            "Respond with ONLY a valid JSON array."
        )
        decoded = await ask_structured(
            self.llm, prompt, list[str], model=self.model, purpose="query variation"
        )
        return [query, *_clean(decoded.value_or([]))]


def _clean(queries: list[str]) -> list[str]:
    return [item.strip() for item in queries if item and item.strip()]
