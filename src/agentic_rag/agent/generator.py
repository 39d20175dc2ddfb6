"""Answer generation, direct answers and query reformulation."""

from __future__ import annotations

import logging

from agentic_rag.errors import ProviderError
from agentic_rag.providers.base import LLMProvider
from agentic_rag.types import Intent, RetrievalResult, SelfEvaluation

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = (
    'I couldn\'t find relevant information in the knowledge base to answer your question about: "{query}". '
    "The knowledge base may not contain documents on this topic."
)
GENERATION_FAILED_ANSWER = (
    "I found relevant documents but could not generate an answer right now. "
    "Please review the listed sources or try again."
)
CHITCHAT_FALLBACK_ANSWER = "Hello! How can I help you with the knowledge base today?"
OUT_OF_SCOPE_ANSWER = (
    'I\'m a specialized assistant for the "{corpus_name}" knowledge base. Your question appears to be '
    "outside my area of expertise. Could you ask something related to the available documents?"
)
INSUFFICIENT_ANSWER = "I don't have enough information to answer that question based on the current knowledge base."
CLARIFY_FALLBACK_QUESTION = "Could you please provide more details about your question?"


def build_answer_prompt(
    query: str,
    retrieval: RetrievalResult,
    corpus_name: str,
    context_chars: int = 800,
) -> str:
    """Grounded prompt listing each document as ``[n] title (relevance: s)`` plus truncated content."""

    context = "\n\n---\n\n".join(
        f"[{i}] {doc.title} (relevance: {score:.2f})\n{doc.content[:context_chars]}"
        for i, (doc, score) in enumerate(zip(retrieval.documents, retrieval.scores), start=1)
    )
    return f"""You are a helpful AI assistant with access to the "{corpus_name}" knowledge base.

Answer the user's question based ONLY on the provided context. Be accurate and cite sources by number.

Context from {retrieval.method.value} retrieval:
{context}

User Question: {query}

Instructions:
1. Answer directly and concisely
2. Cite sources using [1], [2], etc.
3. If context doesn't fully answer the question, say so
4. Do not make up information beyond what's in the context

Answer:"""


def build_reformulation_prompt(original_query: str, evaluation: SelfEvaluation, actions: list[str]) -> str:
    improvements = "\n".join(f"- {action}" for action in actions)
    return f"""Reformulate this query to improve retrieval quality.

Original Query: "{original_query}"

Issues Identified:
- Relevance: {evaluation.relevance_token.value}
- Support: {evaluation.support_token.value}
- Utility: {evaluation.utility_token.value}
- Confidence: {evaluation.confidence:.2f}

Suggested Improvements:
{improvements}

Generate a reformulated query that addresses these issues. Make it more specific, add context, or break it down as needed.

Respond with ONLY the reformulated query, no explanation."""


class AnswerGenerator:
    def __init__(
        self,
        llm: LLMProvider | None = None,
        *,
        answer_model: str | None = None,
        chat_model: str | None = None,
        context_chars: int = 800,
    ) -> None:
        self.llm = llm
        self.answer_model = answer_model
        self.chat_model = chat_model
        self.context_chars = context_chars

    async def answer(self, query: str, retrieval: RetrievalResult, corpus_name: str) -> str:
        if not retrieval.documents:
            return NO_CONTEXT_ANSWER.format(query=query)
        if self.llm is None:
            return GENERATION_FAILED_ANSWER
        prompt = build_answer_prompt(query, retrieval, corpus_name, self.context_chars)
        try:
            return (await self.llm.generate(prompt, model=self.answer_model)).strip()
        except ProviderError as exc:
            logger.error("Answer generation failed, returning static answer: %s", exc)
            return GENERATION_FAILED_ANSWER

    async def direct_answer(self, query: str, intent: Intent, corpus_name: str) -> str:
        if intent is Intent.OUT_OF_SCOPE:
            return OUT_OF_SCOPE_ANSWER.format(corpus_name=corpus_name)
        if intent is not Intent.CHITCHAT:
            return INSUFFICIENT_ANSWER
        if self.llm is None:
            return CHITCHAT_FALLBACK_ANSWER
        prompt = f'Respond naturally to this casual message: "{query}"\n\nKeep it brief and friendly.'
        try:
            return (await self.llm.generate(prompt, model=self.chat_model)).strip()
        except ProviderError as exc:
            logger.warning("Chitchat reply failed, using canned greeting: %s", exc)
            return CHITCHAT_FALLBACK_ANSWER

    async def reformulate(self, original_query: str, evaluation: SelfEvaluation, actions: list[str]) -> str:
        """Rewrite the original query; any failure returns it unchanged."""

        if self.llm is None:
            return original_query
        prompt = build_reformulation_prompt(original_query, evaluation, actions)
        try:
            rewritten = (await self.llm.generate(prompt, model=self.chat_model)).strip()
        except ProviderError as exc:
            logger.warning("Query reformulation failed, reusing original query: %s", exc)
            return original_query
        return rewritten or original_query
