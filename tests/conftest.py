import asyncio

import pytest

from agentic_rag.errors import ProviderError
from agentic_rag.providers.base import SearchHit
from agentic_rag.providers.memory import InMemoryKeyValueStore
from agentic_rag.types import Document

INTENT = "query intent classifier"
ANALYSIS = "provide a JSON analysis"
ROUTING = "intelligent query routing agent"
CLARIFY = "This query is vague and broad"
SUB_QUERIES = "sub-queries that break down"
VARIATIONS = "query variations for RAG fusion"
SUPPORT = "supported by the provided source documents"
UTILITY = "useful for answering the user's query"
CRITIC = "critical evaluator of RAG system responses"
ANSWER = "Answer the user's question based ONLY"
CHITCHAT = "Respond naturally to this casual message"
REFORMULATE = "Reformulate this query"


class FakeLLM:
    """Replies by the first rule whose marker occurs in the prompt.

    A reply may be a string, a callable taking the prompt, or an exception
    instance to raise. Prompts without a matching rule raise ProviderError.
    """

    def __init__(self, rules: dict[str, object] | None = None) -> None:
        self.rules = dict(rules or {})
        self.prompts: list[str] = []

    async def generate(self, prompt: str, *, model=None, json_mode=False) -> str:
        self.prompts.append(prompt)
        for marker, reply in self.rules.items():
            if marker in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply(prompt) if callable(reply) else reply
        raise ProviderError("llm", "no scripted reply")

    def count(self, marker: str) -> int:
        return sum(1 for prompt in self.prompts if marker in prompt)


class StaticSearchBackend:
    def __init__(self, hits: list[SearchHit]) -> None:
        self.hits = hits
        self.calls: list[str] = []

    async def search(self, query, top, *, mode="keyword", timeout=None):
        self.calls.append("search")
        return self.hits[:top]

    async def vector_search(self, embedding, top, *, timeout=None):
        self.calls.append("vector_search")
        return self.hits[:top]

    async def hybrid_search(self, query, embedding, top, *, semantic_rerank=True, timeout=None):
        self.calls.append("hybrid_search")
        return self.hits[:top]


class FailingSearchBackend(StaticSearchBackend):
    def __init__(self) -> None:
        super().__init__([])

    async def search(self, query, top, *, mode="keyword", timeout=None):
        self.calls.append("search")
        raise ProviderError("search", "503 service unavailable")

    async def vector_search(self, embedding, top, *, timeout=None):
        self.calls.append("vector_search")
        raise ProviderError("search", "503 service unavailable")

    async def hybrid_search(self, query, embedding, top, *, semantic_rerank=True, timeout=None):
        self.calls.append("hybrid_search")
        raise ProviderError("search", "503 service unavailable")


class SlowSearchBackend(StaticSearchBackend):
    async def vector_search(self, embedding, top, *, timeout=None):
        self.calls.append("vector_search")
        await asyncio.sleep(1)
        return self.hits[:top]


class FailingVectorStore:
    async def upsert(self, vectors):
        raise ProviderError("vector", "index offline")

    async def query(self, vector, top_k=5, metadata_filter=None):
        raise ProviderError("vector", "index offline")

    async def delete(self, ids):
        raise ProviderError("vector", "index offline")


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def backends():
    return {
        "static": StaticSearchBackend,
        "failing": FailingSearchBackend,
        "slow": SlowSearchBackend,
        "failing_vector": FailingVectorStore,
    }


@pytest.fixture
def corpus() -> list[Document]:
    return [
        Document(
            id="doc-encryption",
            title="Encryption policy",
            content=(
                "Company policy requires encryption of customer data at rest. "
                "Encryption keys rotate every ninety days."
            ),
            knowledge_base_id="kb-1",
        ),
        Document(
            id="doc-encryption-copy",
            title="Encryption policy archive",
            content="An older copy of the policy: encryption of customer data is recommended.",
            knowledge_base_id="kb-1",
        ),
        Document(
            id="doc-holidays",
            title="Holiday arrangements",
            content="Holiday arrangements are documented in the employee handbook.",
            knowledge_base_id="kb-1",
        ),
    ]
