"""Error taxonomy for the agentic RAG engine."""

from __future__ import annotations


class AgenticRagError(Exception):
    """Base class for engine errors."""


class ProviderError(AgenticRagError):
    """An LLM, embedding, vector store, key-value or remote search call failed."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class MalformedModelOutput(AgenticRagError):
    """A structured model response could not be decoded into its schema."""


class StructuralError(AgenticRagError):
    """The control loop finished without routing, retrieval or evaluation.

    Signals an implementation defect; it is never used for recoverable
    conditions.
    """
