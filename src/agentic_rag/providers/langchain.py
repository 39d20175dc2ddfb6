"""LangChain-backed adapters for the LLM and embedding provider contracts."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage

from agentic_rag.config import Settings
from agentic_rag.errors import ProviderError

logger = logging.getLogger(__name__)


class ChatModelLLM:
    """Adapts LangChain chat models to ``LLMProvider``.

    ``models`` maps model names to preconfigured chat models; a call naming an
    unknown model uses ``default``. JSON mode binds an OpenAI-style
    ``response_format`` unless ``json_mode_kwargs`` says otherwise.
    """

    def __init__(
        self,
        default: BaseChatModel,
        *,
        models: Mapping[str, BaseChatModel] | None = None,
        json_mode_kwargs: Mapping[str, Any] | None = None,
    ) -> None:
        self._default = default
        self._models = dict(models or {})
        self._json_mode_kwargs = dict(
            json_mode_kwargs
            if json_mode_kwargs is not None
            else {"response_format": {"type": "json_object"}}
        )

    async def generate(
        self,
        prompt: str,
        *,
        model: str | None = None,
        json_mode: bool = False,
    ) -> str:
        chat_model: Any = self._models.get(model or "", self._default)
        if json_mode and self._json_mode_kwargs:
            chat_model = chat_model.bind(**self._json_mode_kwargs)
        try:
            message = await chat_model.ainvoke([HumanMessage(content=prompt)])
        except Exception as exc:
            raise ProviderError("llm", str(exc)) from exc
        return _message_text(message)


class LangChainEmbeddings:
    """Adapts a LangChain ``Embeddings`` object to ``EmbeddingProvider``."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def embed(self, texts: list[str]) -> list[list[float]]:
        try:
            return await self._embeddings.aembed_documents(texts)
        except Exception as exc:
            raise ProviderError("embeddings", str(exc)) from exc


def create_chat_model(settings: Settings | None = None) -> ChatModelLLM | None:
    """Build an OpenAI-backed provider, or None when no API key is configured."""
    settings = settings or Settings()
    if not settings.openai_api_key:
        logger.info("No OpenAI API key configured; LLM provider disabled")
        return None

    from langchain_openai import ChatOpenAI

    default = ChatOpenAI(
        model=settings.llm_model, temperature=0, api_key=settings.openai_api_key
    )
    critic = ChatOpenAI(
        model=settings.critic_model, temperature=0, api_key=settings.openai_api_key
    )
    return ChatModelLLM(
        default,
        models={settings.llm_model: default, settings.critic_model: critic},
    )


def create_embeddings(settings: Settings | None = None) -> LangChainEmbeddings | None:
    settings = settings or Settings()
    if not settings.openai_api_key:
        return None

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbeddings(
        OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key)
    )


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)
