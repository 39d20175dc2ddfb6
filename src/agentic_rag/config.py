"""Configuration models for the agentic RAG engine."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChunkingConfig(BaseModel):
    """Configures the four chunking strategies and embedding sizes."""

    fixed_size: int = Field(default=500, ge=1)
    fixed_overlap: int = Field(default=50, ge=0)
    sentences_per_chunk: int = Field(default=3, ge=1)
    semantic_section_limit: int = Field(default=1000, ge=1)
    embedding_dimension: int = Field(default=384, ge=1)
    max_embedding_text_length: int = Field(default=2000, ge=1)

    @model_validator(mode="after")
    def _overlap_below_size(self) -> "ChunkingConfig":
        if self.fixed_overlap >= self.fixed_size:
            raise ValueError("fixed_overlap must be less than fixed_size")
        return self


class RetrievalConfig(BaseModel):
    """Configures retrieval strategies, fallback chains and fusion."""

    top_k: int = Field(default=5, ge=1)
    chunk_candidate_multiplier: int = Field(default=3, ge=1)
    chunks_per_document: int = Field(default=3, ge=1)
    chunk_cache_ttl_seconds: float = Field(default=20.0, ge=0.0)
    remote_timeout_seconds: float = Field(default=5.0, gt=0.0)
    semantic_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    appearance_boost: float = Field(default=0.1, ge=0.0)
    rrf_k: int = Field(default=60, ge=1)
    fusion_variations: int = Field(default=3, ge=1)
    sub_query_count: int = Field(default=3, ge=1)


class AgentConfig(BaseModel):
    """Configures one orchestrated query: iteration cap and quality gates."""

    max_iterations: int = Field(default=3, ge=1)
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    enable_criticism: bool = True
    enable_auto_retry: bool = True
    top_k: int = Field(default=5, ge=1)
    history_window: int = Field(default=5, ge=0)
    context_chars_per_document: int = Field(default=800, ge=1)


class TrackerConfig(BaseModel):
    """Configures the strategy performance tracker."""

    history_limit: int = Field(default=1000, ge=1)
    min_samples: int = Field(default=3, ge=1)
    success_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    similar_query_limit: int = Field(default=10, ge=1)
    similar_query_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    insight_min_metrics: int = Field(default=5, ge=1)
    insight_min_history: int = Field(default=20, ge=1)


class RemoteSearchConfig(BaseModel):
    """Connection values for a remote search backend.

    Construction validates every field, so a malformed configuration is
    rejected with a pydantic ``ValidationError`` before any request is made.
    """

    endpoint: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    index_name: str = Field(pattern=r"^[a-z0-9][a-z0-9-]*$", max_length=128)
    timeout_seconds: float = Field(default=5.0, gt=0.0)

    @field_validator("endpoint")
    @classmethod
    def _http_endpoint(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("https://", "http://")):
            raise ValueError("endpoint must be an http(s) URL")
        if len(value.split("://", 1)[1]) == 0:
            raise ValueError("endpoint must include a host")
        return value


class Settings(BaseSettings):
    """Environment-driven settings for applications embedding the engine."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTIC_RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    critic_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"
    log_level: str = "INFO"

    remote_search_endpoint: str = ""
    remote_search_api_key: str = ""
    remote_search_index: str = ""
    remote_search_timeout_seconds: float = 5.0

    def remote_search(self) -> RemoteSearchConfig | None:
        """Return the validated remote search config, or None if not configured."""
        if not (
            self.remote_search_endpoint
            or self.remote_search_api_key
            or self.remote_search_index
        ):
            return None
        return RemoteSearchConfig(
            endpoint=self.remote_search_endpoint,
            api_key=self.remote_search_api_key,
            index_name=self.remote_search_index,
            timeout_seconds=self.remote_search_timeout_seconds,
        )


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
