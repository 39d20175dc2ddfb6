"""Agentic RAG engine package."""

from .config import AgentConfig, ChunkingConfig, RetrievalConfig, Settings, TrackerConfig, configure_logging

__all__ = ["AgentConfig", "ChunkingConfig", "RetrievalConfig", "Settings", "TrackerConfig", "configure_logging"]
