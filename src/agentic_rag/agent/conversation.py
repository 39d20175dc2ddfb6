"""Rolling conversation window."""

from __future__ import annotations

from collections import deque

from agentic_rag.types import ConversationTurn


class ConversationWindow:
    """Keeps the last ``limit`` exchanges, oldest first."""

    def __init__(self, limit: int = 5) -> None:
        self._turns: deque[ConversationTurn] = deque(maxlen=limit)

    def append(self, query: str, response: str) -> None:
        self._turns.append(ConversationTurn(query=query, response=response))

    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)
