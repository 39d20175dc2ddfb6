"""Timing and the control-loop trace."""

from __future__ import annotations

import logging
import time

from agentic_rag.types import LoopState, LoopStep

logger = logging.getLogger(__name__)


class LoopTrace:
    """Append-only record of the state-machine path of one query."""

    def __init__(self) -> None:
        self._steps: list[LoopStep] = []

    def record(self, iteration: int, state: LoopState, detail: str = "") -> LoopStep:
        step = LoopStep(iteration=iteration, state=state, detail=detail)
        self._steps.append(step)
        logger.info("iteration %d -> %s %s", iteration, state.value, detail)
        return step

    def freeze(self) -> tuple[LoopStep, ...]:
        return tuple(self._steps)


class Timer:
    """Simple context timer."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
