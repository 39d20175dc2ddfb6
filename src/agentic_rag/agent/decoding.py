"""Schema-validated decoding of structured model output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from agentic_rag.errors import MalformedModelOutput, ProviderError
from agentic_rag.providers.base import LLMProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


@dataclass(frozen=True, slots=True)
class Decoded(Generic[T]):
    """Outcome of a structured model call: a value or an error message."""

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise MalformedModelOutput(self.error)
        return self.value  # type: ignore[return-value]

    def value_or(self, default: T) -> T:
        return default if self.error is not None else self.value  # type: ignore[return-value]


@lru_cache(maxsize=None)
def _adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def decode_model_output(raw: str, schema: Any) -> Decoded[Any]:
    """Parse ``raw`` as JSON and validate it against ``schema``.

    ``schema`` is anything pydantic can validate: a ``BaseModel`` subclass or a
    plain type such as ``list[str]``. Markdown code fences are stripped first.
    Never raises; failures are returned as ``Decoded(error=...)``.
    """

    text = raw.strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return Decoded(error=f"invalid JSON: {exc.msg}")
    try:
        return Decoded(value=_adapter(schema).validate_python(data))
    except ValidationError as exc:
        return Decoded(error=f"schema mismatch: {exc.error_count()} error(s)")


async def ask_structured(
    llm: LLMProvider | None,
    prompt: str,
    schema: Any,
    *,
    model: str | None = None,
    purpose: str = "structured call",
) -> Decoded[Any]:
    """Call the model in JSON mode and decode the answer.

    A missing provider, a ``ProviderError`` and an undecodable answer all
    produce a failed ``Decoded`` so callers apply one default path.
    """

    if llm is None:
        return Decoded(error="no language model configured")
    try:
        raw = await llm.generate(prompt, model=model, json_mode=True)
    except ProviderError as exc:
        logger.warning("%s failed: %s", purpose, exc)
        return Decoded(error=str(exc))
    decoded = decode_model_output(raw, schema)
    if not decoded.ok:
        logger.warning("%s returned malformed output: %s", purpose, decoded.error)
    return decoded
