import asyncio

import pytest
from pydantic import BaseModel

from agentic_rag.agent.decoding import Decoded, ask_structured, decode_model_output
from agentic_rag.errors import MalformedModelOutput, ProviderError


class _Verdict(BaseModel):
    token: str
    confidence: float


class _ScriptedLLM:
    def __init__(self, reply) -> None:
        self.reply = reply
        self.json_mode = None

    async def generate(self, prompt, *, model=None, json_mode=False):
        self.json_mode = json_mode
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.mark.parametrize(
    "raw",
    [
        '{"token": "USEFUL", "confidence": 0.8}',
        '```json\n{"token": "USEFUL", "confidence": 0.8}\n```',
        'Here you go:\n```\n{"token": "USEFUL", "confidence": 0.8}\n```',
    ],
)
def test_decodes_plain_and_fenced_json(raw) -> None:
    decoded = decode_model_output(raw, _Verdict)

    assert decoded.ok
    assert decoded.unwrap() == _Verdict(token="USEFUL", confidence=0.8)


def test_invalid_json_is_reported_not_raised() -> None:
    decoded = decode_model_output("USEFUL, fairly sure", _Verdict)

    assert not decoded.ok
    assert decoded.error.startswith("invalid JSON")
    assert decoded.value_or("fallback") == "fallback"
    with pytest.raises(MalformedModelOutput):
        decoded.unwrap()


def test_schema_mismatch_is_reported() -> None:
    decoded = decode_model_output('{"token": "USEFUL"}', _Verdict)

    assert decoded.error == "schema mismatch: 1 error(s)"


def test_plain_types_validate() -> None:
    assert decode_model_output('["a", "b"]', list[str]).value == ["a", "b"]
    assert not decode_model_output('{"a": 1}', list[str]).ok


def test_ask_structured_uses_json_mode() -> None:
    llm = _ScriptedLLM('["x"]')

    decoded = asyncio.run(ask_structured(llm, "prompt", list[str]))

    assert decoded == Decoded(value=["x"])
    assert llm.json_mode is True


def test_ask_structured_turns_failures_into_errors() -> None:
    missing = asyncio.run(ask_structured(None, "prompt", list[str]))
    failing = asyncio.run(ask_structured(_ScriptedLLM(ProviderError("llm", "429")), "prompt", list[str]))

    assert missing.error == "no language model configured"
    assert failing.error == "llm: 429"
