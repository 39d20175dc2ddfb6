"""Fixed, sentence, paragraph and semantic-section chunking."""

from __future__ import annotations

import math
import re
from collections.abc import Iterator

from agentic_rag.config import ChunkingConfig
from agentic_rag.types import ChunkStrategy, TextChunk

_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_HEADING_BREAK = re.compile(r"(?:^|\n)#{1,3}[ \t]+")


def estimate_tokens(text: str) -> int:
    """Cheap size proxy: one token per four characters."""
    return math.ceil(len(text) / 4)


class Chunker:
    """Splits text into ``TextChunk`` spans by one of four strategies.

    Every strategy is a pure function of the input text and the config:
    chunking the same text twice yields identical boundaries. Each chunk's
    ``text`` is exactly ``source[start_index:end_index]``, so offsets can be
    used to highlight the chunk in the original document.

    - ``fixed``: character windows of ``fixed_size`` advancing by
      ``fixed_size - fixed_overlap``.
    - ``sentence``: groups of ``sentences_per_chunk`` sentences. A trailing
      fragment without terminal punctuation counts as a sentence.
    - ``paragraph``: blank-line separated blocks.
    - ``semantic``: markdown heading sections (``#`` to ``###``); a section
      longer than ``semantic_section_limit`` is split again by paragraph.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str, strategy: ChunkStrategy | str = ChunkStrategy.SEMANTIC) -> list[TextChunk]:
        strategy = ChunkStrategy(strategy)
        if strategy is ChunkStrategy.FIXED:
            spans = self._fixed_spans(text)
        elif strategy is ChunkStrategy.SENTENCE:
            spans = self._sentence_spans(text)
        elif strategy is ChunkStrategy.PARAGRAPH:
            spans = self._paragraph_spans(text)
        else:
            spans = self._semantic_spans(text)
        return [self._make_chunk(text, start, end) for start, end in spans]

    def _fixed_spans(self, text: str) -> list[tuple[int, int]]:
        stride = self.config.fixed_size - self.config.fixed_overlap
        spans: list[tuple[int, int]] = []
        start = 0
        while start < len(text):
            spans.append((start, min(start + self.config.fixed_size, len(text))))
            start += stride
        return spans

    def _sentence_spans(self, text: str) -> list[tuple[int, int]]:
        sentences = [m for m in _SENTENCE_PATTERN.finditer(text) if m.group().strip()]
        if not sentences:
            whole = _trim(text, 0, len(text))
            return [whole] if whole else []

        spans: list[tuple[int, int]] = []
        size = self.config.sentences_per_chunk
        for i in range(0, len(sentences), size):
            group = sentences[i : i + size]
            span = _trim(text, group[0].start(), group[-1].end())
            if span:
                spans.append(span)
        return spans

    def _paragraph_spans(self, text: str, start: int = 0, end: int | None = None) -> list[tuple[int, int]]:
        end = len(text) if end is None else end
        spans: list[tuple[int, int]] = []
        for piece_start, piece_end in _pieces(text, _PARAGRAPH_BREAK, start, end):
            span = _trim(text, piece_start, piece_end)
            if span:
                spans.append(span)
        return spans

    def _semantic_spans(self, text: str) -> list[tuple[int, int]]:
        spans: list[tuple[int, int]] = []
        for piece_start, piece_end in _pieces(text, _HEADING_BREAK, 0, len(text)):
            section = _trim(text, piece_start, piece_end)
            if not section:
                continue
            if section[1] - section[0] > self.config.semantic_section_limit:
                spans.extend(self._paragraph_spans(text, *section))
            else:
                spans.append(section)
        return spans or self._paragraph_spans(text)

    @staticmethod
    def _make_chunk(text: str, start: int, end: int) -> TextChunk:
        body = text[start:end]
        return TextChunk(text=body, start_index=start, end_index=end, tokens=estimate_tokens(body))


def _pieces(text: str, separator: re.Pattern[str], start: int, end: int) -> Iterator[tuple[int, int]]:
    position = start
    for match in separator.finditer(text, start, end):
        yield position, match.start()
        position = match.end()
    yield position, end


def _trim(text: str, start: int, end: int) -> tuple[int, int] | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None
