"""Text chunker — paragraph/sentence-aware windows with overlap.

Strategy:
  1. Split the document into units: paragraphs (blank-line separated).
  2. A paragraph larger than ``max_chars`` is split into sentences
     (``.``, ``!`` or ``?`` followed by whitespace).
  3. A sentence still larger than ``max_chars`` is cut at the last word
     boundary inside the window, or hard-cut mid-word if there is none.
  4. Units are packed greedily into chunks of at most ``max_chars``.
  5. Trailing units of a chunk worth at most ``overlap * max_chars`` are
     repeated at the start of the next chunk.

Sizes count non-whitespace characters, so indentation and blank lines do not
use up the budget. Every chunk's text is exactly ``document[start:end]``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from contextindex.config import ChunkingCfg

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")

Span = tuple[int, int]


@dataclass(frozen=True)
class TextChunk:
    """A chunk of a document: its text, order, and offsets in the original."""

    text: str
    sequence_index: int
    start: int
    end: int


class TextChunker:
    """Split documents into overlapping chunks for embedding.

    Args:
        max_chars: Maximum non-whitespace characters per chunk (>= 1).
        overlap: Fraction of ``max_chars`` carried over between chunks, in [0.0, 1.0).
    """

    def __init__(self, max_chars: int = 1500, overlap: float = 0.13) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.max_chars = max_chars
        self.overlap = overlap

    @classmethod
    def from_config(cls, cfg: ChunkingCfg) -> TextChunker:
        return cls(max_chars=cfg.max_chars, overlap=cfg.overlap)

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into ordered chunks. Empty or blank text yields []."""
        if not text.strip():
            return []

        units = self._units(text)
        sizes = [_size(text, s, e) for s, e in units]

        groups: list[list[int]] = []
        current: list[int] = []
        current_size = 0
        for idx, unit_size in enumerate(sizes):
            if current and current_size + unit_size > self.max_chars:
                groups.append(current)
                carry = self._carry_over(current, sizes)
                while carry and sum(sizes[j] for j in carry) + unit_size > self.max_chars:
                    carry.pop(0)
                current = carry
                current_size = sum(sizes[j] for j in carry)
            current.append(idx)
            current_size += unit_size
        if current:
            groups.append(current)

        chunks: list[TextChunk] = []
        for seq, group in enumerate(groups):
            start = units[group[0]][0]
            end = units[group[-1]][1]
            chunks.append(TextChunk(text=text[start:end], sequence_index=seq, start=start, end=end))
        return chunks

    # ------------------------------------------------------------------
    # Unit construction
    # ------------------------------------------------------------------

    def _units(self, text: str) -> list[Span]:
        units: list[Span] = []
        for ps, pe in _split(text, 0, len(text), _PARAGRAPH_BREAK):
            if _size(text, ps, pe) <= self.max_chars:
                units.append((ps, pe))
                continue
            for ss, se in _split(text, ps, pe, _SENTENCE_BREAK):
                if _size(text, ss, se) <= self.max_chars:
                    units.append((ss, se))
                else:
                    units.extend(self._hard_cut(text, ss, se))
        return units

    def _hard_cut(self, text: str, start: int, end: int) -> list[Span]:
        """Cut text[start:end] into pieces of at most max_chars non-whitespace chars."""
        pieces: list[Span] = []
        pos = start
        while pos < end:
            count = 0
            i = pos
            last_space = -1
            while i < end and count < self.max_chars:
                if text[i].isspace():
                    last_space = i
                else:
                    count += 1
                i += 1
            mid_word = i < end and not text[i].isspace()
            cut = last_space if mid_word and last_space > pos else i
            piece = _strip(text, pos, cut)
            if piece is not None:
                pieces.append(piece)
            pos = cut
            while pos < end and text[pos].isspace():
                pos += 1
        return pieces

    def _carry_over(self, group: list[int], sizes: list[int]) -> list[int]:
        """Trailing units of *group* that fit the overlap budget (never all of it)."""
        budget = int(self.max_chars * self.overlap)
        carry: list[int] = []
        total = 0
        for idx in reversed(group[1:]):
            if total + sizes[idx] > budget:
                break
            carry.insert(0, idx)
            total += sizes[idx]
        return carry


def stitch(chunks: list[TextChunk]) -> str:
    """Rejoin chunks in sequence order, dropping the overlapped prefixes.

    The result equals the original document up to whitespace between chunks.
    """
    ordered = sorted(chunks, key=lambda c: c.sequence_index)
    parts: list[str] = []
    prev_end = -1
    for c in ordered:
        if c.start < prev_end:
            piece = c.text[prev_end - c.start:].lstrip()
        else:
            piece = c.text
        if piece:
            parts.append(piece)
        prev_end = max(prev_end, c.end)
    return " ".join(parts)


# ------------------------------------------------------------------
# Span helpers
# ------------------------------------------------------------------


def _size(text: str, start: int, end: int) -> int:
    return sum(1 for ch in text[start:end] if not ch.isspace())


def _strip(text: str, start: int, end: int) -> Span | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None


def _split(text: str, start: int, end: int, pattern: re.Pattern[str]) -> list[Span]:
    """Split text[start:end] on *pattern*; return stripped, non-empty spans."""
    spans: list[Span] = []
    pos = start
    for m in pattern.finditer(text, start, end):
        span = _strip(text, pos, m.start())
        if span is not None:
            spans.append(span)
        pos = m.end()
    span = _strip(text, pos, end)
    if span is not None:
        spans.append(span)
    return spans
