from __future__ import annotations

import re
import unicodedata
from typing import List, Tuple

from .errors import EmptyInputError
from .models import NormalizedText, Sentence, Token

TOKEN_PATTERN = re.compile(r"\w+(?:'\w+)?", re.UNICODE)
CODE_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", re.UNICODE)
SENTENCE_END_RE = re.compile(r"[.!?]+")
WHITESPACE_RE = re.compile(r"\S+")
LINE_RE = re.compile(r"[^\r\n]+")

PROSE = "prose"
CODE = "code"


def normalize_token(value: str) -> str:
    """Normalize a token so documents and corpus share identical hash input."""
    return unicodedata.normalize("NFKC", value).casefold()


def count_words(text: str) -> int:
    """Count whitespace-delimited non-empty chunks."""
    return sum(1 for _ in WHITESPACE_RE.finditer(text))


def tokenize(text: str, mode: str = PROSE) -> List[Token]:
    """Tokenize text into tokens with character offsets."""
    pattern = CODE_TOKEN_PATTERN if mode == CODE else TOKEN_PATTERN
    tokens: List[Token] = []
    for match in pattern.finditer(text):
        tokens.append(
            Token(
                text=match.group(),
                norm=normalize_token(match.group()),
                start=match.start(),
                end=match.end(),
            )
        )
    return tokens


def split_sentences(text: str) -> List[Tuple[int, int]]:
    """
    Split text on runs of sentence-ending punctuation.

    Each span starts at the first non-whitespace character of its segment and
    ends after the terminating punctuation run. A trailing segment without a
    terminator ends at its last non-whitespace character. Segments that are
    blank once stripped are dropped together with their punctuation.
    """
    spans: List[Tuple[int, int]] = []
    cursor = 0
    for match in SENTENCE_END_RE.finditer(text):
        span = _strip_span(text, cursor, match.start())
        if span is not None:
            spans.append((span[0], match.end()))
        cursor = match.end()
    tail = _strip_span(text, cursor, len(text))
    if tail is not None:
        spans.append(tail)
    return spans


def split_lines(text: str) -> List[Tuple[int, int]]:
    """Split text into non-blank lines with surrounding whitespace stripped."""
    spans: List[Tuple[int, int]] = []
    for match in LINE_RE.finditer(text):
        span = _strip_span(text, match.start(), match.end())
        if span is not None:
            spans.append(span)
    return spans


def normalize(text: str, *, mode: str = PROSE) -> NormalizedText:
    """Tokenize and segment raw text, keeping every offset in the original."""
    if text is None or not text.strip():
        raise EmptyInputError()
    if mode not in (PROSE, CODE):
        raise ValueError(f"Unknown normalization mode '{mode}'.")

    tokens = tokenize(text, mode)
    spans = split_lines(text) if mode == CODE else split_sentences(text)
    sentences = tuple(
        Sentence(start=start, end=end, word_count=count_words(text[start:end]))
        for start, end in spans
    )
    return NormalizedText(
        text=text,
        tokens=tuple(tokens),
        sentences=sentences,
        word_count=count_words(text),
        mode=mode,
    )


def resegment(normalized: NormalizedText) -> List[str]:
    """Re-derive sentence strings from emitted offsets."""
    return [normalized.segment(s.start, s.end) for s in normalized.sentences]


def _strip_span(text: str, start: int, end: int) -> Tuple[int, int] | None:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end
