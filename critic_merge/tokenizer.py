"""
Tokenizer v1.0.0
================
Splits text into diff units. Every protected span becomes exactly one token,
whatever whitespace or punctuation it contains.

Two granularities:
- word: words, single punctuation marks and whitespace runs
- sentence: sentences and the whitespace between them

Tokens always concatenate back to the input text.
"""

import re
from typing import List, Optional, Sequence

from .models import Token, ProtectedSpan
from .spans import tag_protected_spans

__version__ = "1.0.0"

_WORD_PATTERN = re.compile(r"\w+(?:['’-]\w+)*|[^\w\s]|\s+")

# Whitespace after terminal punctuation (optionally closed by a quote or
# bracket), or any whitespace run containing a newline.
_SENTENCE_BREAK = re.compile(r"(?:(?<=[.!?])|(?<=[.!?][\"')\]”’]))\s+|\s*\n\s*")


def tokenize(
    text: str,
    spans: Optional[Sequence[ProtectedSpan]] = None,
    granularity: str = 'word'
) -> List[Token]:
    """
    Tokenize text for diffing.

    Args:
        text: Text to tokenize
        spans: Protected spans of text (tagged when omitted)
        granularity: 'word' or 'sentence'

    Returns:
        List of Token objects whose texts concatenate to text
    """
    if not text:
        return []

    if spans is None:
        spans = tag_protected_spans(text)

    if granularity == 'sentence':
        return _tokenize_sentences(text, spans)
    return _tokenize_words(text, spans)


def _tokenize_words(text: str, spans: Sequence[ProtectedSpan]) -> List[Token]:
    tokens = []
    cursor = 0

    for span in spans:
        if span.start > cursor:
            tokens.extend(_plain_words(text[cursor:span.start]))
        tokens.append(Token(text=span.text, is_protected=True, span_kind=span.kind))
        cursor = span.end

    if cursor < len(text):
        tokens.extend(_plain_words(text[cursor:]))

    return tokens


def _plain_words(segment: str) -> List[Token]:
    return [Token(text=m.group(0)) for m in _WORD_PATTERN.finditer(segment)]


def _tokenize_sentences(text: str, spans: Sequence[ProtectedSpan]) -> List[Token]:
    """
    Cut text at sentence breaks that do not fall inside a protected span.

    A sentence token that is exactly one span keeps the span's protection.
    """
    span_at = {(s.start, s.end): s for s in spans}
    breaks = [
        m for m in _SENTENCE_BREAK.finditer(text)
        if m.end() > m.start() and not _inside_span(m.start(), m.end(), spans)
    ]

    tokens = []
    cursor = 0
    for m in breaks:
        if m.start() > cursor:
            tokens.append(_sentence_token(text, cursor, m.start(), span_at))
        tokens.append(Token(text=m.group(0)))
        cursor = m.end()

    if cursor < len(text):
        tokens.append(_sentence_token(text, cursor, len(text), span_at))

    return tokens


def _sentence_token(text: str, start: int, end: int, span_at) -> Token:
    span = span_at.get((start, end))
    if span is not None:
        return Token(text=span.text, is_protected=True, span_kind=span.kind)
    return Token(text=text[start:end])


def _inside_span(start: int, end: int, spans: Sequence[ProtectedSpan]) -> bool:
    for span in spans:
        if span.start >= end:
            break
        if start < span.end and span.start < end:
            return True
    return False


def detokenize(tokens: Sequence[Token]) -> str:
    """Join tokens back into text."""
    return ''.join(t.text for t in tokens)
