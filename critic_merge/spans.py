"""
Protected-Span Tagger v1.0.0
============================
Locates substrings that the diff must treat as indivisible:

- citations: bracketed groups such as [@smith2020; @jones, p. 4] and bare keys (@smith2020)
- display math ($$...$$) and inline math ($...$)
- explicit anchors: {#fig:label width=50%}
- cross-references: @fig:label, @tbl:label, @eq:label, @sec:label, @lst:label

Spans inside code (fenced or inline) and inside an annotation marker that is
never closed are skipped. Unterminated delimiters simply produce no span.
"""

import re
from bisect import bisect_right
from typing import List, Tuple

from .models import ProtectedSpan, SpanKind

__version__ = "1.0.0"

Region = Tuple[int, int]

CROSSREF_KINDS = ('fig', 'tbl', 'eq', 'sec', 'lst')
_CROSSREF_KIND = '(?:' + '|'.join(CROSSREF_KINDS) + ')'

# A bracketed group is a citation only when some "@" starts a key
_SPAN_PATTERN = re.compile(r"""
    (?P<display>\$\$[^$]+?\$\$)
  | (?P<inline>(?<![\\$\w])\$(?=[^\s$])[^$\n]*?[^\s$\\]\$(?![\d$]))
  | (?P<anchor>\{\#[A-Za-z]+:[^}\n]+\})
  | (?P<bracket>\[(?:[^\[\]\n]*[\s;])?-?@[^\[\]\n]*\])
  | (?P<crossref>(?<![\w@])@""" + _CROSSREF_KIND + r""":[\w-]+)
  | (?P<cite>(?<![\w@.])@[A-Za-z][\w-]*(?:[:./][\w-]+)*)
""", re.VERBOSE)

_BRACKETED_CROSSREF = re.compile(
    r'\[\s*@' + _CROSSREF_KIND + r':[\w-]+(?:\s*[;,]\s*@' + _CROSSREF_KIND + r':[\w-]+)*\s*\]'
)

_FENCED_CODE = re.compile(r'```.*?(?:```|\Z)', re.DOTALL)
_INLINE_CODE = re.compile(r'`[^`\n]+`')

MARKER_PAIRS = {
    '{++': '++}',
    '{--': '--}',
    '{~~': '~~}',
    '{>>': '<<}',
    '{==': '==}',
}
_MARKER_OPEN = re.compile(r'\{(?:\+\+|--|~~|>>|==)')


def find_code_regions(text: str) -> List[Region]:
    """
    Find fenced and inline code regions.

    An unterminated fence runs to the end of the text.

    Args:
        text: Document text

    Returns:
        Sorted, non-overlapping (start, end) ranges
    """
    if not text:
        return []

    regions = [(m.start(), m.end()) for m in _FENCED_CODE.finditer(text)]
    fenced = list(regions)

    for m in _INLINE_CODE.finditer(text):
        if not _intersects(m.start(), m.end(), fenced):
            regions.append((m.start(), m.end()))

    regions.sort()
    return regions


def find_unterminated_markers(text: str, code_regions: List[Region] = None) -> List[Region]:
    """
    Find annotation openers that never close.

    Each unterminated opener yields a region from the opener to the end of
    its paragraph.

    Args:
        text: Document text
        code_regions: Precomputed code regions (computed when omitted)

    Returns:
        Sorted (start, end) ranges
    """
    if code_regions is None:
        code_regions = find_code_regions(text)

    regions = []
    for m in _MARKER_OPEN.finditer(text):
        if _intersects(m.start(), m.end(), code_regions):
            continue
        closer = MARKER_PAIRS[m.group(0)]
        if text.find(closer, m.end()) != -1:
            continue
        paragraph_end = text.find('\n\n', m.end())
        if paragraph_end == -1:
            paragraph_end = len(text)
        regions.append((m.start(), paragraph_end))

    return regions


def tag_protected_spans(text: str) -> List[ProtectedSpan]:
    """
    Tag every protected span in text.

    Args:
        text: Raw document text

    Returns:
        Ordered, non-overlapping list of ProtectedSpan
    """
    if not text:
        return []

    code_regions = find_code_regions(text)
    excluded = _merge_regions(code_regions + find_unterminated_markers(text, code_regions))

    spans = []
    for m in _SPAN_PATTERN.finditer(text):
        start, end = m.start(), m.end()
        if _intersects(start, end, excluded):
            continue
        spans.append(ProtectedSpan(
            kind=_classify(m),
            text=m.group(0),
            start=start,
            end=end
        ))

    return spans


def _classify(match: re.Match) -> SpanKind:
    group = match.lastgroup
    if group == 'display':
        return SpanKind.MATH_DISPLAY
    if group == 'inline':
        return SpanKind.MATH_INLINE
    if group == 'anchor':
        return SpanKind.ANCHOR
    if group == 'crossref':
        return SpanKind.CROSSREF
    if group == 'bracket' and _BRACKETED_CROSSREF.fullmatch(match.group(0)):
        return SpanKind.CROSSREF
    return SpanKind.CITATION


def _merge_regions(regions: List[Region]) -> List[Region]:
    merged: List[Region] = []
    for start, end in sorted(regions):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _intersects(start: int, end: int, regions: List[Region]) -> bool:
    """Whether [start, end) touches any of the sorted, non-overlapping regions."""
    if not regions:
        return False
    idx = bisect_right(regions, (start, float('inf')))
    # Region starting at or before start may still extend past it
    if idx > 0 and regions[idx - 1][1] > start:
        return True
    # Region starting inside [start, end)
    return idx < len(regions) and regions[idx][0] < end
