"""
Comment Anchor Resolver v1.0.0
==============================
Places external comments (from a word processor) into markdown text.

Each comment names the text it was attached to and, optionally, some text
before and after it. The anchor is looked up with increasingly lenient
strategies:

1. EXACT: every literal occurrence
2. NORMALIZED: quotes unified, whitespace runs matched loosely, case ignored
3. FUZZY: diff-match-patch Bitap match of the anchor's first 32 characters

Among several occurrences the one whose surroundings best match the given
context wins. Ties go to the first occurrence in document order that no
earlier comment of the batch has claimed, so identical context-free anchors
spread over successive occurrences.

Comments whose anchor cannot be found are reported and skipped.
"""

import re
from bisect import bisect_right
from difflib import SequenceMatcher
from typing import List, Optional, Sequence, Tuple

import diff_match_patch as dmp_module

from .annotations import MarkupParser, MarkerNode
from .config_logging import get_logger, get_config, MergeConfig
from .models import CommentRecord, CommentAnchor, PlacedComment, AnchorResolution
from .resolver import rebuild

logger = get_logger('critic_merge.comment_anchors')

__version__ = "1.0.0"

STRATEGY_EXACT = 'exact'
STRATEGY_NORMALIZED = 'normalized'
STRATEGY_FUZZY = 'fuzzy'

# Bitap works on at most this many pattern characters
FUZZY_PATTERN_CHARS = 32

Occurrence = Tuple[int, int]

# =============================================================================
# TEXT NORMALIZATION
# =============================================================================

_QUOTE_MAP = str.maketrans({
    '“': '"', '”': '"', '„': '"', '‟': '"',
    '«': '"', '»': '"',
    '‘': "'", '’': "'", '‚': "'", '‛': "'",
    '‹': "'", '›': "'", '´': "'",
})

_DOUBLE_QUOTES = '"“”„‟«»'
_SINGLE_QUOTES = "'‘’‚‛‹›´"


def normalize_quotes(text: str) -> str:
    """
    Normalize smart/curly quotes to straight quotes.

    Args:
        text: Input text that may contain smart quotes

    Returns:
        Text with all quotes as straight ASCII quotes
    """
    if not text:
        return ""
    return text.translate(_QUOTE_MAP)


def normalize_whitespace(text: str) -> str:
    """
    Collapse whitespace runs (including non-breaking and thin spaces) to one space.

    Args:
        text: Input text with potentially irregular whitespace

    Returns:
        Text with single spaces, trimmed
    """
    if not text:
        return ""
    text = text.replace('\u200B', '')   # Zero-width space (remove)
    return re.sub(r'\s+', ' ', text).strip()


def normalize_text_for_matching(text: str) -> str:
    """Quotes and whitespace normalized."""
    return normalize_whitespace(normalize_quotes(text))


def _loose_pattern(anchor: str) -> Optional[re.Pattern]:
    """Regex matching anchor with any quote style, any whitespace run and any case."""
    text = normalize_text_for_matching(anchor)
    if not text:
        return None

    parts = []
    for ch in text:
        if ch == ' ':
            parts.append(r'\s+')
        elif ch == '"':
            parts.append(f'[{_DOUBLE_QUOTES}]')
        elif ch == "'":
            parts.append(f'[{_SINGLE_QUOTES}]')
        else:
            parts.append(re.escape(ch))
    return re.compile(''.join(parts), re.IGNORECASE)


# =============================================================================
# RESOLVER
# =============================================================================

class AnchorResolver:
    """
    Resolves comment anchors to document positions.

    Usage:
        resolver = AnchorResolver()
        resolution = resolver.resolve(markdown, comments)
    """

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or get_config()
        self.dmp = dmp_module.diff_match_patch()
        self.dmp.Match_Threshold = self.config.fuzzy_threshold

    def find_occurrences(self, document: str, anchor: str) -> Tuple[str, List[Occurrence]]:
        """
        Find candidate ranges for an anchor.

        Args:
            document: Target text
            anchor: Anchor text

        Returns:
            (strategy used, list of (start, end) in document order); empty list if not found
        """
        if not anchor or not document:
            return STRATEGY_EXACT, []

        occurrences = []
        pos = document.find(anchor)
        while pos != -1:
            occurrences.append((pos, pos + len(anchor)))
            pos = document.find(anchor, pos + len(anchor))
        if occurrences:
            return STRATEGY_EXACT, occurrences

        pattern = _loose_pattern(anchor)
        if pattern is not None:
            occurrences = [(m.start(), m.end()) for m in pattern.finditer(document)]
            if occurrences:
                return STRATEGY_NORMALIZED, occurrences

        needle = normalize_text_for_matching(anchor)
        if len(needle) >= self.config.fuzzy_min_length:
            needle = needle[:FUZZY_PATTERN_CHARS]
            self.dmp.Match_Distance = max(1000, len(document))
            start = self.dmp.match_main(document, needle, 0)
            if start != -1:
                end = min(len(document), start + len(normalize_whitespace(anchor)))
                return STRATEGY_FUZZY, [(start, end)]

        return STRATEGY_EXACT, []

    @staticmethod
    def context_score(document: str, start: int, end: int, anchor: CommentAnchor) -> float:
        """
        How well the text around an occurrence matches the anchor's context.

        Returns:
            Mean similarity ratio of the provided before/after contexts, 0.0 without context
        """
        ratios = []
        if anchor.before:
            window = document[max(0, start - len(anchor.before)):start]
            ratios.append(SequenceMatcher(None, normalize_text_for_matching(anchor.before),
                                          normalize_text_for_matching(window)).ratio())
        if anchor.after:
            window = document[end:end + len(anchor.after)]
            ratios.append(SequenceMatcher(None, normalize_text_for_matching(anchor.after),
                                          normalize_text_for_matching(window)).ratio())
        if not ratios:
            return 0.0
        return sum(ratios) / len(ratios)

    def resolve(self, document: str, comments: Sequence[CommentRecord]) -> AnchorResolution:
        """
        Place a batch of comments.

        Args:
            document: Target text
            comments: Comments in submission order

        Returns:
            AnchorResolution with placed comments (in submission order) and unplaced ones
        """
        resolution = AnchorResolution()
        claimed = set()

        for comment in comments:
            anchor = comment.anchor
            if anchor is None or not anchor.anchor:
                logger.debug(f"Comment {comment.id} has no anchor text", comment_id=comment.id)
                resolution.unplaced.append(comment)
                continue

            strategy, occurrences = self.find_occurrences(document, anchor.anchor)
            if not occurrences:
                logger.warning(f"Could not place comment {comment.id}: anchor not found",
                               comment_id=comment.id, anchor=anchor.anchor[:60])
                resolution.unplaced.append(comment)
                continue

            scored = [(self.context_score(document, s, e, anchor), s, e) for s, e in occurrences]
            score, start, end = min(scored, key=lambda o: (-round(o[0], 6), o[1] in claimed, o[1]))
            claimed.add(start)

            resolution.placed.append(PlacedComment(
                comment=comment, start=start, end=end, strategy=strategy, score=score
            ))

        if resolution.unplaced:
            logger.warning(f"{len(resolution.unplaced)} comment(s) could not be matched to anchor text",
                           unplaced=len(resolution.unplaced))
        return resolution


def comment_markup(comment: CommentRecord) -> str:
    """Inline comment marker for a record."""
    return f' {{>>{comment.author}: {comment.text}<<}}'


def marker_spans(document: str, config: Optional[MergeConfig] = None) -> List[Occurrence]:
    """(start, end) of every top-level annotation marker."""
    return [(item.start, item.end) for item in MarkupParser(config).parse_tree(document)
            if isinstance(item, MarkerNode)]


def _outside_markers(position: int, spans: List[Occurrence], starts: List[int]) -> int:
    """Move a position that falls inside a marker to just after it."""
    idx = bisect_right(starts, position) - 1
    if idx >= 0 and spans[idx][0] < position < spans[idx][1]:
        return spans[idx][1]
    return position


def insert_placed_comments(
    document: str,
    placed: Sequence[PlacedComment],
    config: Optional[MergeConfig] = None
) -> str:
    """
    Insert comment markers right after their anchors in one pass.

    An anchor ending inside a change marker gets its comment after the
    whole marker. Comments sharing a position keep their submission order.
    """
    spans = marker_spans(document, config)
    starts = [start for start, _ in spans]
    pieces = []
    for p in placed:
        position = _outside_markers(p.end, spans, starts)
        pieces.append((position, position, comment_markup(p.comment)))
    return rebuild(document, pieces)



def resolve_comment_anchors(
    document: str,
    comments: Sequence[CommentRecord],
    config: Optional[MergeConfig] = None
) -> AnchorResolution:
    """
    Place comments in a document.

    Args:
        document: Target text
        comments: Comments in submission order
        config: Engine configuration

    Returns:
        AnchorResolution
    """
    return AnchorResolver(config).resolve(document, comments)


def insert_comments(
    document: str,
    comments: Sequence[CommentRecord],
    config: Optional[MergeConfig] = None
) -> Tuple[str, AnchorResolution]:
    """
    Place comments and insert their markers.

    Returns:
        (annotated text, resolution)
    """
    resolution = resolve_comment_anchors(document, comments, config)
    return insert_placed_comments(document, resolution.placed, config), resolution
