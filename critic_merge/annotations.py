"""
CriticMarkup Annotations v1.0.0
===============================
Parsing and manipulation of inline revision markers.

Syntax:
    {++inserted text++}     - Insertions
    {--deleted text--}      - Deletions
    {~~old~>new~~}          - Substitutions
    {>>Author: comment<<}   - Comments
    {==text==}              - Highlights

Text is first split into typed fragments (text, code, opener, closer,
separator), then folded into a marker tree with an explicit stack. Every
fragment is consumed exactly once and nesting is capped by
`max_marker_depth`, so parsing and stripping are single linear passes.
Fragments that never pair up stay in the tree as orphans and are either
kept literally or dropped depending on the operation.

Comment markers are classified at parse time: a real comment, a figure or
table caption that happens to use the comment syntax, or code-like content.
Only real comments are reported.
"""

import re
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Union

from .config_logging import get_logger, get_config, MergeConfig
from .models import Annotation, AnnotationType, empty_stats
from .spans import find_code_regions

logger = get_logger('critic_merge.annotations')

__version__ = "1.0.0"

OPENERS = {
    '{++': AnnotationType.INSERT,
    '{--': AnnotationType.DELETE,
    '{~~': AnnotationType.SUBSTITUTE,
    '{>>': AnnotationType.COMMENT,
    '{==': AnnotationType.HIGHLIGHT,
}
CLOSERS = {
    '++}': AnnotationType.INSERT,
    '--}': AnnotationType.DELETE,
    '~~}': AnnotationType.SUBSTITUTE,
    '<<}': AnnotationType.COMMENT,
    '==}': AnnotationType.HIGHLIGHT,
}
SEPARATOR = '~>'
CLOSERS_BY_TYPE = {kind: closer for closer, kind in CLOSERS.items()}

TRACK_CHANGE_TYPES = (AnnotationType.INSERT, AnnotationType.DELETE, AnnotationType.SUBSTITUTE)

RESOLVED_MARKER = '[RESOLVED]'

_MARKER_TOKEN = re.compile(r'\{\+\+|\{--|\{~~|\{>>|\{==|\+\+\}|--\}|~~\}|<<\}|==\}|~>')
_RESOLVED_SUFFIX = re.compile(r'\s*\[(?:RESOLVED|✓)\]$')
_RESOLVED_CLOSE = re.compile(r'\s*\[(?:RESOLVED|✓)\]<<\}$')

# Caption heuristics
_CAPTION_PATH = re.compile(r'\(figures?/|\(images?/|\.png|\.jpg|\.pdf', re.IGNORECASE)
_CAPTION_SYNTAX = re.compile(r'\{#fig:|!\[')
_CAPTION_START = re.compile(r'^(?:Fig\.?|Figure|Table|Sankey|Diagram|Proportion|Distribution)', re.IGNORECASE)
_AUTHOR_PREFIX = re.compile(r'^[A-Za-z][A-Za-z\s]{0,20}:')
_CODE_LIKE = re.compile(r'^\s*(?:def|class|import|function|return|var|const|let)\s|;\s*$|=>|```')


class FragmentKind(Enum):
    TEXT = 'text'
    CODE = 'code'
    OPEN = 'open'
    CLOSE = 'close'
    SEPARATOR = 'separator'


class CommentClass(Enum):
    COMMENT = 'comment'
    CAPTION = 'caption'
    CODE = 'code'


@dataclass(frozen=True)
class Fragment:
    """One lexical piece of marked-up text."""
    kind: FragmentKind
    text: str
    start: int
    marker: Optional[AnnotationType] = None

    @property
    def end(self) -> int:
        return self.start + len(self.text)


@dataclass
class MarkerNode:
    """A matched marker with its body (and the new side of a substitution)."""
    kind: AnnotationType
    start: int
    end: int = -1
    children: List['Item'] = field(default_factory=list)
    replacement: Optional[List['Item']] = None
    opener: Optional[Fragment] = None
    separator: Optional[Fragment] = None
    label: CommentClass = CommentClass.COMMENT

    def active(self) -> List['Item']:
        return self.replacement if self.replacement is not None else self.children


Item = Union[Fragment, MarkerNode]


# =============================================================================
# LEXER / PARSER
# =============================================================================

class MarkupParser:
    """
    Folds marked-up text into a marker tree.
    """

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or get_config()

    def lex(self, text: str) -> List[Fragment]:
        """
        Split text into typed fragments. Marker syntax inside code is plain code.

        Args:
            text: Document text

        Returns:
            Fragments covering text exactly, in order
        """
        fragments: List[Fragment] = []
        cursor = 0

        for code_start, code_end in find_code_regions(text):
            self._lex_markup(text, cursor, code_start, fragments)
            fragments.append(Fragment(FragmentKind.CODE, text[code_start:code_end], code_start))
            cursor = code_end

        self._lex_markup(text, cursor, len(text), fragments)
        return fragments

    @staticmethod
    def _lex_markup(text: str, start: int, end: int, out: List[Fragment]):
        cursor = start
        for m in _MARKER_TOKEN.finditer(text, start, end):
            if m.start() > cursor:
                out.append(Fragment(FragmentKind.TEXT, text[cursor:m.start()], cursor))
            token = m.group(0)
            if token in OPENERS:
                out.append(Fragment(FragmentKind.OPEN, token, m.start(), OPENERS[token]))
            elif token in CLOSERS:
                out.append(Fragment(FragmentKind.CLOSE, token, m.start(), CLOSERS[token]))
            else:
                out.append(Fragment(FragmentKind.SEPARATOR, token, m.start()))
            cursor = m.end()
        if cursor < end:
            out.append(Fragment(FragmentKind.TEXT, text[cursor:end], cursor))

    def parse_tree(self, text: str) -> List[Item]:
        """
        Build the marker tree.

        Args:
            text: Document text

        Returns:
            Top-level items: text/code fragments, orphan marker fragments and MarkerNodes
        """
        root: List[Item] = []
        stack: List[MarkerNode] = []
        max_depth = self.config.max_marker_depth

        def current() -> List[Item]:
            return stack[-1].active() if stack else root

        for frag in self.lex(text):
            top = stack[-1] if stack else None

            if frag.kind in (FragmentKind.TEXT, FragmentKind.CODE):
                current().append(frag)
                continue

            # Comment bodies are opaque until their own closer
            if top is not None and top.kind == AnnotationType.COMMENT and not (
                    frag.kind == FragmentKind.CLOSE and frag.marker == AnnotationType.COMMENT):
                current().append(Fragment(FragmentKind.TEXT, frag.text, frag.start))
                continue

            if frag.kind == FragmentKind.OPEN:
                if len(stack) >= max_depth:
                    logger.debug(f"Marker nesting deeper than {max_depth} at {frag.start}; kept literal",
                                 position=frag.start)
                    current().append(frag)
                    continue
                stack.append(MarkerNode(kind=frag.marker, start=frag.start, opener=frag))
                continue

            if frag.kind == FragmentKind.SEPARATOR:
                if top is not None and top.kind == AnnotationType.SUBSTITUTE and top.replacement is None:
                    top.separator = frag
                    top.replacement = []
                else:
                    current().append(frag)
                continue

            # Closer: pair with the nearest open marker of the same kind
            match_idx = None
            for idx in range(len(stack) - 1, -1, -1):
                if stack[idx].kind == frag.marker:
                    match_idx = idx
                    break

            if match_idx is None:
                current().append(frag)
                continue

            while len(stack) - 1 > match_idx:
                self._dissolve(stack.pop(), current)

            node = stack.pop()
            node.end = frag.end
            if node.kind == AnnotationType.SUBSTITUTE and node.replacement is None:
                # {~~text~~} without a separator is not a substitution
                self._dissolve(node, current)
                current().append(frag)
                continue

            if node.kind == AnnotationType.COMMENT:
                node.label = self._classify_comment(_raw(node.children))
            current().append(node)

        while stack:
            self._dissolve(stack.pop(), current)

        return root

    @staticmethod
    def _dissolve(node: MarkerNode, current) -> None:
        """Turn an unpaired node back into orphan fragments in its parent."""
        parent = current()
        parent.append(node.opener)
        parent.extend(node.children)
        if node.separator is not None:
            parent.append(node.separator)
            parent.extend(node.replacement or [])

    def _classify_comment(self, content: str) -> CommentClass:
        stripped = content.strip()
        if _CAPTION_PATH.search(stripped) or _CAPTION_SYNTAX.search(stripped):
            return CommentClass.CAPTION
        if _CAPTION_START.match(stripped):
            return CommentClass.CAPTION
        if not _AUTHOR_PREFIX.match(stripped) and len(stripped) > self.config.caption_length_limit:
            return CommentClass.CAPTION
        if _CODE_LIKE.search(stripped):
            return CommentClass.CODE
        return CommentClass.COMMENT

    # -------------------------------------------------------------------------

    def parse(self, text: str) -> List[Annotation]:
        """
        Parse all top-level annotations.

        Args:
            text: Document text

        Returns:
            Annotations sorted by position, non-overlapping
        """
        if not text:
            return []

        line_starts = _line_starts(text)
        annotations = []

        for item in self.parse_tree(text):
            if not isinstance(item, MarkerNode):
                continue
            if item.kind == AnnotationType.COMMENT and item.label != CommentClass.COMMENT:
                continue
            annotations.append(self._to_annotation(text, item, line_starts))

        return annotations

    def _to_annotation(self, text: str, node: MarkerNode, line_starts: List[int]) -> Annotation:
        match = text[node.start:node.end]
        before, after = _context(text, node.start, node.end, self.config.context_chars)
        annotation = Annotation(
            type=node.kind,
            match=match,
            content=_raw(node.children),
            position=node.start,
            line=bisect_right(line_starts, node.start),
            before=before,
            after=after
        )

        if node.kind == AnnotationType.SUBSTITUTE:
            annotation.replacement = _raw(node.replacement or [])

        elif node.kind == AnnotationType.COMMENT:
            author, body = self._split_author(annotation.content)
            resolved = bool(_RESOLVED_SUFFIX.search(body))
            if resolved:
                body = _RESOLVED_SUFFIX.sub('', body).strip()
            annotation.author = author
            annotation.content = body
            annotation.resolved = resolved

        return annotation

    def _split_author(self, content: str):
        """Split a leading "Name:" prefix off a comment body."""
        colon = content.find(':')
        if 0 < colon < self.config.author_prefix_limit:
            prefix = content[:colon]
            if '\n' not in prefix and content[colon + 1:colon + 2] != '/':
                return prefix.strip(), content[colon + 1:].strip()
        return '', content.strip()


# =============================================================================
# TREE RENDERING
# =============================================================================

def _raw(items: List[Item]) -> str:
    """Reproduce the source text of a list of items."""
    parts = []
    for item in items:
        if isinstance(item, Fragment):
            parts.append(item.text)
        else:
            parts.append(item.opener.text)
            parts.append(_raw(item.children))
            if item.separator is not None:
                parts.append(item.separator.text)
                parts.append(_raw(item.replacement or []))
            parts.append(CLOSERS_BY_TYPE[item.kind])
    return ''.join(parts)


class _SeamWriter:
    """Output buffer that drops the extra space left by a removed marker, also at the start of the text."""

    def __init__(self):
        self.parts: List[str] = []
        self.seam = False

    def write(self, text: str):
        if not text:
            return
        if self.seam and text.startswith(' ') and (not self.parts or self.parts[-1][-1] in ' \n'):
            text = text[1:]
        self.seam = False
        if text:
            self.parts.append(text)

    def remove(self):
        self.seam = True

    def getvalue(self) -> str:
        return ''.join(self.parts)


def _resolve(items: List[Item], out: _SeamWriter, keep_comments: bool):
    for item in items:
        if isinstance(item, Fragment):
            if item.kind == FragmentKind.SEPARATOR or (
                    item.kind in (FragmentKind.OPEN, FragmentKind.CLOSE) and item.marker in TRACK_CHANGE_TYPES):
                out.remove()
            else:
                out.write(item.text)
            continue

        if item.kind in (AnnotationType.INSERT, AnnotationType.HIGHLIGHT):
            _resolve(item.children, out, keep_comments)
        elif item.kind == AnnotationType.DELETE:
            out.remove()
        elif item.kind == AnnotationType.SUBSTITUTE:
            _resolve(item.replacement or [], out, keep_comments)
        elif keep_comments or item.label != CommentClass.COMMENT:
            out.write(_raw([item]))
        else:
            out.remove()


# =============================================================================
# PUBLIC API
# =============================================================================

def parse_annotations(text: str, config: Optional[MergeConfig] = None) -> List[Annotation]:
    """
    Parse all annotations from text.

    Args:
        text: Document text
        config: Engine configuration

    Returns:
        Annotations sorted ascending by position, non-overlapping
    """
    return MarkupParser(config).parse(text)


def strip_annotations(text: str, keep_comments: bool = False, config: Optional[MergeConfig] = None) -> str:
    """
    Resolve every marker to its accepted value.

    Nested markers resolve outside-in: an accepted insertion keeps its body,
    whose own markers are then resolved; a deletion drops its body whole.
    Orphaned insert/delete/substitute fragments are removed; orphaned
    comment and highlight fragments stay as literal text.

    Args:
        text: Document text
        keep_comments: Leave comment markers in place
        config: Engine configuration

    Returns:
        Clean text
    """
    if not text:
        return text
    out = _SeamWriter()
    _resolve(MarkupParser(config).parse_tree(text), out, keep_comments)
    return out.getvalue()


def has_annotations(text: str) -> bool:
    """Check if text contains any annotation."""
    return bool(parse_annotations(text))


def apply_decision(annotation: Annotation, accept: bool) -> str:
    """
    Text an annotation resolves to under a decision.

    Insert: accept keeps content, reject empties it. Delete: accept empties,
    reject restores content. Substitute: accept takes the replacement,
    reject keeps the original. Comments and highlights are left as written.

    Args:
        annotation: Parsed annotation
        accept: Accept (True) or reject (False)

    Returns:
        Replacement text for the marker
    """
    if annotation.type == AnnotationType.INSERT:
        return annotation.content if accept else ''
    if annotation.type == AnnotationType.DELETE:
        return '' if accept else annotation.content
    if annotation.type == AnnotationType.SUBSTITUTE:
        return (annotation.replacement or '') if accept else annotation.content
    return annotation.match


def apply_decision_in_text(text: str, annotation: Annotation, accept: bool) -> str:
    """
    Apply a decision to one annotation inside a document.

    Args:
        text: Document text
        annotation: Annotation parsed from text
        accept: Accept (True) or reject (False)

    Returns:
        Updated text (unchanged if the marker is no longer present)
    """
    return _splice(text, annotation, apply_decision(annotation, accept))


def get_track_changes(text: str, config: Optional[MergeConfig] = None) -> List[Annotation]:
    """Insertions, deletions and substitutions only."""
    return [a for a in parse_annotations(text, config) if a.type in TRACK_CHANGE_TYPES]


def get_comments(
    text: str,
    pending_only: bool = False,
    resolved_only: bool = False,
    config: Optional[MergeConfig] = None
) -> List[Annotation]:
    """
    Comments in text, optionally filtered by status.

    Args:
        text: Document text
        pending_only: Only comments without a resolved marker
        resolved_only: Only comments with a resolved marker
        config: Engine configuration

    Returns:
        Comment annotations
    """
    comments = [a for a in parse_annotations(text, config) if a.type == AnnotationType.COMMENT]
    if pending_only:
        comments = [c for c in comments if not c.resolved]
    if resolved_only:
        comments = [c for c in comments if c.resolved]
    return comments


def set_comment_status(text: str, comment: Annotation, resolved: bool) -> str:
    """
    Mark a comment as resolved or pending.

    Args:
        text: Document text
        comment: Comment annotation parsed from text
        resolved: Whether to mark as resolved

    Returns:
        Updated text
    """
    if comment.type != AnnotationType.COMMENT:
        return text

    if resolved:
        if _RESOLVED_CLOSE.search(comment.match):
            return text
        new_match = comment.match[:-3] + f' {RESOLVED_MARKER}<<}}'
    else:
        new_match = _RESOLVED_CLOSE.sub('<<}', comment.match)

    return _splice(text, comment, new_match)


def count_annotations(text: str, config: Optional[MergeConfig] = None) -> Dict[str, int]:
    """
    Count annotations by type.

    Args:
        text: Document text
        config: Engine configuration

    Returns:
        {insertions, deletions, substitutions, comments, total}
    """
    counts = empty_stats()
    keys = {
        AnnotationType.INSERT: 'insertions',
        AnnotationType.DELETE: 'deletions',
        AnnotationType.SUBSTITUTE: 'substitutions',
        AnnotationType.COMMENT: 'comments',
    }
    for annotation in parse_annotations(text, config):
        key = keys.get(annotation.type)
        if key:
            counts[key] += 1
            counts['total'] += 1
    return counts


# =============================================================================
# HELPERS
# =============================================================================

def _splice(text: str, annotation: Annotation, replacement: str) -> str:
    start = annotation.position
    if text[start:start + len(annotation.match)] != annotation.match:
        start = text.find(annotation.match)
        if start == -1:
            logger.debug("Annotation no longer present; text unchanged", position=annotation.position)
            return text
    return text[:start] + replacement + text[start + len(annotation.match):]


def _line_starts(text: str) -> List[int]:
    starts = [0]
    pos = text.find('\n')
    while pos != -1:
        starts.append(pos + 1)
        pos = text.find('\n', pos + 1)
    return starts


def _context(text: str, start: int, end: int, width: int):
    before = text[max(0, start - width):start].split('\n')[-1]
    after = text[end:end + width].split('\n')[0]
    return before, after
