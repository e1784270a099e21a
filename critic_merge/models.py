"""
CriticMerge Models v1.0.0
=========================
Data classes shared by the diff, annotation, merge and comment-anchor stages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Any, Tuple


class SpanKind(str, Enum):
    """Kinds of substrings that are diffed atomically."""
    CITATION = 'citation'
    MATH_INLINE = 'math-inline'
    MATH_DISPLAY = 'math-display'
    ANCHOR = 'anchor'
    CROSSREF = 'crossref'


class AnnotationType(str, Enum):
    """CriticMarkup annotation kinds."""
    INSERT = 'insert'
    DELETE = 'delete'
    SUBSTITUTE = 'substitute'
    COMMENT = 'comment'
    HIGHLIGHT = 'highlight'


# Edit script op kinds
EQUAL = 'equal'
INSERT = 'insert'
DELETE = 'delete'

# Change kinds
CHANGE_INSERT = 'insert'
CHANGE_DELETE = 'delete'
CHANGE_REPLACE = 'replace'


@dataclass(frozen=True)
class ProtectedSpan:
    """
    A substring that must never be split by the diff.

    Attributes:
        kind: What the span protects
        text: Exact source text of the span
        start: Character offset of the first character
        end: Character offset one past the last character
    """
    kind: SpanKind
    text: str
    start: int
    end: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'kind': self.kind.value,
            'text': self.text,
            'start': self.start,
            'end': self.end
        }


@dataclass(frozen=True)
class Token:
    """A diff unit. Protected tokens carry the kind of the span they hold."""
    text: str
    is_protected: bool = False
    span_kind: Optional[SpanKind] = None

    @property
    def is_space(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class EditOp:
    """One run of the edit script: equal, insert or delete."""
    kind: str  # 'equal', 'insert', 'delete'
    tokens: Tuple[Token, ...]

    @property
    def text(self) -> str:
        return ''.join(t.text for t in self.tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'text': self.text}


@dataclass
class Annotation:
    """
    One parsed CriticMarkup marker.

    Attributes:
        type: Marker kind
        match: Raw marker text exactly as it appears in the document
        content: Inner text (the old side for substitutions)
        position: Character offset of the opening brace
        line: 1-based line number of the opening brace
        replacement: New side of a substitution
        author: Comment author taken from a leading "Name:" prefix
        resolved: Whether a comment carries a resolved marker
        before: Text preceding the marker on the same line (up to the context window)
        after: Text following the marker on the same line
    """
    type: AnnotationType
    match: str
    content: str
    position: int
    line: int = 1
    replacement: Optional[str] = None
    author: Optional[str] = None
    resolved: Optional[bool] = None
    before: str = ""
    after: str = ""

    @property
    def end(self) -> int:
        return self.position + len(self.match)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'type': self.type.value,
            'match': self.match,
            'content': self.content,
            'position': self.position,
            'line': self.line,
            'before': self.before,
            'after': self.after
        }
        if self.type == AnnotationType.SUBSTITUTE:
            result['replacement'] = self.replacement
        if self.type == AnnotationType.COMMENT:
            result['author'] = self.author
            result['resolved'] = self.resolved
        return result


@dataclass
class Change:
    """
    An atomic change from one reviewer, in base-document coordinates.

    Attributes:
        reviewer: Reviewer name/identifier
        kind: 'insert', 'delete' or 'replace'
        start: Start offset in the base text
        end: End offset in the base text (== start for insertions)
        old_text: Base text covered by the change
        new_text: Replacement text
        also_by: Other reviewers that made the identical change
    """
    reviewer: str
    kind: str
    start: int
    end: int
    old_text: str = ""
    new_text: str = ""
    also_by: List[str] = field(default_factory=list)

    @property
    def key(self) -> Tuple[int, int, str]:
        """Identity used for exact-match deduplication."""
        return (self.start, self.end, self.new_text)

    @property
    def is_point(self) -> bool:
        return self.start == self.end

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the conflict snapshot."""
        return {
            'reviewer': self.reviewer,
            'type': self.kind,
            'start': self.start,
            'end': self.end,
            'oldText': self.old_text,
            'newText': self.new_text
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Change':
        return cls(
            reviewer=data.get('reviewer', ''),
            kind=data.get('type', CHANGE_REPLACE),
            start=int(data['start']),
            end=int(data['end']),
            old_text=data.get('oldText', ''),
            new_text=data.get('newText', '')
        )


@dataclass
class Conflict:
    """
    A base range touched by several reviewers with differing replacements.

    Attributes:
        id: Stable identifier ("c1", "c2", ...)
        start: Start of the contested base range
        end: End of the contested base range
        original: Base text of the contested range
        changes: Competing options, one per distinct replacement
        resolved: Index of the chosen option, or None
    """
    id: str
    start: int
    end: int
    original: str
    changes: List[Change] = field(default_factory=list)
    resolved: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved is not None

    @property
    def chosen(self) -> Optional[Change]:
        if self.resolved is None:
            return None
        return self.changes[self.resolved]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the conflict snapshot."""
        return {
            'id': self.id,
            'start': self.start,
            'end': self.end,
            'original': self.original,
            'changes': [c.to_dict() for c in self.changes],
            'resolved': self.resolved
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Conflict':
        changes = [Change.from_dict(c) for c in data.get('changes', [])]
        start = data.get('start')
        end = data.get('end')
        if start is None:
            start = min((c.start for c in changes), default=0)
        if end is None:
            end = max((c.end for c in changes), default=start)
        resolved = data.get('resolved')
        if isinstance(resolved, bool) or not isinstance(resolved, int) or not 0 <= resolved < len(changes):
            resolved = None
        return cls(
            id=str(data['id']),
            start=int(start),
            end=int(end),
            original=data.get('original', ''),
            changes=changes,
            resolved=resolved
        )


@dataclass(frozen=True)
class CommentAnchor:
    """The text a comment is attached to, plus optional surrounding context."""
    anchor: str
    before: str = ""
    after: str = ""


@dataclass
class CommentRecord:
    """A comment extracted from the word-processor document."""
    id: str
    author: str
    text: str
    anchor: Optional[CommentAnchor] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CommentRecord':
        anchor = None
        anchor_text = data.get('anchor')
        if isinstance(anchor_text, dict):
            anchor = CommentAnchor(
                anchor=anchor_text.get('anchor', ''),
                before=anchor_text.get('before', ''),
                after=anchor_text.get('after', '')
            )
        elif anchor_text:
            anchor = CommentAnchor(
                anchor=anchor_text,
                before=data.get('before', ''),
                after=data.get('after', '')
            )
        return cls(
            id=str(data.get('id', '')),
            author=data.get('author', '') or 'Unknown',
            text=data.get('text', ''),
            anchor=anchor
        )


@dataclass
class PlacedComment:
    """A comment whose anchor was found in the target document."""
    comment: CommentRecord
    start: int
    end: int
    strategy: str  # 'exact', 'normalized', 'fuzzy'
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.comment.id,
            'author': self.comment.author,
            'start': self.start,
            'end': self.end,
            'strategy': self.strategy,
            'score': round(self.score, 4)
        }


@dataclass
class AnchorResolution:
    """Outcome of placing a batch of comments."""
    placed: List[PlacedComment] = field(default_factory=list)
    unplaced: List[CommentRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'placed': [p.to_dict() for p in self.placed],
            'unplaced': [c.id for c in self.unplaced]
        }


@dataclass
class ResolutionOutcome:
    """Result of choosing an option for a conflict. Errors are values, not exceptions."""
    ok: bool
    conflict_id: str
    choice: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'conflict_id': self.conflict_id,
            'choice': self.choice,
            'error': self.error
        }


def empty_stats() -> Dict[str, int]:
    """Stats record shared by import and merge outputs."""
    return {
        'insertions': 0,
        'deletions': 0,
        'substitutions': 0,
        'comments': 0,
        'total': 0
    }


@dataclass
class ImportResult:
    """Annotated markdown produced from one revised document."""
    annotated: str
    stats: Dict[str, int] = field(default_factory=empty_stats)
    unplaced_comments: List[CommentRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'annotated': self.annotated,
            'stats': self.stats,
            'unplaced_comments': [c.id for c in self.unplaced_comments]
        }


@dataclass
class MergeResult:
    """Outcome of merging several reviewer revisions against one base."""
    base: str
    merged: str
    conflicts: List[Conflict] = field(default_factory=list)
    non_conflicting: List[Change] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=empty_stats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base': self.base,
            'merged': self.merged,
            'conflicts': [c.to_dict() for c in self.conflicts],
            'nonConflicting': [c.to_dict() for c in self.non_conflicting],
            'stats': self.stats
        }
