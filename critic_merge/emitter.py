"""
Annotation Emitter v1.0.0
=========================
Renders an edit script as CriticMarkup.

- equal runs are copied through unchanged
- a delete run directly followed by an insert run becomes one substitution
- lone delete/insert runs become deletions/insertions

A protected token found on both sides of a delete/insert pair is pulled back
out as unchanged text, splitting the pair around it, so a citation or
equation that survived the edit is never shown as removed.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Dict, Any

from .config_logging import get_logger, get_config, MergeConfig
from .models import Annotation, AnnotationType, EditOp, Token, EQUAL, INSERT, DELETE
from .differ import TokenDiffer

logger = get_logger('critic_merge.emitter')

__version__ = "1.0.0"


@dataclass
class EmittedDocument:
    """Marked-up text and the annotations it contains."""
    text: str
    annotations: List[Annotation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'annotations': [a.to_dict() for a in self.annotations]
        }


class AnnotationEmitter:
    """
    Converts edit scripts to annotated text.

    Usage:
        emitter = AnnotationEmitter()
        doc = emitter.emit(differ.diff_texts(original, revised))
        print(doc.text)
    """

    def __init__(self, config: Optional[MergeConfig] = None, keep_protected_source: bool = False):
        """
        Args:
            config: Engine configuration
            keep_protected_source: Keep the original text of a deletion or
                substitution whose old side is nothing but protected spans
                and whitespace (the revised side is then a rendering of it)
        """
        self.config = config or get_config()
        self.keep_protected_source = keep_protected_source

        self._parts: List[str] = []
        self._annotations: List[Annotation] = []
        self._offset = 0
        self._line = 1

    def emit(self, ops: Sequence[EditOp]) -> EmittedDocument:
        """
        Render an edit script.

        Args:
            ops: Edit script from TokenDiffer

        Returns:
            EmittedDocument with positions relative to the rendered text
        """
        self._parts = []
        self._annotations = []
        self._offset = 0
        self._line = 1

        deleted: List[Token] = []
        inserted: List[Token] = []

        for op in ops:
            if op.kind == EQUAL:
                self._flush(deleted, inserted)
                deleted, inserted = [], []
                self._write(op.text)
            elif op.kind == DELETE:
                deleted.extend(op.tokens)
            elif op.kind == INSERT:
                inserted.extend(op.tokens)

        self._flush(deleted, inserted)

        logger.debug(f"Emitted {len(self._annotations)} annotations",
                     annotations=len(self._annotations))
        return EmittedDocument(text=''.join(self._parts), annotations=self._annotations)

    # -------------------------------------------------------------------------

    def _flush(self, deleted: List[Token], inserted: List[Token]):
        """Emit the changes between two equal runs, re-snapping shared protected tokens."""
        if not deleted and not inserted:
            return

        split = _shared_protected(deleted, inserted)
        if split is not None:
            i, j = split
            self._flush(deleted[:i], inserted[:j])
            self._write(deleted[i].text)
            self._flush(deleted[i + 1:], inserted[j + 1:])
            return

        old = ''.join(t.text for t in deleted)
        new = ''.join(t.text for t in inserted)

        if deleted and self.keep_protected_source and _only_protected(deleted):
            self._write(old)
            return

        if deleted and inserted:
            self._mark(AnnotationType.SUBSTITUTE, f'{{~~{old}~>{new}~~}}', old, new)
        elif deleted:
            self._mark(AnnotationType.DELETE, f'{{--{old}--}}', old)
        else:
            self._mark(AnnotationType.INSERT, f'{{++{new}++}}', new)

    def _mark(self, kind: AnnotationType, markup: str, content: str, replacement: Optional[str] = None):
        self._annotations.append(Annotation(
            type=kind,
            match=markup,
            content=content,
            position=self._offset,
            line=self._line,
            replacement=replacement
        ))
        self._write(markup)

    def _write(self, text: str):
        if text:
            self._parts.append(text)
            self._offset += len(text)
            self._line += text.count('\n')


def _shared_protected(deleted: List[Token], inserted: List[Token]) -> Optional[Tuple[int, int]]:
    """First protected token present on both sides, as (index in deleted, index in inserted)."""
    positions = {}
    for j, token in enumerate(inserted):
        if token.is_protected and token.text not in positions:
            positions[token.text] = j
    for i, token in enumerate(deleted):
        if token.is_protected and token.text in positions:
            return i, positions[token.text]
    return None


def _only_protected(tokens: List[Token]) -> bool:
    return any(t.is_protected for t in tokens) and all(t.is_protected or t.is_space for t in tokens)


def annotate_diff(
    original: str,
    revised: str,
    granularity: Optional[str] = None,
    config: Optional[MergeConfig] = None
) -> EmittedDocument:
    """
    Diff two texts and render the result as CriticMarkup.

    Args:
        original: Original text
        revised: Revised text
        granularity: 'word' or 'sentence'
        config: Engine configuration

    Returns:
        EmittedDocument
    """
    ops = TokenDiffer(config).diff_texts(original, revised, granularity)
    return AnnotationEmitter(config).emit(ops)
