"""
Conflict Resolver v1.0.0
========================
Turns a base text plus accepted changes into merged text, and keeps the
record of unresolved conflicts between invocations.

Merged text is always rebuilt from the base in one left-to-right pass over
sorted, non-overlapping replacement ranges. No edit is ever spliced into a
previously edited buffer, so resolving conflicts in any order gives the
same result.

Snapshot format (JSON):
    {
        "base": "<base text>",
        "merged": "<merged text at save time>",
        "conflicts": [{"id", "start", "end", "original", "changes", "resolved"}],
        "nonConflicting": [{"reviewer", "type", "start", "end", "oldText", "newText"}]
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Dict, Optional, Any, Sequence, Tuple, Union

from .config_logging import get_logger, get_config, handle_errors, SnapshotError
from .models import (
    Change, Conflict, ResolutionOutcome,
    CHANGE_INSERT, CHANGE_DELETE, CHANGE_REPLACE
)

logger = get_logger('critic_merge.resolver')

__version__ = "1.0.0"

UNRESOLVED_KEEP_BASE = 'base'
UNRESOLVED_MARKERS = 'markers'

PREVIEW_CHARS = 60

Piece = Tuple[int, int, str]


# =============================================================================
# PIECE TABLE
# =============================================================================

def _render_change(change: Change, annotate: bool) -> str:
    if not annotate:
        return change.new_text
    if change.kind == CHANGE_INSERT:
        return f'{{++{change.new_text}++}}'
    if change.kind == CHANGE_DELETE:
        return f'{{--{change.old_text}--}}'
    return f'{{~~{change.old_text}~>{change.new_text}~~}}'


def rebuild(base: str, pieces: Sequence[Piece]) -> str:
    """
    Replace ranges of base in a single pass.

    Args:
        base: Base text
        pieces: (start, end, replacement) ranges in base coordinates

    Returns:
        Rebuilt text. A piece overlapping an earlier one is skipped.
    """
    out = []
    cursor = 0
    for start, end, replacement in sorted(pieces, key=lambda p: (p[0], p[1])):
        if start < cursor or end > len(base) or start > end:
            logger.warning(f"Skipping overlapping or out-of-range edit at {start}-{end}",
                           start=start, end=end)
            continue
        out.append(base[cursor:start])
        out.append(replacement)
        cursor = end
    out.append(base[cursor:])
    return ''.join(out)


def apply_changes(base: str, changes: Sequence[Change]) -> str:
    """
    Apply changes to base as plain text.

    Args:
        base: Base text
        changes: Non-overlapping changes in base coordinates

    Returns:
        Edited text
    """
    return rebuild(base, [(c.start, c.end, _render_change(c, False)) for c in changes])


def apply_changes_as_annotations(base: str, changes: Sequence[Change]) -> str:
    """
    Apply changes to base as CriticMarkup.

    Args:
        base: Base text
        changes: Non-overlapping changes in base coordinates

    Returns:
        Annotated text
    """
    return rebuild(base, [(c.start, c.end, _render_change(c, True)) for c in changes])


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve_conflict(conflict: Conflict, choice: int) -> ResolutionOutcome:
    """
    Choose one option of a conflict.

    An out-of-range choice leaves the conflict untouched and is reported in
    the returned outcome.

    Args:
        conflict: Conflict to resolve (updated in place on success)
        choice: 0-based index into conflict.changes

    Returns:
        ResolutionOutcome
    """
    if isinstance(choice, bool) or not isinstance(choice, int) or not 0 <= choice < len(conflict.changes):
        message = f"Invalid choice: {choice}. Must be 0-{len(conflict.changes) - 1}"
        logger.warning(f"Conflict {conflict.id}: {message}", conflict_id=conflict.id, choice=choice)
        return ResolutionOutcome(ok=False, conflict_id=conflict.id, choice=choice, error=message)

    conflict.resolved = choice
    logger.debug(f"Conflict {conflict.id} resolved with option {choice}",
                 conflict_id=conflict.id, reviewer=conflict.changes[choice].reviewer)
    return ResolutionOutcome(ok=True, conflict_id=conflict.id, choice=choice)


def resolve_conflicts(conflicts: Sequence[Conflict], choices: Dict[str, int]) -> List[ResolutionOutcome]:
    """Apply a {conflict_id: choice} map. Unknown ids produce failed outcomes."""
    by_id = {c.id: c for c in conflicts}
    outcomes = []
    for conflict_id, choice in choices.items():
        conflict = by_id.get(conflict_id)
        if conflict is None:
            logger.warning(f"Unknown conflict id: {conflict_id}", conflict_id=conflict_id)
            outcomes.append(ResolutionOutcome(ok=False, conflict_id=conflict_id, choice=choice,
                                              error=f"Unknown conflict: {conflict_id}"))
            continue
        outcomes.append(resolve_conflict(conflict, choice))
    return outcomes


def conflict_marker_block(conflict: Conflict) -> str:
    """Git-style marker block listing every option of a conflict."""
    lines = [f'<<<<<<< CONFLICT {conflict.id}']
    for change in conflict.changes:
        lines.append(f'======= {change.reviewer}')
        if change.kind == CHANGE_DELETE:
            lines.append(f'[DELETED: "{change.old_text}"]')
        else:
            lines.append(change.new_text)
    lines.append(f'>>>>>>> END {conflict.id}')
    return '\n'.join(lines)


def build_merged_text(
    base: str,
    non_conflicting: Sequence[Change],
    conflicts: Sequence[Conflict] = (),
    unresolved: str = UNRESOLVED_KEEP_BASE,
    annotate: bool = False
) -> str:
    """
    Rebuild merged text from the base.

    Args:
        base: Base text
        non_conflicting: Changes accepted without a conflict
        conflicts: Conflicts; resolved ones contribute their chosen option
        unresolved: 'base' keeps the base text of unresolved conflicts,
            'markers' writes git-style conflict blocks
        annotate: Render accepted changes as CriticMarkup

    Returns:
        Merged text
    """
    pieces: List[Piece] = [(c.start, c.end, _render_change(c, annotate)) for c in non_conflicting]

    for conflict in conflicts:
        chosen = conflict.chosen
        if chosen is not None:
            pieces.append((chosen.start, chosen.end, _render_change(chosen, annotate)))
        elif unresolved == UNRESOLVED_MARKERS:
            pieces.append((conflict.start, conflict.end, conflict_marker_block(conflict)))

    return rebuild(base, pieces)


def apply_conflict_markers(base: str, conflicts: Sequence[Conflict]) -> str:
    """Replace every unresolved conflict range of base with its marker block."""
    return build_merged_text(base, [], [c for c in conflicts if not c.is_resolved],
                             unresolved=UNRESOLVED_MARKERS)


def _preview(text: str) -> str:
    return text[:PREVIEW_CHARS] + ('...' if len(text) > PREVIEW_CHARS else '')


def format_conflict(conflict: Conflict, base: str, context: int = 50) -> str:
    """
    Human-readable description of a conflict with surrounding context.

    Args:
        conflict: Conflict to describe
        base: Base text the conflict refers to
        context: Characters of context on each side

    Returns:
        Multi-line string
    """
    before = base[max(0, conflict.start - context):conflict.start].strip()
    original = base[conflict.start:conflict.end]
    after = base[conflict.end:conflict.end + context].strip()

    lines = []
    if before:
        lines.append(f'  ...{before}')
    lines.append(f'  [ORIGINAL]: "{original or "(insertion point)"}"')
    if after:
        lines.append(f'  {after}...')
    lines.append('')
    lines.append('  Options:')

    for i, change in enumerate(conflict.changes):
        if change.kind == CHANGE_INSERT:
            label = f'Insert: "{_preview(change.new_text)}"'
        elif change.kind == CHANGE_DELETE:
            label = f'Delete: "{_preview(change.old_text)}"'
        else:
            label = f'Replace -> "{_preview(change.new_text)}"'
        lines.append(f'    {i + 1}. [{change.reviewer}] {label}')

    return '\n'.join(lines)


# =============================================================================
# SNAPSHOT
# =============================================================================

@dataclass
class ConflictSnapshot:
    """Persisted state of a merge with outstanding conflicts."""
    base: str
    merged: str = ""
    conflicts: List[Conflict] = field(default_factory=list)
    non_conflicting: List[Change] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base': self.base,
            'merged': self.merged,
            'conflicts': [c.to_dict() for c in self.conflicts],
            'nonConflicting': [c.to_dict() for c in self.non_conflicting]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConflictSnapshot':
        if not isinstance(data, dict) or not isinstance(data.get('base'), str):
            raise ValueError("Snapshot must be an object with a string 'base'")
        return cls(
            base=data['base'],
            merged=data.get('merged') or '',
            conflicts=[Conflict.from_dict(c) for c in data.get('conflicts', [])],
            non_conflicting=[Change.from_dict(c) for c in data.get('nonConflicting', [])]
        )


def _snapshot_path(path: Optional[Union[str, Path]]) -> Path:
    return Path(path) if path is not None else get_config().snapshot_path


def save_conflicts(snapshot: ConflictSnapshot, path: Optional[Union[str, Path]] = None) -> Path:
    """
    Write a snapshot to disk.

    Args:
        snapshot: Snapshot to write
        path: Target file (config snapshot_path when omitted)

    Returns:
        Path written
    """
    target = _snapshot_path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise SnapshotError(f"Could not write conflict snapshot: {e}", path=str(target))

    logger.info(f"Saved {len(snapshot.conflicts)} conflicts to {target}",
                conflicts=len(snapshot.conflicts), path=str(target))
    return target


def load_conflicts(path: Optional[Union[str, Path]] = None) -> Optional[ConflictSnapshot]:
    """
    Read a snapshot from disk.

    Args:
        path: Snapshot file (config snapshot_path when omitted)

    Returns:
        ConflictSnapshot, or None if no snapshot exists
    """
    target = _snapshot_path(path)
    if not target.exists():
        return None

    try:
        with open(target, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return ConflictSnapshot.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise SnapshotError(f"Could not read conflict snapshot: {e}", path=str(target))


def clear_conflicts(path: Optional[Union[str, Path]] = None) -> bool:
    """Delete the snapshot file. Returns True if one was removed."""
    target = _snapshot_path(path)
    if target.exists():
        target.unlink()
        logger.info(f"Cleared conflict snapshot {target}", path=str(target))
        return True
    return False


def get_unresolved_conflicts(path: Optional[Union[str, Path]] = None) -> List[Conflict]:
    """Conflicts in the saved snapshot that have no chosen option."""
    snapshot = load_conflicts(path)
    if snapshot is None:
        return []
    return [c for c in snapshot.conflicts if not c.is_resolved]


@handle_errors(logger)
def resume_merge(
    snapshot: ConflictSnapshot,
    choices: Optional[Dict[str, int]] = None,
    unresolved: str = UNRESOLVED_KEEP_BASE
) -> Tuple[ConflictSnapshot, List[ResolutionOutcome]]:
    """
    Apply further choices to a saved merge and rebuild its text.

    The merged text is rebuilt from the base, the non-conflicting changes
    and the resolved choices; the previously saved merged text is ignored.

    Args:
        snapshot: Loaded snapshot (conflicts updated in place)
        choices: {conflict_id: option index}
        unresolved: How to render conflicts still open ('base' or 'markers')

    Returns:
        (snapshot with a fresh merged text, outcomes of the applied choices)
    """
    outcomes = resolve_conflicts(snapshot.conflicts, choices or {})
    snapshot.merged = build_merged_text(
        snapshot.base, snapshot.non_conflicting, snapshot.conflicts, unresolved=unresolved
    )
    remaining = sum(1 for c in snapshot.conflicts if not c.is_resolved)
    logger.info(f"Resumed merge: {len(outcomes)} choices applied, {remaining} conflicts open",
                applied=len(outcomes), remaining=remaining)
    return snapshot, outcomes


def change_kind(start: int, end: int, new_text: str) -> str:
    """Kind of a change from its range and replacement."""
    if start == end:
        return CHANGE_INSERT
    if not new_text:
        return CHANGE_DELETE
    return CHANGE_REPLACE
