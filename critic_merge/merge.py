"""
Multi-Reviewer Merge v1.0.0
===========================
Reconciles independent revisions of one base document.

Pipeline:
1. Each reviewer's revision is diffed against the base (in parallel) and
   every non-equal run becomes a Change in base coordinates.
2. All changes are swept in base order. Changes from different reviewers
   whose ranges intersect are grouped together.
3. A group touched by one reviewer is accepted as is. A group touched by
   several reviewers yields one option per reviewer; if every option is the
   same, it is accepted once (attributed to the last reviewer), otherwise it
   becomes a Conflict.

Range intersection:
- two insertions intersect when they share the insertion point
- an insertion intersects a range only when it falls strictly inside it
- two ranges intersect when they overlap
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Callable, Sequence, Tuple, Union

from .config_logging import get_logger, get_config, handle_errors, MergeConfig
from .comment_anchors import resolve_comment_anchors, insert_placed_comments
from .differ import TokenDiffer
from .models import (
    Change, Conflict, CommentRecord, MergeResult, EQUAL, DELETE, INSERT,
    CHANGE_INSERT, CHANGE_DELETE, CHANGE_REPLACE, empty_stats
)
from .resolver import apply_changes, apply_changes_as_annotations, change_kind

logger = get_logger('critic_merge.merge')

__version__ = "1.0.0"

SIMILARITY_WARNING = 0.5

SameChange = Callable[[Change, Change], bool]
Revisions = Union[Dict[str, str], Sequence[Tuple[str, str]]]


@dataclass
class DetectionResult:
    """Output of conflict detection."""
    conflicts: List[Conflict] = field(default_factory=list)
    non_conflicting: List[Change] = field(default_factory=list)
    next_id: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conflicts': [c.to_dict() for c in self.conflicts],
            'nonConflicting': [c.to_dict() for c in self.non_conflicting],
            'next_id': self.next_id
        }


# =============================================================================
# CHANGE EXTRACTION
# =============================================================================

def extract_changes(
    base: str,
    revised: str,
    reviewer: str,
    granularity: Optional[str] = None,
    config: Optional[MergeConfig] = None
) -> List[Change]:
    """
    Express one reviewer's revision as changes to the base.

    Args:
        base: Base text
        revised: Reviewer's text
        reviewer: Reviewer name
        granularity: 'word' or 'sentence'
        config: Engine configuration

    Returns:
        Changes in base order
    """
    ops = TokenDiffer(config).diff_texts(base, revised, granularity)

    changes = []
    position = 0
    i = 0
    while i < len(ops):
        op = ops[i]
        if op.kind == EQUAL:
            position += len(op.text)
            i += 1
            continue

        following = ops[i + 1] if i + 1 < len(ops) else None
        if following is not None and following.kind != EQUAL and following.kind != op.kind:
            deleted = op if op.kind == DELETE else following
            inserted = following if op.kind == DELETE else op
            old_text = deleted.text
            changes.append(Change(reviewer, CHANGE_REPLACE, position, position + len(old_text),
                                  old_text, inserted.text))
            position += len(old_text)
            i += 2
        elif op.kind == DELETE:
            changes.append(Change(reviewer, CHANGE_DELETE, position, position + len(op.text),
                                  op.text, ''))
            position += len(op.text)
            i += 1
        else:
            changes.append(Change(reviewer, CHANGE_INSERT, position, position, '', op.text))
            i += 1

    logger.debug(f"Extracted {len(changes)} changes for {reviewer}",
                 reviewer=reviewer, changes=len(changes))
    return changes


def _as_pairs(revisions: Revisions) -> List[Tuple[str, str]]:
    if isinstance(revisions, dict):
        return list(revisions.items())
    return [(name, text) for name, text in revisions]


def extract_all_changes(
    base: str,
    revisions: Revisions,
    granularity: Optional[str] = None,
    config: Optional[MergeConfig] = None
) -> List[List[Change]]:
    """
    Extract changes for every reviewer concurrently.

    Args:
        base: Base text
        revisions: {reviewer: text} or [(reviewer, text), ...]
        granularity: 'word' or 'sentence'
        config: Engine configuration

    Returns:
        One change list per reviewer, in input order
    """
    config = config or get_config()
    pairs = _as_pairs(revisions)

    if len(pairs) <= 1:
        return [extract_changes(base, text, name, granularity, config) for name, text in pairs]

    with ThreadPoolExecutor(max_workers=min(config.max_workers, len(pairs))) as pool:
        futures = [
            pool.submit(extract_changes, base, text, name, granularity, config)
            for name, text in pairs
        ]
        return [future.result() for future in futures]


# =============================================================================
# CONFLICT DETECTION
# =============================================================================

def changes_intersect(a: Change, b: Change) -> bool:
    """Whether two changes touch the same part of the base."""
    if a.is_point and b.is_point:
        return a.start == b.start
    if a.is_point:
        return b.start < a.start < b.end
    if b.is_point:
        return a.start < b.start < a.end
    return a.start < b.end and b.start < a.end


def same_change_exact(a: Change, b: Change) -> bool:
    """Default equality: identical range and replacement."""
    return a.key == b.key


class _Groups:
    """Union-find over change indices."""

    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int):
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            # Keep the earliest change as the root
            if rb < ra:
                ra, rb = rb, ra
            self.parent[rb] = ra


def detect_conflicts(
    all_changes: Sequence[Sequence[Change]],
    base: str,
    same_change: Optional[SameChange] = None,
    first_id: int = 1
) -> DetectionResult:
    """
    Split changes into accepted changes and conflicts.

    Args:
        all_changes: One change list per reviewer, in reviewer order
        base: Base text the changes refer to
        same_change: Equality used to merge options (exact by default)
        first_id: Number of the first conflict id ("c1", ...)

    Returns:
        DetectionResult; next_id is the number to continue from
    """
    same_change = same_change or same_change_exact

    order = {}
    flat: List[Change] = []
    for reviewer_index, changes in enumerate(all_changes):
        for change in changes:
            order.setdefault(change.reviewer, reviewer_index)
            flat.append(change)

    flat.sort(key=lambda c: (c.start, c.end, order[c.reviewer]))
    groups = _Groups(len(flat))

    # Sweep: active holds changes that can still intersect later ones
    active: List[int] = []
    for idx, change in enumerate(flat):
        active = [a for a in active if flat[a].end >= change.start]
        for a in active:
            other = flat[a]
            if other.reviewer != change.reviewer and changes_intersect(other, change):
                groups.union(a, idx)
        active.append(idx)

    members: Dict[int, List[int]] = {}
    for idx in range(len(flat)):
        members.setdefault(groups.find(idx), []).append(idx)

    result = DetectionResult(next_id=first_id)

    for root in sorted(members):
        group = [flat[i] for i in members[root]]
        reviewers = sorted({c.reviewer for c in group}, key=lambda r: order[r])

        if len(reviewers) == 1:
            result.non_conflicting.extend(group)
            continue

        options = _group_options(group, reviewers, base)
        unique = _dedupe(options, same_change)

        if len(unique) == 1:
            last = reviewers[-1]
            for change in group:
                if change.reviewer == last:
                    change.also_by = [r for r in reviewers if r != last]
                    result.non_conflicting.append(change)
            continue

        start = min(c.start for c in group)
        end = max(c.end for c in group)
        result.conflicts.append(Conflict(
            id=f'c{result.next_id}',
            start=start,
            end=end,
            original=base[start:end],
            changes=unique
        ))
        result.next_id += 1

    result.non_conflicting.sort(key=lambda c: (c.start, c.end))

    logger.info(
        f"Detected {len(result.conflicts)} conflicts among {len(flat)} changes",
        conflicts=len(result.conflicts), changes=len(flat),
        non_conflicting=len(result.non_conflicting)
    )
    return result


def _group_options(group: List[Change], reviewers: List[str], base: str) -> List[Change]:
    """One option per reviewer covering the whole group range."""
    start = min(c.start for c in group)
    end = max(c.end for c in group)
    original = base[start:end]

    options = []
    for reviewer in reviewers:
        own = [c for c in group if c.reviewer == reviewer]
        if len(own) == 1 and own[0].start == start and own[0].end == end:
            options.append(Change(reviewer, own[0].kind, start, end, original, own[0].new_text))
            continue
        shifted = [
            Change(c.reviewer, c.kind, c.start - start, c.end - start, c.old_text, c.new_text)
            for c in own
        ]
        new_text = apply_changes(original, shifted)
        options.append(Change(reviewer, change_kind(start, end, new_text), start, end, original, new_text))
    return options


def _dedupe(options: List[Change], same_change: SameChange) -> List[Change]:
    """Collapse equal options; the later reviewer takes the attribution."""
    unique: List[Change] = []
    for option in options:
        for i, existing in enumerate(unique):
            if same_change(existing, option):
                option.also_by = existing.also_by + [existing.reviewer]
                unique[i] = option
                break
        else:
            unique.append(option)
    return unique


# =============================================================================
# SIMILARITY
# =============================================================================

def compute_similarity(text1: str, text2: str) -> float:
    """
    Word-overlap similarity between two texts (words longer than 2 characters).

    Returns:
        Score between 0.0 and 1.0
    """
    words1 = {w for w in text1.lower().split() if len(w) > 2}
    words2 = [w for w in text2.lower().split() if len(w) > 2]
    if not words1 or not words2:
        return 0.0
    common = sum(1 for w in words2 if w in words1)
    return common / max(len(words1), len(words2))


# =============================================================================
# PIPELINE
# =============================================================================

@handle_errors(logger)
def merge_reviewers(
    base: str,
    revisions: Revisions,
    comments: Optional[Sequence[Union[CommentRecord, Dict[str, Any]]]] = None,
    annotate: bool = False,
    granularity: Optional[str] = None,
    same_change: Optional[SameChange] = None,
    config: Optional[MergeConfig] = None
) -> MergeResult:
    """
    Merge several reviewers' revisions of one base text.

    Accepted changes are applied; conflicted ranges keep the base text until
    resolved.

    Args:
        base: Base text sent to reviewers
        revisions: {reviewer: text} or [(reviewer, text), ...]
        comments: Reviewer comments with anchors, placed into the merged text
        annotate: Render accepted changes as CriticMarkup instead of applying them
        granularity: 'word' or 'sentence'
        same_change: Option equality for conflict detection
        config: Engine configuration

    Returns:
        MergeResult
    """
    config = config or get_config()
    pairs = _as_pairs(revisions)

    with logger.log_operation('merge_reviewers', reviewers=len(pairs)):
        for name, text in pairs:
            similarity = compute_similarity(base, text)
            if similarity < SIMILARITY_WARNING:
                logger.warning(f"Revision from {name} has low similarity to base ({similarity:.2f})",
                               reviewer=name, similarity=round(similarity, 4))

        all_changes = extract_all_changes(base, pairs, granularity, config)
        detection = detect_conflicts(all_changes, base, same_change=same_change)

        if annotate:
            merged = apply_changes_as_annotations(base, detection.non_conflicting)
        else:
            merged = apply_changes(base, detection.non_conflicting)

        placed_count = 0
        if comments:
            records = [c if isinstance(c, CommentRecord) else CommentRecord.from_dict(c) for c in comments]
            resolution = resolve_comment_anchors(merged, records, config)
            merged = insert_placed_comments(merged, resolution.placed, config)
            placed_count = len(resolution.placed)

        stats = empty_stats()
        for change in detection.non_conflicting:
            if change.kind == CHANGE_INSERT:
                stats['insertions'] += 1
            elif change.kind == CHANGE_DELETE:
                stats['deletions'] += 1
            else:
                stats['substitutions'] += 1
        stats['comments'] = placed_count
        stats['total'] = stats['insertions'] + stats['deletions'] + stats['substitutions'] + placed_count
        stats['reviewers'] = len(pairs)
        stats['conflicts'] = len(detection.conflicts)
        stats['total_changes'] = sum(len(c) for c in all_changes)

    return MergeResult(
        base=base,
        merged=merged,
        conflicts=detection.conflicts,
        non_conflicting=detection.non_conflicting,
        stats=stats
    )
