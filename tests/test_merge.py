"""
Tests for Multi-Reviewer Merge
==============================
Change extraction, conflict detection and the merge pipeline.
"""

import pytest

from critic_merge.config_logging import ValidationError
from critic_merge.merge import (
    extract_changes, extract_all_changes, detect_conflicts, changes_intersect,
    compute_similarity, merge_reviewers
)
from critic_merge.models import Change, CHANGE_INSERT, CHANGE_DELETE, CHANGE_REPLACE
from critic_merge.resolver import build_merged_text, resolve_conflict

CONCLUSION = "The important conclusion is clear."
SECTIONS = "First section. Second section."


class TestExtractChanges:
    """Tests for per-reviewer change extraction."""

    def test_replacement(self, config):
        """A replaced word is a replace change in base coordinates."""
        changes = extract_changes(CONCLUSION, "The important conclusion is obvious.", "A", config=config)
        assert len(changes) == 1
        change = changes[0]
        assert change.kind == CHANGE_REPLACE
        assert change.reviewer == "A"
        assert (change.start, change.end) == (28, 33)
        assert change.old_text == "clear"
        assert change.new_text == "obvious"
        assert CONCLUSION[change.start:change.end] == change.old_text

    def test_insertion(self, config):
        """Inserted text is a zero-width change."""
        changes = extract_changes("a c", "a b c", "A", config=config)
        assert [(c.kind, c.start, c.end, c.new_text) for c in changes] == [(CHANGE_INSERT, 2, 2, "b ")]

    def test_deletion(self, config):
        """Removed text is a delete change."""
        changes = extract_changes("a b c", "a c", "A", config=config)
        assert [(c.kind, c.start, c.end, c.old_text) for c in changes] == [(CHANGE_DELETE, 2, 4, "b ")]

    def test_identical_revision(self, config):
        """No changes for an untouched revision."""
        assert extract_changes(CONCLUSION, CONCLUSION, "A", config=config) == []

    def test_sentence_granularity(self, config):
        """Sentence mode replaces whole sentences."""
        changes = extract_changes("First one. Second one.", "First one. Second two.", "A",
                                  granularity='sentence', config=config)
        assert len(changes) == 1
        assert changes[0].old_text == "Second one."
        assert changes[0].new_text == "Second two."

    def test_all_reviewers_in_order(self, config):
        """Parallel extraction keeps reviewer order."""
        revisions = [
            ("A", "The important conclusion is obvious."),
            ("B", "The important conclusion is evident."),
            ("C", "The key conclusion is clear."),
        ]
        result = extract_all_changes(CONCLUSION, revisions, config=config)
        assert [changes[0].reviewer for changes in result] == ["A", "B", "C"]

    def test_offsets_apply_to_base(self, config):
        """Every change's old text is found at its base range."""
        base = "Alpha beta gamma. Delta epsilon zeta."
        changes = extract_changes(base, "Alpha BETA gamma. Delta zeta eta.", "A", config=config)
        for change in changes:
            assert base[change.start:change.end] == change.old_text


class TestIntersection:
    """Tests for the range intersection rule."""

    @pytest.mark.parametrize("a,b,expected", [
        ((2, 2), (2, 2), True),
        ((2, 2), (3, 3), False),
        ((3, 3), (2, 5), True),
        ((2, 2), (2, 5), False),
        ((5, 5), (2, 5), False),
        ((0, 4), (3, 6), True),
        ((0, 3), (3, 6), False),
    ])
    def test_rule(self, a, b, expected):
        """Insertions meet at a point or strictly inside a range; ranges overlap normally."""
        first = Change("A", CHANGE_REPLACE, a[0], a[1])
        second = Change("B", CHANGE_REPLACE, b[0], b[1])
        assert changes_intersect(first, second) is expected
        assert changes_intersect(second, first) is expected


class TestDetectConflicts:
    """Tests for conflict detection."""

    def test_competing_replacements(self, config):
        """Two reviewers replacing the same word differently conflict."""
        all_changes = extract_all_changes(CONCLUSION, {
            "A": "The important conclusion is obvious.",
            "B": "The important conclusion is evident.",
        }, config=config)
        result = detect_conflicts(all_changes, CONCLUSION)

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.id == "c1"
        assert conflict.original == "clear"
        assert [c.reviewer for c in conflict.changes] == ["A", "B"]
        assert [c.new_text for c in conflict.changes] == ["obvious", "evident"]
        assert result.non_conflicting == []

    def test_resolving_first_option(self, config):
        """Choosing option 0 puts that reviewer's text in the merge."""
        all_changes = extract_all_changes(CONCLUSION, {
            "A": "The important conclusion is obvious.",
            "B": "The important conclusion is evident.",
        }, config=config)
        result = detect_conflicts(all_changes, CONCLUSION)
        assert resolve_conflict(result.conflicts[0], 0).ok

        merged = build_merged_text(CONCLUSION, result.non_conflicting, result.conflicts)
        assert "obvious" in merged
        assert "evident" not in merged

    def test_disjoint_edits(self, config):
        """Edits to different ranges merge without conflict."""
        all_changes = extract_all_changes(SECTIONS, {
            "A": "Initial section. Second section.",
            "B": "First section. Next section.",
        }, config=config)
        result = detect_conflicts(all_changes, SECTIONS)

        assert result.conflicts == []
        assert len(result.non_conflicting) == 2
        assert build_merged_text(SECTIONS, result.non_conflicting) == "Initial section. Next section."

    def test_identical_edits_deduplicated(self, config):
        """The same change from two reviewers survives once, credited to the last."""
        all_changes = extract_all_changes(CONCLUSION, {
            "A": "The important conclusion is obvious.",
            "B": "The important conclusion is obvious.",
        }, config=config)
        result = detect_conflicts(all_changes, CONCLUSION)

        assert result.conflicts == []
        assert len(result.non_conflicting) == 1
        assert result.non_conflicting[0].reviewer == "B"
        assert result.non_conflicting[0].also_by == ["A"]

    def test_same_point_insertions_conflict(self, config):
        """Different insertions at the same point conflict."""
        all_changes = extract_all_changes("a c", {"A": "a b c", "B": "a x c"}, config=config)
        result = detect_conflicts(all_changes, "a c")
        assert len(result.conflicts) == 1
        assert result.conflicts[0].original == ""

    def test_insertion_at_range_boundary(self, config):
        """An insertion at the edge of another reviewer's range does not conflict."""
        base = "one two three"
        all_changes = extract_all_changes(base, {
            "A": "one 2 three",
            "B": "one new two three",
        }, config=config)
        result = detect_conflicts(all_changes, base)
        assert result.conflicts == []
        assert build_merged_text(base, result.non_conflicting) == "one new 2 three"

    def test_combined_options(self):
        """Overlapping changes are offered as one option per reviewer over the whole range."""
        base = "abcdefghij"
        all_changes = [
            [Change("A", CHANGE_REPLACE, 0, 4, "abcd", "WXYZ")],
            [Change("B", CHANGE_REPLACE, 2, 6, "cdef", "12")],
        ]
        result = detect_conflicts(all_changes, base)
        conflict = result.conflicts[0]
        assert (conflict.start, conflict.end, conflict.original) == (0, 6, "abcdef")
        assert [c.new_text for c in conflict.changes] == ["WXYZef", "ab12"]

        resolve_conflict(conflict, 1)
        assert build_merged_text(base, result.non_conflicting, result.conflicts) == "ab12ghij"

    def test_duplicate_option_in_conflict(self):
        """Reviewers agreeing inside a conflict share one option."""
        base = "abc"
        all_changes = [
            [Change("A", CHANGE_REPLACE, 1, 2, "b", "X")],
            [Change("B", CHANGE_REPLACE, 1, 2, "b", "Y")],
            [Change("C", CHANGE_REPLACE, 1, 2, "b", "X")],
        ]
        conflict = detect_conflicts(all_changes, base).conflicts[0]
        assert len(conflict.changes) == 2
        assert conflict.changes[0].reviewer == "C"
        assert conflict.changes[0].also_by == ["A"]

    def test_id_counter_threaded(self):
        """Conflict ids continue from the given number."""
        all_changes = [
            [Change("A", CHANGE_REPLACE, 0, 1, "a", "x"), Change("A", CHANGE_REPLACE, 4, 5, "e", "y")],
            [Change("B", CHANGE_REPLACE, 0, 1, "a", "z"), Change("B", CHANGE_REPLACE, 4, 5, "e", "w")],
        ]
        result = detect_conflicts(all_changes, "abcdef", first_id=5)
        assert [c.id for c in result.conflicts] == ["c5", "c6"]
        assert result.next_id == 7

    def test_custom_same_change(self):
        """A caller-supplied equality can merge near-duplicates."""
        all_changes = [
            [Change("A", CHANGE_REPLACE, 0, 5, "clear", "Obvious")],
            [Change("B", CHANGE_REPLACE, 0, 5, "clear", "obvious")],
        ]
        result = detect_conflicts(
            all_changes, "clear",
            same_change=lambda a, b: (a.start, a.end, a.new_text.lower()) == (b.start, b.end, b.new_text.lower())
        )
        assert result.conflicts == []
        assert len(result.non_conflicting) == 1

    def test_every_change_accounted_once(self, config):
        """Each change lands in exactly one conflict or in the accepted set."""
        base = "One two three four five six."
        all_changes = extract_all_changes(base, {
            "A": "One 2 three four 5 six.",
            "B": "One two three FOUR 5 six.",
            "C": "One too three four five six!",
        }, config=config)
        result = detect_conflicts(all_changes, base)
        reviewers_in_conflicts = {c.reviewer for conflict in result.conflicts for c in conflict.changes}
        assert reviewers_in_conflicts <= {"A", "B", "C"}
        for change in result.non_conflicting:
            for conflict in result.conflicts:
                assert not (change.start < conflict.end and conflict.start < change.end)


class TestSimilarity:
    """Tests for compute_similarity."""

    def test_identical(self):
        """Identical texts score 1.0."""
        assert compute_similarity("the cat sat", "the cat sat") == 1.0

    def test_disjoint(self):
        """Texts with no shared words score 0.0."""
        assert compute_similarity("alpha beta gamma", "delta epsilon zeta") == 0.0

    def test_short_words_ignored(self):
        """Words of two characters or fewer are not counted."""
        assert compute_similarity("a b c", "a b c") == 0.0


class TestMergeReviewers:
    """Tests for the full merge pipeline."""

    def test_conflict_scenario(self, config):
        """Competing edits are reported and the base text is kept until resolved."""
        result = merge_reviewers(CONCLUSION, {
            "A": "The important conclusion is obvious.",
            "B": "The important conclusion is evident.",
        }, config=config)
        assert len(result.conflicts) == 1
        assert result.merged == CONCLUSION
        assert result.stats['conflicts'] == 1
        assert result.stats['reviewers'] == 2
        assert result.stats['total_changes'] == 2

    def test_disjoint_scenario(self, config):
        """Disjoint edits are both applied."""
        result = merge_reviewers(SECTIONS, {
            "A": "Initial section. Second section.",
            "B": "First section. Next section.",
        }, config=config)
        assert result.conflicts == []
        assert result.merged == "Initial section. Next section."
        assert result.stats['substitutions'] == 2
        assert result.stats['total'] == 2

    def test_annotated_output(self, config):
        """Accepted changes can be rendered as CriticMarkup."""
        result = merge_reviewers(SECTIONS, [("A", "Initial section. Second section.")],
                                 annotate=True, config=config)
        assert result.merged == "{~~First~>Initial~~} section. Second section."

    def test_comments_placed(self, config):
        """Reviewer comments are inserted after their anchors."""
        result = merge_reviewers(
            SECTIONS,
            {"A": SECTIONS},
            comments=[{'id': '1', 'author': 'A', 'text': 'Expand', 'anchor': 'Second'}],
            config=config
        )
        assert result.merged == "First section. Second {>>A: Expand<<} section."
        assert result.stats['comments'] == 1

    def test_comment_on_annotated_change(self, config):
        """A comment on changed text is placed after the change marker."""
        result = merge_reviewers(
            SECTIONS,
            [("A", "Initial section. Second section.")],
            comments=[{'id': '1', 'author': 'A', 'text': 'Why?', 'anchor': 'Initial'}],
            annotate=True,
            config=config
        )
        assert result.merged == "{~~First~>Initial~~} {>>A: Why?<<} section. Second section."
        assert result.stats['comments'] == 1

    def test_malformed_revisions_rejected(self, config):
        """A revision entry without text is a validation error."""
        with pytest.raises(ValidationError):
            merge_reviewers(SECTIONS, [("A",)], config=config)

    def test_to_dict(self, config):
        """The result serializes with snapshot-style keys."""
        data = merge_reviewers(CONCLUSION, {"A": "The important conclusion is obvious."},
                               config=config).to_dict()
        assert set(data) == {'base', 'merged', 'conflicts', 'nonConflicting', 'stats'}
        assert data['nonConflicting'][0]['newText'] == "obvious"
