"""
Tests for Revision Import
=========================
"""

import pytest

from critic_merge.annotations import get_comments
from critic_merge.config_logging import MergeConfig, ProcessingError
from critic_merge.importer import convert_visible_comments, import_revision
from critic_merge.models import CommentRecord, CommentAnchor


class TestVisibleComments:
    """Tests for bracketed note conversion."""

    def test_note_converted(self):
        """A bracketed author note becomes a comment marker."""
        assert convert_visible_comments("See [Jane: check this] now.") == \
            "See {>>Jane: check this<<} now."

    @pytest.mark.parametrize("text", [
        "A [link: text](http://example.com) here.",
        "As shown [@smith2020: p. 4].",
        "As shown [see @smith2020: p. 4].",
        "Code `[Jane: not a note]` stays.",
        "Plain [brackets without colon] stay.",
    ])
    def test_left_alone(self, text):
        """Links, citations, code and plain brackets are untouched."""
        assert convert_visible_comments(text) == text


class TestImportRevision:
    """Tests for the import pipeline."""

    def test_substitution(self, config):
        """A changed word is annotated and counted."""
        result = import_revision("The cat sat.", "The dog sat.", config=config)
        assert result.annotated == "The {~~cat~>dog~~} sat."
        assert result.stats['substitutions'] == 1
        assert result.stats['total'] == 1
        assert result.unplaced_comments == []

    def test_no_changes(self, config):
        """An unchanged revision yields the original text."""
        result = import_revision("Same text.", "Same text.", config=config)
        assert result.annotated == "Same text."
        assert result.stats['total'] == 0

    def test_rendered_citation_keeps_source(self):
        """A citation that only changed into its rendered form is left as written."""
        original = "See [@smith2020] for details."
        result = import_revision(original, "See (Smith 2020) for details.",
                                 config=MergeConfig(log_level='WARNING'))
        assert result.annotated == original
        assert result.stats['total'] == 0

    def test_rendered_citation_marked_when_disabled(self):
        """Without source keeping, the rendering shows up as a substitution."""
        config = MergeConfig(log_level='WARNING', keep_protected_source=False)
        result = import_revision("See [@smith2020] for details.", "See (Smith 2020) for details.",
                                 config=config)
        assert result.annotated == "See {~~[@smith2020]~>(Smith 2020)~~} for details."
        assert result.stats['substitutions'] == 1

    def test_comments_use_default_author(self, config):
        """Comments without an author take the importer's author."""
        result = import_revision(
            "Alpha beta gamma.", "Alpha beta gamma.",
            comments=[{'id': '1', 'author': '', 'text': 'Nice', 'anchor': 'beta'}],
            author='Rev', config=config
        )
        assert result.annotated == "Alpha beta {>>Rev: Nice<<} gamma."
        assert result.stats['comments'] == 1
        assert result.stats['total'] == 1

    def test_unplaced_comment(self, config):
        """Comments whose anchor is gone are returned."""
        result = import_revision(
            "Alpha beta gamma.", "Alpha beta gamma.",
            comments=[{'id': '7', 'author': 'Ann', 'text': 'Hm', 'anchor': 'qqqqqqqq zzzzzzzz'}],
            config=config
        )
        assert [c.id for c in result.unplaced_comments] == ['7']
        assert result.to_dict()['unplaced_comments'] == ['7']

    def test_comment_on_substituted_word(self, config):
        """A comment on a replaced word lands after the substitution and is counted."""
        result = import_revision(
            "the word here and more", "the term here and more",
            comments=[CommentRecord("1", "Ann", "better?", CommentAnchor("term"))],
            config=config
        )
        assert result.annotated == "the {~~word~>term~~} {>>Ann: better?<<} here and more"
        assert result.stats['substitutions'] == 1
        assert result.stats['comments'] == 1
        assert result.stats['total'] == 2

        comments = get_comments(result.annotated, config=config)
        assert [(c.author, c.content) for c in comments] == [('Ann', 'better?')]

    def test_bad_comment_is_processing_error(self, config):
        """Comments that are neither records nor dicts fail as processing errors."""
        with pytest.raises(ProcessingError):
            import_revision("a", "b", comments=[42], config=config)
