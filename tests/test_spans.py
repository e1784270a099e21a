"""
Tests for the Protected-Span Tagger
===================================
"""

import pytest

from critic_merge.models import SpanKind
from critic_merge.spans import tag_protected_spans, find_code_regions, find_unterminated_markers


def _texts(text):
    return [s.text for s in tag_protected_spans(text)]


class TestTagProtectedSpans:
    """Tests for span recognition."""

    def test_bracketed_citation(self):
        """A bracketed citation group is one span."""
        spans = tag_protected_spans("See [@smith2020; @jones2019] for details.")
        assert len(spans) == 1
        assert spans[0].kind == SpanKind.CITATION
        assert spans[0].text == "[@smith2020; @jones2019]"
        assert spans[0].start == 4

    def test_bare_citation_key(self):
        """A bare @key is a citation."""
        spans = tag_protected_spans("As argued by @smith2020, growth slowed.")
        assert [(s.kind, s.text) for s in spans] == [(SpanKind.CITATION, "@smith2020")]

    def test_cross_reference(self):
        """@fig:label is a cross-reference, not a citation."""
        spans = tag_protected_spans("As shown in @fig:plot.")
        assert len(spans) == 1
        assert spans[0].kind == SpanKind.CROSSREF
        assert spans[0].text == "@fig:plot"

    def test_bracketed_cross_reference(self):
        """A bracket holding only cross-references is a cross-reference."""
        spans = tag_protected_spans("See [@fig:a; @tbl:b].")
        assert spans[0].kind == SpanKind.CROSSREF

    def test_display_math(self):
        """$$...$$ is display math, even across whitespace."""
        spans = tag_protected_spans("Energy: $$E = mc^2$$ holds.")
        assert [(s.kind, s.text) for s in spans] == [(SpanKind.MATH_DISPLAY, "$$E = mc^2$$")]

    def test_inline_math(self):
        """$...$ is inline math."""
        spans = tag_protected_spans("where $x + y$ holds")
        assert [(s.kind, s.text) for s in spans] == [(SpanKind.MATH_INLINE, "$x + y$")]

    def test_anchor(self):
        """An explicit {#kind:label attrs} anchor is one span."""
        spans = tag_protected_spans("![Plot](a.png){#fig:plot width=50%}")
        assert [(s.kind, s.text) for s in spans] == [(SpanKind.ANCHOR, "{#fig:plot width=50%}")]

    def test_email_is_not_a_citation(self):
        """An @ inside a word is not a citation key."""
        assert tag_protected_spans("mail me at a@b.com") == []

    def test_bracketed_email_is_not_a_citation(self):
        """A bracket whose only @ sits inside a word is plain text."""
        assert tag_protected_spans("[mail me at a@b.com]") == []

    def test_bracketed_citation_with_prefix(self):
        """A key after a prefix still makes the bracket a citation."""
        spans = tag_protected_spans("As shown [see @smith2020, p. 4].")
        assert [(s.kind, s.text) for s in spans] == [(SpanKind.CITATION, "[see @smith2020, p. 4]")]

    def test_unterminated_math_yields_nothing(self):
        """A lone dollar sign produces no span and does not raise."""
        assert tag_protected_spans("It costs $5 and more") == []

    def test_spans_inside_code_are_skipped(self):
        """Citations inside inline code are not protected."""
        assert _texts("`@smith` and @jones") == ["@jones"]

    def test_spans_inside_fenced_code_are_skipped(self):
        """Fenced code hides its contents."""
        text = "Before @a\n```\n$x$ and @b\n```\nAfter @c"
        assert _texts(text) == ["@a", "@c"]

    def test_unterminated_marker_excludes_paragraph(self):
        """Spans after an opener that never closes are skipped up to the paragraph end."""
        text = "{++added @smith2020 text\n\nNext @jones"
        assert _texts(text) == ["@jones"]

    def test_spans_sorted_and_disjoint(self):
        """Output is ordered and non-overlapping."""
        text = "A [@x] b $y$ c @fig:z d {#tbl:t} e $$w$$ f @k"
        spans = tag_protected_spans(text)
        assert len(spans) == 6
        for a, b in zip(spans, spans[1:]):
            assert a.end <= b.start
        for s in spans:
            assert text[s.start:s.end] == s.text

    @pytest.mark.parametrize("text", ["", "plain words only", "no spans here."])
    def test_plain_text(self, text):
        """Text without spans yields an empty list."""
        assert tag_protected_spans(text) == []


class TestRegions:
    """Tests for code and unterminated-marker regions."""

    def test_unterminated_fence_runs_to_end(self):
        """A fence that never closes covers the rest of the text."""
        text = "a\n```\ncode"
        assert find_code_regions(text) == [(2, len(text))]

    def test_inline_code_region(self):
        """Inline code is a region."""
        assert find_code_regions("x `y` z") == [(2, 5)]

    def test_closed_marker_is_not_unterminated(self):
        """An opener with a matching closer is fine."""
        assert find_unterminated_markers("a {++b++} c") == []

    def test_unterminated_marker_region(self):
        """The region stops at the blank line."""
        text = "a {--b\n\nc"
        assert find_unterminated_markers(text) == [(2, 6)]
