"""
Tests for the Tokenizer
=======================
"""

import pytest

from critic_merge.models import SpanKind
from critic_merge.tokenizer import tokenize, detokenize


class TestWordTokens:
    """Tests for word-level tokenization."""

    def test_words_punctuation_and_space(self):
        """Words, punctuation marks and whitespace runs are separate tokens."""
        assert [t.text for t in tokenize("Hello, world!")] == ['Hello', ',', ' ', 'world', '!']

    def test_contractions_stay_whole(self):
        """Apostrophes and hyphens inside a word do not split it."""
        assert [t.text for t in tokenize("don't re-run")] == ["don't", ' ', 're-run']

    def test_protected_span_is_one_token(self):
        """A citation with internal spaces is a single protected token."""
        tokens = tokenize("See [@a; @b] now")
        protected = [t for t in tokens if t.is_protected]
        assert len(protected) == 1
        assert protected[0].text == "[@a; @b]"
        assert protected[0].span_kind == SpanKind.CITATION

    def test_math_is_one_token(self):
        """Display math is never split."""
        tokens = tokenize("Then $$a + b = c$$ follows.")
        assert "$$a + b = c$$" in [t.text for t in tokens]

    def test_empty_text(self):
        """Empty text yields no tokens."""
        assert tokenize("") == []

    @pytest.mark.parametrize("text", [
        "Plain sentence with words.",
        "Mixed [@key2020] and $x^2$ and @fig:one\n\nNew paragraph.",
        "  leading and trailing   ",
        "Tabs\tand\nnewlines",
    ])
    def test_lossless(self, text):
        """Tokens concatenate back to the input."""
        assert detokenize(tokenize(text)) == text


class TestSentenceTokens:
    """Tests for sentence-level tokenization."""

    def test_sentences_and_gaps(self):
        """Sentences are separated by their whitespace."""
        tokens = tokenize("First one. Second one.", granularity='sentence')
        assert [t.text for t in tokens] == ['First one.', ' ', 'Second one.']

    def test_newline_breaks_sentence(self):
        """A line break ends a sentence even without punctuation."""
        tokens = tokenize("Heading\nBody text.", granularity='sentence')
        assert [t.text for t in tokens] == ['Heading', '\n', 'Body text.']

    def test_break_inside_span_is_ignored(self):
        """A period inside a citation does not end the sentence."""
        text = "Cite [@a. b] here. Next."
        tokens = tokenize(text, granularity='sentence')
        assert [t.text for t in tokens] == ['Cite [@a. b] here.', ' ', 'Next.']

    def test_sentence_lossless(self):
        """Sentence tokens concatenate back to the input."""
        text = "One! Two? \"Three.\" Four\n\nFive."
        assert detokenize(tokenize(text, granularity='sentence')) == text
