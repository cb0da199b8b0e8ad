"""
Tests for the default text collaborators.
"""
from markov_service.services.text import split_sentences, tokenize, untokenize


class TestTokenize:
    """Test suite for tokenize."""

    def test_words_and_punctuation(self):
        """Test punctuation becomes separate tokens."""
        assert tokenize("The cat sat.") == ["The", "cat", "sat", "."]

    def test_contractions_and_hyphens(self):
        """Test contractions and hyphenated words stay whole."""
        assert tokenize("I don't like well-known facts!") == [
            "I", "don't", "like", "well-known", "facts", "!",
        ]

    def test_ellipsis(self):
        """Test ellipsis is one token."""
        assert tokenize("Wait...") == ["Wait", "..."]

    def test_empty(self):
        """Test empty text."""
        assert tokenize("") == []


class TestUntokenize:
    """Test suite for untokenize."""

    def test_round_trip(self):
        """Test untokenize inverts tokenize for plain prose."""
        for text in [
            "The cat sat.",
            "Hello, world!",
            "Would you like to explore the stars together?",
            "I don't know (yet).",
            "It's John's book, isn't it?",
        ]:
            assert untokenize(tokenize(text)) == text

    def test_quotes(self):
        """Test double quotes hug their content."""
        assert untokenize(['"', "Hi", '"', "she", "said", "."]) == '"Hi" she said.'

    def test_empty(self):
        """Test no tokens gives empty string."""
        assert untokenize([]) == ""


class TestSplitSentences:
    """Test suite for split_sentences."""

    def test_split(self):
        """Test split on sentence-final punctuation."""
        assert split_sentences("One two. Three four! Five six?") == [
            "One two.", "Three four!", "Five six?",
        ]

    def test_single_sentence(self):
        """Test text without breaks."""
        assert split_sentences("  no break here  ") == ["no break here"]

    def test_empty(self):
        """Test blank text."""
        assert split_sentences("   ") == []
