"""Tests for pronunciation extraction."""

from hmmgraph.alignment.prons import Pronunciation, convert_phnx_to_prons

WORD_START = 100
WORD_END = 101


class TestConvertPhnxToProns:
    """Test cases for convert_phnx_to_prons."""

    def test_words_and_silence(self):
        """Test words with phones outside them."""
        phnx = [5, WORD_START, 1, 2, WORD_END, WORD_START, 3, WORD_END, 5]
        prons = convert_phnx_to_prons(phnx, [7, 8], WORD_START, WORD_END)
        assert prons == [
            Pronunciation(0, [5]),
            Pronunciation(7, [1, 2]),
            Pronunciation(8, [3]),
            Pronunciation(0, [5]),
        ]

    def test_empty_word(self):
        """Test a word with no phones between its markers."""
        prons = convert_phnx_to_prons([WORD_START, WORD_END], [4], WORD_START, WORD_END)
        assert prons == [Pronunciation(4, [])]

    def test_word_count_mismatch(self):
        """Test failure when the sequences disagree on the number of words."""
        phnx = [WORD_START, 1, WORD_END, WORD_START, 2, WORD_END]
        assert convert_phnx_to_prons(phnx, [7], WORD_START, WORD_END) is None
        assert convert_phnx_to_prons(phnx, [7, 8, 9], WORD_START, WORD_END) is None

    def test_malformed_markers(self):
        """Test stray, nested and missing markers."""
        assert convert_phnx_to_prons([1, WORD_END], [], WORD_START, WORD_END) is None
        assert convert_phnx_to_prons(
            [WORD_START, 1, WORD_START, 2, WORD_END], [7, 8], WORD_START, WORD_END) is None
        assert convert_phnx_to_prons([WORD_START, 1, 2], [7], WORD_START, WORD_END) is None

    def test_zeros_rejected(self):
        """Test that zero phones and zero words are invalid."""
        assert convert_phnx_to_prons([1, 0], [], WORD_START, WORD_END) is None
        assert convert_phnx_to_prons([WORD_START, 1, WORD_END], [0], WORD_START, WORD_END) is None

    def test_empty(self):
        """Test empty sequences."""
        assert convert_phnx_to_prons([], [], WORD_START, WORD_END) == []
        assert convert_phnx_to_prons([], [7], WORD_START, WORD_END) is None
