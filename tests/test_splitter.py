"""Tests for splitter.py: token-bounded splitting with sentence snapping."""

from unittest.mock import patch

import pytest

from conftest import FakeTokenizer

from voice_notes.splitter import (
    PeriodInfo,
    Tokenizer,
    _snap_to_period,
    find_longest_period_gap,
    make_paragraphs,
    paragraph_size,
    split_text,
    split_transcript,
)


def _tokens_with_periods(length, period_positions):
    """Encode a stream of `length` filler words with '.' at the given positions."""
    tokenizer = FakeTokenizer()
    words = ["." if i in period_positions else "w" for i in range(length)]
    return tokenizer.encode(" ".join(words)), tokenizer


# ---------------------------------------------------------------------------
# find_longest_period_gap
# ---------------------------------------------------------------------------

class TestFindLongestPeriodGap:
    def test_no_period(self):
        info = find_longest_period_gap("no sentence end here", FakeTokenizer())
        assert info.longest_gap == -1
        assert info.longest_gap_text == "No period found"

    def test_longest_between_periods(self):
        text = "Hi. This one is longer. Ok."
        info = find_longest_period_gap(text, FakeTokenizer())
        assert info.longest_gap_text == " This one is longer"
        assert info.longest_gap == len(" This one is longer")
        assert info.encoded_gap_length == 4

    def test_single_period(self):
        info = find_longest_period_gap("Just one.", FakeTokenizer())
        assert info.longest_gap == 0


# ---------------------------------------------------------------------------
# _snap_to_period
# ---------------------------------------------------------------------------

class TestSnapToPeriod:
    def _is_period(self, tokenizer):
        return lambda t: tokenizer.decode([t]) == "."

    def test_closer_backward_wins(self):
        tokens, tok = _tokens_with_periods(20, {8, 13})
        assert _snap_to_period(tokens, 0, 10, 5, self._is_period(tok)) == 9

    def test_closer_forward_wins(self):
        tokens, tok = _tokens_with_periods(20, {6, 11})
        assert _snap_to_period(tokens, 0, 10, 5, self._is_period(tok)) == 12

    def test_tie_goes_backward(self):
        tokens, tok = _tokens_with_periods(20, {7, 13})
        assert _snap_to_period(tokens, 0, 10, 5, self._is_period(tok)) == 8

    def test_outside_window_keeps_proposed(self):
        tokens, tok = _tokens_with_periods(30, {2, 25})
        assert _snap_to_period(tokens, 0, 10, 5, self._is_period(tok)) == 10

    def test_never_scans_before_start(self):
        tokens, tok = _tokens_with_periods(20, {3})
        assert _snap_to_period(tokens, 5, 10, 8, self._is_period(tok)) == 10


# ---------------------------------------------------------------------------
# split_transcript
# ---------------------------------------------------------------------------

class TestSplitTranscript:
    def test_no_periods_splits_exactly(self):
        tokenizer = FakeTokenizer()
        text = " ".join(["word"] * 10_000)
        tokens = tokenizer.encode(text)
        info = find_longest_period_gap(text, tokenizer)
        pieces = split_transcript(tokens, 2750, tokenizer, info)
        assert [p.token_count for p in pieces] == [2750, 2750, 2750, 1750]
        assert [p.index for p in pieces] == [0, 1, 2, 3]

    def test_pieces_end_on_periods(self):
        tokens, tok = _tokens_with_periods(40, {8, 18, 29})
        pieces = split_transcript(tokens, 10, tok, scan_window=5)
        assert pieces[0].text.endswith(".")
        assert pieces[0].token_count == 9
        assert sum(p.token_count for p in pieces) == 40

    def test_covers_every_token_in_order(self):
        tokenizer = FakeTokenizer()
        text = " ".join(f"t{i}" + ("." if i % 7 == 6 else "") for i in range(300))
        tokens = tokenizer.encode(text)
        pieces = split_transcript(tokens, 25, tokenizer, scan_window=4)
        rebuilt = tokenizer.encode(" ".join(p.text for p in pieces))
        assert rebuilt == tokens

    def test_always_makes_progress(self):
        # A period right at the start of each window must not stall the loop
        tokens, tok = _tokens_with_periods(12, {0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11})
        pieces = split_transcript(tokens, 1, tok, scan_window=3)
        assert all(p.token_count >= 1 for p in pieces)
        assert sum(p.token_count for p in pieces) == 12

    def test_zero_window_disables_snapping(self):
        tokens, tok = _tokens_with_periods(20, {8})
        pieces = split_transcript(tokens, 10, tok, scan_window=0)
        assert [p.token_count for p in pieces] == [10, 10]

    def test_no_period_info_skips_snapping(self):
        tokens, tok = _tokens_with_periods(20, {8})
        info = PeriodInfo(-1, "No period found")
        pieces = split_transcript(tokens, 10, tok, info)
        assert [p.token_count for p in pieces] == [10, 10]

    def test_long_sentence_warning(self, capsys):
        tokens, tok = _tokens_with_periods(20, set())
        split_transcript(tokens, 10, tok, PeriodInfo(50, "x", encoded_gap_length=15))
        assert "longest sentence is 15 tokens" in capsys.readouterr().out

    def test_empty_stream(self):
        assert split_transcript([], 10, FakeTokenizer()) == []

    def test_rejects_nonpositive_bound(self):
        with pytest.raises(ValueError):
            split_transcript([1, 2], 0, FakeTokenizer())


class TestSplitText:
    def test_short_text_single_piece(self):
        pieces = split_text("One. Two. Three.", 100, FakeTokenizer())
        assert len(pieces) == 1
        assert pieces[0].text == "One. Two. Three."

    def test_default_tokenizer_built_when_missing(self):
        with patch("voice_notes.splitter.Tokenizer", return_value=FakeTokenizer()) as mock_cls:
            pieces = split_text("Hello there.", 10)
        mock_cls.assert_called_once_with()
        assert pieces[0].text == "Hello there."


class TestTokenizer:
    @patch("voice_notes.splitter.tiktoken.get_encoding")
    def test_wraps_encoding(self, mock_get):
        mock_get.return_value.encode.return_value = [1, 2, 3]
        tokenizer = Tokenizer()
        mock_get.assert_called_once_with("cl100k_base")
        assert tokenizer.count("abc") == 3
        mock_get.return_value.encode.assert_called_with("abc", disallowed_special=())


# ---------------------------------------------------------------------------
# make_paragraphs
# ---------------------------------------------------------------------------

class TestMakeParagraphs:
    def test_groups_sentences(self):
        text = "One. Two! Three? Four. Five."
        assert make_paragraphs(text, sentences_per_paragraph=2) == [
            "One. Two!", "Three? Four.", "Five."]

    def test_wraps_long_paragraphs(self):
        text = " ".join(["word"] * 100) + "."
        paragraphs = make_paragraphs(text, max_length=50)
        assert all(len(p) <= 50 for p in paragraphs)
        assert " ".join(paragraphs) == text

    def test_empty(self):
        assert make_paragraphs("   ") == []

    def test_default_size_for_english(self):
        text = " ".join(f"Sentence number {i}." for i in range(1, 10))
        paragraphs = make_paragraphs(text)
        assert len(paragraphs) == 3
        assert paragraphs[0].count(".") == 4

    def test_chinese_uses_three_sentences(self):
        sentence = "\u6211\u4eec\u4eca\u5929\u5f00\u4f1a\u8ba8\u8bba\u4e86\u9879\u76ee\u3002"
        paragraphs = make_paragraphs(sentence * 7)
        assert len(paragraphs) == 3
        assert paragraphs[0].count("\u3002") == 3


class TestParagraphSize:
    def test_english(self):
        assert paragraph_size("This is clearly an English sentence.") == 4

    def test_mostly_han(self):
        assert paragraph_size("\u4f60\u597d\u4e16\u754c" * 4) == 3

    def test_too_short_to_identify(self):
        assert paragraph_size("Ok. Yes.") == 3
