"""Tests for caption segmentation.

WHY: The segmenter decides what viewers read and when. An off-by-one in
the word cap or the gap comparison shifts every caption after it.

HOW: Tests are grouped by rule: the word cap, the silence gap, output
shape, passages, and the upstream validation helper.

RULES:
- Default policy is 10 words / 1.0 s unless a test passes its own
"""

from __future__ import annotations

import pytest

from caption_studio.core.ir import TranscribedPassage, WordInfo
from caption_studio.core.segmenter import (
    MalformedTranscriptError,
    segment_passages,
    segment_words,
    untimed_segment,
    validate_words,
)


def _words(n, step=0.5, length=0.4, start=0.0):
    """n evenly spaced words w0..w(n-1) with gaps below the threshold."""
    return [
        WordInfo("w{}".format(i), start + i * step, start + i * step + length)
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# Worked example
# ---------------------------------------------------------------------------


class TestFoxExample:
    """The shared twelve-word example splits once, at the pause."""

    def test_splits_on_silence(self, fox_words, fox_segments):
        assert segment_words(fox_words) == fox_segments

    def test_segment_words_are_exact_subsequences(self, fox_words):
        segments = segment_words(fox_words)
        flattened = [w for s in segments for w in s.words]
        assert flattened == fox_words

    def test_pause_before_last_word(self):
        words = [
            WordInfo("the", 0.0, 0.3),
            WordInfo("quick", 0.3, 0.6),
            WordInfo("brown", 0.6, 0.9),
            WordInfo("fox", 0.9, 1.2),
            WordInfo("jumps", 3.0, 3.3),
        ]
        segments = segment_words(words)
        assert [(s.text, s.start_time, s.end_time) for s in segments] == [
            ("the quick brown fox", 0.0, 1.2),
            ("jumps", 3.0, 3.3),
        ]
        assert segments[0].words == words[:4]
        assert segments[1].words == words[4:]


# ---------------------------------------------------------------------------
# Word cap
# ---------------------------------------------------------------------------


class TestWordCap:
    def test_tenth_word_closes_segment(self):
        segments = segment_words(_words(10))
        assert len(segments) == 1
        assert len(segments[0].words) == 10

    def test_eleventh_word_starts_new_segment(self):
        segments = segment_words(_words(11))
        assert [len(s.words) for s in segments] == [10, 1]
        assert segments[1].text == "w10"
        assert segments[1].start_time == pytest.approx(5.0)

    def test_twenty_five_words(self):
        segments = segment_words(_words(25))
        assert [len(s.words) for s in segments] == [10, 10, 5]

    def test_custom_cap(self):
        segments = segment_words(_words(7), max_words=3)
        assert [len(s.words) for s in segments] == [3, 3, 1]

    def test_cap_of_one_gives_one_word_per_segment(self):
        segments = segment_words(_words(4), max_words=1)
        assert [s.text for s in segments] == ["w0", "w1", "w2", "w3"]

    def test_cap_below_one_rejected(self):
        with pytest.raises(ValueError):
            segment_words(_words(3), max_words=0)


# ---------------------------------------------------------------------------
# Silence gap
# ---------------------------------------------------------------------------


class TestSilenceGap:
    def test_gap_exactly_at_threshold_does_not_break(self):
        words = [WordInfo("a", 0.0, 1.0), WordInfo("b", 2.0, 2.5)]
        assert len(segment_words(words)) == 1

    def test_gap_just_over_threshold_breaks(self):
        words = [WordInfo("a", 0.0, 1.0), WordInfo("b", 2.01, 2.5)]
        segments = segment_words(words)
        assert [s.text for s in segments] == ["a", "b"]
        assert segments[0].end_time == 1.0
        assert segments[1].start_time == 2.01

    def test_custom_gap(self):
        words = [WordInfo("a", 0.0, 0.2), WordInfo("b", 0.5, 0.7)]
        assert len(segment_words(words, max_gap_s=0.2)) == 2
        assert len(segment_words(words, max_gap_s=0.3)) == 1

    def test_overlapping_words_never_break_on_gap(self):
        words = [WordInfo("a", 0.0, 1.0), WordInfo("b", 0.5, 1.5)]
        assert len(segment_words(words)) == 1


# ---------------------------------------------------------------------------
# Output shape
# ---------------------------------------------------------------------------


class TestOutputShape:
    def test_empty_input(self):
        assert segment_words([]) == []

    def test_single_word(self):
        segments = segment_words([WordInfo("Hello", 0.5, 0.9)])
        assert len(segments) == 1
        assert segments[0].text == "Hello"
        assert segments[0].start_time == 0.5
        assert segments[0].end_time == 0.9
        assert segments[0].has_timing is True

    def test_text_is_trimmed_and_single_spaced(self):
        words = [WordInfo("Hello", 0.0, 0.2), WordInfo("world", 0.3, 0.5)]
        assert segment_words(words)[0].text == "Hello world"

    def test_segment_words_are_copies(self):
        words = _words(3)
        segment = segment_words(words)[0]
        segment.words.append(WordInfo("extra", 9.0, 9.1))
        assert len(words) == 3

    def test_segments_do_not_overlap(self, fox_words):
        segments = segment_words(fox_words, max_words=4)
        for prev, nxt in zip(segments, segments[1:]):
            assert prev.end_time <= nxt.start_time

    def test_start_and_end_come_from_words(self):
        words = _words(12)
        for segment in segment_words(words):
            assert segment.start_time == segment.words[0].start_time
            assert segment.end_time == segment.words[-1].end_time


# ---------------------------------------------------------------------------
# Passages
# ---------------------------------------------------------------------------


class TestSegmentPassages:
    def test_segments_never_span_passages(self):
        first = TranscribedPassage("a b", [WordInfo("a", 0.0, 0.2), WordInfo("b", 0.3, 0.5)])
        second = TranscribedPassage("c", [WordInfo("c", 0.6, 0.8)])
        segments = segment_passages([first, second])
        assert [s.text for s in segments] == ["a b", "c"]

    def test_passage_without_words_is_untimed(self):
        segments = segment_passages([TranscribedPassage("Hello there", [])])
        assert len(segments) == 1
        assert segments[0].text == "Hello there"
        assert segments[0].start_time == 0
        assert segments[0].end_time == 0
        assert segments[0].words == []
        assert segments[0].has_timing is False

    def test_empty_passage_skipped(self):
        assert segment_passages([TranscribedPassage("", [])]) == []

    def test_policy_is_passed_through(self):
        passage = TranscribedPassage("", _words(6))
        segments = segment_passages([passage], max_words=2)
        assert len(segments) == 3

    def test_untimed_segment_helper(self):
        segment = untimed_segment("x")
        assert (segment.start_time, segment.end_time, segment.has_timing) == (0.0, 0.0, False)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateWords:
    def test_accepts_well_formed_words(self, fox_words):
        validate_words(fox_words)

    def test_accepts_empty_list(self):
        validate_words([])

    def test_rejects_negative_start(self):
        with pytest.raises(MalformedTranscriptError) as exc_info:
            validate_words([WordInfo("a", -0.1, 0.2)])
        assert exc_info.value.index == 0

    def test_rejects_end_before_start(self):
        with pytest.raises(MalformedTranscriptError, match="ends before it starts"):
            validate_words([WordInfo("a", 0.0, 0.2), WordInfo("b", 0.5, 0.4)])

    def test_rejects_decreasing_start(self):
        with pytest.raises(MalformedTranscriptError) as exc_info:
            validate_words([WordInfo("a", 1.0, 1.2), WordInfo("b", 0.5, 0.6)])
        assert exc_info.value.index == 1

    def test_is_a_value_error(self):
        assert issubclass(MalformedTranscriptError, ValueError)
