"""Caption segmentation: word-level timestamps into displayable segments.

WHY: Speech recognition returns one timestamp per word. Viewers need
captions of a readable length that start and stop with the speech. This
module groups words into caption segments.

HOW: A greedy single pass with no backtracking. Each word is appended to
a buffer; the buffer is flushed into a CaptionSegment when it reaches the
word cap, when the input ends, or when the silence before the next word
is longer than the gap threshold. Each recognition passage is segmented
on its own, and a passage with no word offsets becomes one untimed
segment.

RULES:
- Break when buffer size >= max_words (the max_words-th word closes it)
- Break on the last word
- Break when next.start_time - current.end_time > max_gap_s (strictly greater)
- text = buffered words joined by single spaces, trimmed
- start_time = first buffered word's start, end_time = last buffered word's end
- words = a copy of the buffer, never the buffer itself
- segment_words() does not validate input; callers use validate_words()
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from caption_studio.config import CAPTION_MAX_WORDS, CAPTION_SILENCE_GAP_S
from caption_studio.core.ir import CaptionSegment, TranscribedPassage, WordInfo


class MalformedTranscriptError(ValueError):
    """Raised by validate_words() for timing that segmentation cannot trust.

    RULES:
    - index: position of the offending word
    - Message names the word and the violated rule
    """

    def __init__(self, index: int, message: str) -> None:
        self.index = index
        super().__init__(message)


def segment_words(
    words: Sequence[WordInfo],
    max_words: Optional[int] = None,
    max_gap_s: Optional[float] = None,
) -> List[CaptionSegment]:
    """Group time-ordered words into caption segments.

    Args:
        words: Words in time order, each with start/end seconds.
        max_words: Word cap per segment (default CAPTION_MAX_WORDS).
        max_gap_s: Silence that forces a break (default CAPTION_SILENCE_GAP_S).

    Returns:
        Segments in input order. Empty input returns an empty list.
    """
    if max_words is None:
        max_words = CAPTION_MAX_WORDS
    if max_gap_s is None:
        max_gap_s = CAPTION_SILENCE_GAP_S
    if max_words < 1:
        raise ValueError("max_words must be at least 1")

    segments: List[CaptionSegment] = []
    if not words:
        return segments

    buffer: List[WordInfo] = []
    segment_start = words[0].start_time
    last_index = len(words) - 1

    def _flush(end_time: float) -> None:
        segments.append(CaptionSegment(
            text=" ".join(w.word for w in buffer).strip(),
            start_time=segment_start,
            end_time=end_time,
            words=list(buffer),
        ))
        buffer.clear()

    for i, word in enumerate(words):
        buffer.append(word)

        is_last = i == last_index
        should_break = (
            len(buffer) >= max_words
            or is_last
            or words[i + 1].start_time - word.end_time > max_gap_s
        )

        if should_break:
            _flush(word.end_time)
            if not is_last:
                segment_start = words[i + 1].start_time

    return segments


def untimed_segment(text: str) -> CaptionSegment:
    """Build the degenerate segment for a transcript with no word timing.

    The zero/zero times are kept for wire compatibility; has_timing=False
    is what tells the selector not to time-gate it.
    """
    return CaptionSegment(
        text=text,
        start_time=0.0,
        end_time=0.0,
        words=[],
        has_timing=False,
    )


def segment_passages(
    passages: Iterable[TranscribedPassage],
    max_words: Optional[int] = None,
    max_gap_s: Optional[float] = None,
) -> List[CaptionSegment]:
    """Segment every recognition passage and concatenate the results.

    RULES:
    - Passages are segmented independently; no segment spans two passages
    - A passage without words but with text yields one untimed segment
    - A passage with neither words nor text is skipped
    """
    segments: List[CaptionSegment] = []
    for passage in passages:
        if passage.words:
            segments.extend(segment_words(passage.words, max_words, max_gap_s))
        elif passage.transcript:
            segments.append(untimed_segment(passage.transcript))
    return segments


def validate_words(words: Sequence[WordInfo]) -> None:
    """Reject word lists the segmenter would produce garbage for.

    WHY: segment_words() assumes a monotonic word stream and does not
    check it. Orchestrators call this at the service boundary so bad
    recognizer output becomes a clear error instead of overlapping captions.

    RULES:
    - start_time must be >= 0
    - end_time must be >= start_time
    - start_time must not decrease from one word to the next
    """
    previous_start = 0.0
    for i, word in enumerate(words):
        if word.start_time < 0:
            raise MalformedTranscriptError(
                i, "Word {} ('{}') has a negative start time".format(i, word.word)
            )
        if word.end_time < word.start_time:
            raise MalformedTranscriptError(
                i, "Word {} ('{}') ends before it starts".format(i, word.word)
            )
        if word.start_time < previous_start:
            raise MalformedTranscriptError(
                i, "Word {} ('{}') starts before the previous word".format(i, word.word)
            )
        previous_start = word.start_time
