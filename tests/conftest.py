"""Shared test fixtures for the caption_studio test suite.

WHY: Segmentation, selection, the speech client, and the API all need the
same realistic word timings. Centralizing them keeps every module's
tests working from one worked example.

HOW: FOX_WORDS is twelve words of speech with a 1.5 s pause after
"dog." so it exercises both the silence break and the word cap. The
Google-shaped response fixture carries the same words in the REST
duration format ("1.300s").

RULES:
- Fixtures return fresh copies; tests may mutate them
- Times are seconds
"""

from __future__ import annotations

from typing import List

import pytest

from caption_studio.core.ir import CaptionSegment, WordInfo


# ---------------------------------------------------------------------------
# Worked example
# ---------------------------------------------------------------------------

FOX_WORDS: List[WordInfo] = [
    WordInfo("The", 0.0, 0.2),
    WordInfo("quick", 0.3, 0.5),
    WordInfo("brown", 0.6, 0.8),
    WordInfo("fox", 0.9, 1.1),
    WordInfo("jumps", 1.2, 1.4),
    WordInfo("over", 1.5, 1.6),
    WordInfo("the", 1.7, 1.8),
    WordInfo("lazy", 1.9, 2.1),
    WordInfo("dog.", 2.2, 2.5),
    # 1.5 s of silence
    WordInfo("Then", 4.0, 4.2),
    WordInfo("it", 4.3, 4.4),
    WordInfo("slept.", 4.5, 5.0),
]


def _duration(seconds: float) -> str:
    return "{:.3f}s".format(seconds)


@pytest.fixture
def fox_words() -> List[WordInfo]:
    return list(FOX_WORDS)


@pytest.fixture
def fox_segments() -> List[CaptionSegment]:
    """The segments the default policy produces for FOX_WORDS."""
    return [
        CaptionSegment(
            text="The quick brown fox jumps over the lazy dog.",
            start_time=0.0,
            end_time=2.5,
            words=list(FOX_WORDS[:9]),
        ),
        CaptionSegment(
            text="Then it slept.",
            start_time=4.0,
            end_time=5.0,
            words=list(FOX_WORDS[9:]),
        ),
    ]


@pytest.fixture
def google_response() -> dict:
    """A finished long-running recognize operation for FOX_WORDS."""
    def alt(words, transcript):
        return {
            "alternatives": [{
                "transcript": transcript,
                "confidence": 0.94,
                "words": [
                    {
                        "word": w.word,
                        "startTime": _duration(w.start_time),
                        "endTime": _duration(w.end_time),
                    }
                    for w in words
                ],
            }],
            "languageCode": "en-us",
        }

    return {
        "name": "4213875011",
        "done": True,
        "metadata": {"progressPercent": 100},
        "response": {
            "results": [
                alt(FOX_WORDS[:9], "The quick brown fox jumps over the lazy dog."),
                alt(FOX_WORDS[9:], " Then it slept."),
            ],
        },
    }
