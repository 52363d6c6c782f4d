"""Google Speech-to-Text REST response dataclasses.

WHY: The long-running recognize API returns nested JSON (operation →
response → results → alternatives → words) with durations encoded as
strings like "1.300s". Typed dataclasses make the parts we use explicit
and keep the duration parsing in one place.

HOW: Each dataclass maps to one JSON object and has a from_dict factory.
Only the top alternative of each result is kept; the speech adapter turns
it into a TranscribedPassage for the segmenter.

RULES:
- Durations parse to float seconds; a missing duration is 0.0
- A result with no alternatives yields an empty passage
- Operation.error is only set when the operation failed
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from caption_studio.core.ir import TranscribedPassage, WordInfo

_DURATION_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)s?\s*$")


def parse_duration(value) -> float:
    """Parse a protobuf Duration into float seconds.

    Accepts the JSON string form ("1.300s", "2s"), the object form
    ({"seconds": "1", "nanos": 300000000}), or a plain number.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, dict):
        seconds = float(value.get("seconds") or 0)
        nanos = float(value.get("nanos") or 0)
        return seconds + nanos / 1e9
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError("Unparseable duration: {!r}".format(value))
    return float(match.group(1))


@dataclass
class RecognizedWord:
    """One word from a recognition alternative."""

    word: str
    start_time: float
    end_time: float

    @classmethod
    def from_dict(cls, data: dict) -> RecognizedWord:
        return cls(
            word=data.get("word", ""),
            start_time=parse_duration(data.get("startTime")),
            end_time=parse_duration(data.get("endTime")),
        )

    def to_word_info(self) -> WordInfo:
        return WordInfo(word=self.word, start_time=self.start_time, end_time=self.end_time)


@dataclass
class RecognitionResult:
    """The top alternative of one recognition result.

    RULES:
    - words is empty when the service returned no word offsets
    - language_code is the detected language, when reported
    """

    transcript: str
    words: List[RecognizedWord] = field(default_factory=list)
    confidence: Optional[float] = None
    language_code: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> RecognitionResult:
        alternatives = data.get("alternatives") or []
        if not alternatives:
            return cls(transcript="", language_code=data.get("languageCode"))
        top = alternatives[0]
        return cls(
            transcript=top.get("transcript", ""),
            words=[RecognizedWord.from_dict(w) for w in top.get("words") or []],
            confidence=top.get("confidence"),
            language_code=data.get("languageCode"),
        )

    def to_passage(self) -> TranscribedPassage:
        return TranscribedPassage(
            transcript=self.transcript.strip(),
            words=[w.to_word_info() for w in self.words],
        )


@dataclass
class OperationError:
    code: int
    message: str


@dataclass
class Operation:
    """A long-running recognize operation as returned by the operations API.

    RULES:
    - done is False while the service is still working
    - results is only populated when done and successful
    """

    name: str
    done: bool = False
    results: List[RecognitionResult] = field(default_factory=list)
    error: Optional[OperationError] = None
    progress_percent: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> Operation:
        error = None
        if data.get("error"):
            err = data["error"]
            error = OperationError(code=int(err.get("code", 0)), message=err.get("message", ""))
        response = data.get("response") or {}
        metadata = data.get("metadata") or {}
        return cls(
            name=data.get("name", ""),
            done=bool(data.get("done", False)),
            results=[RecognitionResult.from_dict(r) for r in response.get("results") or []],
            error=error,
            progress_percent=metadata.get("progressPercent"),
        )


def passages_from_response(data: dict) -> List[TranscribedPassage]:
    """Convert a recognize response body ({"results": [...]}) to passages.

    Used by the CLI to segment a saved response offline.
    """
    return [RecognitionResult.from_dict(r).to_passage() for r in data.get("results") or []]
