"""Intermediate representation dataclasses for captions and renders.

WHY: Speech recognition, the HTTP API, the CLI, and the renderer all
pass the same caption data around. A small set of typed dataclasses
keeps that contract explicit and independent of the wire format.

HOW: Six types form the model:
  WordInfo           - one recognised word with start/end seconds
  TranscribedPassage - the best alternative of one recognition result
  CaptionSegment     - a displayable caption with its covered words
  CaptionStyle       - closed enum of render styles with a total parser
  RenderRequest      - video + captions + style, consumed by one render
  ProgressData       - one persisted progress record

RULES:
- All times are float seconds
- WordInfo is immutable once created
- CaptionSegment.words is a copy of the covered input words, never aliased
- Untimed segments (no word timing at all) carry has_timing=False
- The wire format is camelCase: {text, startTime, endTime, words, hasTiming}
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class WordInfo:
    """A single recognised word with timing.

    RULES:
    - start_time >= 0, end_time >= start_time for well-formed input
    - Wire form: {"word", "startTime", "endTime"}
    """

    word: str
    start_time: float
    end_time: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> WordInfo:
        return cls(
            word=data.get("word", ""),
            start_time=float(data.get("startTime", 0.0)),
            end_time=float(data.get("endTime", 0.0)),
        )


@dataclass
class TranscribedPassage:
    """The top alternative of one speech recognition result.

    WHY: The recognizer splits long audio into several results. Segments
    must never span two results, so the segmenter receives them one
    passage at a time.

    RULES:
    - words may be empty when the service returned no word offsets;
      transcript then carries the flat text
    """

    transcript: str
    words: List[WordInfo] = field(default_factory=list)


@dataclass
class CaptionSegment:
    """A caption shown on screen between start_time and end_time.

    WHY: Captions are displayed as short groups of words. The segmenter
    produces these; the selector and renderer consume them.

    RULES:
    - text is the covered words joined by single spaces, trimmed
    - words is empty for untimed segments
    - has_timing=False marks a segment built from a transcript with no
      word offsets; such a segment is never selected by time
    """

    text: str
    start_time: float
    end_time: float
    words: List[WordInfo] = field(default_factory=list)
    has_timing: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "words": [w.to_dict() for w in self.words],
            "hasTiming": self.has_timing,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CaptionSegment:
        """Parse a segment from its wire form.

        RULES:
        - Missing words → []
        - Missing hasTiming is inferred: untimed iff start == end == 0
          and there are no words
        """
        words = [WordInfo.from_dict(w) for w in data.get("words") or []]
        start = float(data.get("startTime", 0.0))
        end = float(data.get("endTime", 0.0))
        has_timing = data.get("hasTiming")
        if has_timing is None:
            has_timing = infer_has_timing(start, end, words)
        return cls(
            text=data.get("text", ""),
            start_time=start,
            end_time=end,
            words=words,
            has_timing=bool(has_timing),
        )


def infer_has_timing(start_time: float, end_time: float, words: List[WordInfo]) -> bool:
    """Infer whether a segment carries real timing.

    A zero/zero segment without words is the degenerate "no timing
    available" form; everything else is treated as timed.
    """
    return bool(words) or start_time != 0 or end_time != 0


class CaptionStyle(str, enum.Enum):
    """Caption render styles (wire-level contract).

    RULES:
    - Values are the exact wire strings
    - parse() is total: unknown values map to BOTTOM_CENTERED
    """

    BOTTOM_CENTERED = "bottom-centered"
    TOP_BAR = "top-bar"
    KARAOKE = "karaoke"

    @classmethod
    def parse(cls, value: Optional[Any]) -> CaptionStyle:
        """Parse a style value, falling back to bottom-centered."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.BOTTOM_CENTERED
        normalized = value.strip().lower()
        for style in cls:
            if style.value == normalized:
                return style
        return cls.BOTTOM_CENTERED


DEFAULT_CAPTION_STYLE = CaptionStyle.BOTTOM_CENTERED


@dataclass
class RenderRequest:
    """Everything one render needs.

    RULES:
    - video_path: http(s) URL, gs:// URI, or a local path (CLI only)
    - captions: ordered caption segments
    - style: already parsed; never a raw string
    """

    video_path: str
    captions: List[CaptionSegment]
    style: CaptionStyle = DEFAULT_CAPTION_STYLE


@dataclass(frozen=True)
class ProgressData:
    """One persisted progress record.

    RULES:
    - progress: integer 0–100
    - timestamp: epoch milliseconds of the write
    """

    progress: int
    timestamp: int

    def to_dict(self) -> Dict[str, int]:
        return {"progress": self.progress, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ProgressData:
        return cls(progress=int(data["progress"]), timestamp=int(data["timestamp"]))
