"""Caption selection: which segment and word are visible at a given time.

WHY: Both the preview endpoint and the renderer ask the same question
for every frame: what caption is on screen now, and how is it drawn?
Answering it with pure functions keeps seeking (forwards or backwards)
trivially correct.

HOW: select_active() scans the segment list for the first timed segment
whose inclusive [start, end] range contains the time. For karaoke,
select_active_word() picks the first word whose range contains the time.
build_caption_frame() dispatches on CaptionStyle and returns a hashable
CaptionFrame describing exactly what to draw, so the renderer can cache
rasterised overlays by frame.

RULES:
- Both range ends are inclusive
- First match in list order wins (segments and words alike)
- Untimed segments (has_timing=False) are never selected
- Karaoke without words falls back to the bottom box, explicitly
- No state between calls; every frame is evaluated from scratch
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from caption_studio.core.ir import CaptionSegment, CaptionStyle


class CaptionLayout(str, enum.Enum):
    """How a caption frame is laid out on screen."""

    BOTTOM_BOX = "bottom-box"
    TOP_BAR = "top-bar"
    KARAOKE = "karaoke"


@dataclass(frozen=True)
class CaptionFrame:
    """What one video frame shows.

    RULES:
    - words is filled only for the karaoke layout
    - highlighted is an index into words, or None
    - Instances are hashable and compare by value (used as cache keys)
    """

    layout: CaptionLayout
    text: str
    words: Tuple[str, ...] = ()
    highlighted: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "layout": self.layout.value,
            "text": self.text,
            "words": list(self.words),
            "highlighted": self.highlighted,
        }


def _contains(start: float, end: float, t: float) -> bool:
    return start <= t <= end


def find_active_index(segments: Sequence[CaptionSegment], t: float) -> Optional[int]:
    """Index of the first timed segment containing t, or None."""
    for i, segment in enumerate(segments):
        if segment.has_timing and _contains(segment.start_time, segment.end_time, t):
            return i
    return None


def select_active(segments: Sequence[CaptionSegment], t: float) -> Optional[CaptionSegment]:
    """Return the segment visible at t seconds, or None for a gap."""
    index = find_active_index(segments, t)
    return segments[index] if index is not None else None


def select_active_word(segment: CaptionSegment, t: float) -> Optional[int]:
    """Index of the word highlighted at t, or None.

    Overlapping word ranges are malformed input; the first match wins so
    at most one word is ever highlighted.
    """
    for i, word in enumerate(segment.words):
        if _contains(word.start_time, word.end_time, t):
            return i
    return None


def build_caption_frame(
    segment: CaptionSegment,
    style: CaptionStyle,
    highlighted: Optional[int] = None,
) -> CaptionFrame:
    """Describe how a segment is drawn in the given style.

    RULES:
    - KARAOKE with words → karaoke layout with per-word highlight
    - KARAOKE without words → bottom box (no empty karaoke container)
    - TOP_BAR → top bar
    - BOTTOM_CENTERED → bottom box
    """
    if style is CaptionStyle.KARAOKE:
        if segment.words:
            return CaptionFrame(
                layout=CaptionLayout.KARAOKE,
                text=segment.text,
                words=tuple(w.word for w in segment.words),
                highlighted=highlighted,
            )
        return CaptionFrame(layout=CaptionLayout.BOTTOM_BOX, text=segment.text)
    if style is CaptionStyle.TOP_BAR:
        return CaptionFrame(layout=CaptionLayout.TOP_BAR, text=segment.text)
    return CaptionFrame(layout=CaptionLayout.BOTTOM_BOX, text=segment.text)


def resolve_caption_frame(
    segments: Sequence[CaptionSegment],
    t: float,
    style: CaptionStyle,
) -> Optional[CaptionFrame]:
    """Select the active segment at t and describe how to draw it."""
    segment = select_active(segments, t)
    if segment is None:
        return None
    highlighted = None
    if style is CaptionStyle.KARAOKE:
        highlighted = select_active_word(segment, t)
    return build_caption_frame(segment, style, highlighted)


def plan_caption_frames(
    segments: Sequence[CaptionSegment],
    style: CaptionStyle,
) -> List[CaptionFrame]:
    """List every distinct frame a render of these segments can show.

    WHY: The renderer pre-rasterises overlays before encoding starts. For
    karaoke that is one frame per highlighted word plus the un-highlighted
    frame for gaps between words.
    """
    frames: List[CaptionFrame] = []
    seen = set()
    for segment in segments:
        if not segment.has_timing:
            continue
        candidates = [build_caption_frame(segment, style)]
        if style is CaptionStyle.KARAOKE and segment.words:
            candidates.extend(
                build_caption_frame(segment, style, i)
                for i in range(len(segment.words))
            )
        for frame in candidates:
            if frame not in seen:
                seen.add(frame)
                frames.append(frame)
    return frames
