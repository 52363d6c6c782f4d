"""Frame-by-frame caption renderer built on moviepy.

WHY: The final deliverable is a video file with captions burned in. The
renderer must report progress for its two phases so the tracker can
publish a single percentage while the encode runs.

HOW: render() runs two phases.
  1. Bundling: every distinct CaptionFrame the captions can produce is
     rasterized once (plan_caption_frames → rasterize), reporting
     done/total after each one.
  2. Rendering: the source clip is transformed frame by frame. For each
     frame time the selector resolves the visible CaptionFrame and its
     cached overlay is composited. write_videofile() is given a proglog
     logger that turns moviepy's frame-index bar into a 0–1 fraction.

RULES:
- Callbacks receive fractions in [0, 1]; each phase ends with exactly 1.0
- Frames with no active caption pass through untouched
- Output duration and size equal the source clip's
- The source clip is always closed, even on failure
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

import proglog
from moviepy import VideoFileClip

from caption_studio.config import RENDER_AUDIO_CODEC, RENDER_CODEC, RENDER_FPS
from caption_studio.core.ir import CaptionSegment, CaptionStyle
from caption_studio.core.selector import (
    CaptionFrame,
    plan_caption_frames,
    resolve_caption_frame,
)
from caption_studio.render.overlay import Overlay, composite, rasterize

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# moviepy 2 iterates frames under "frame_index"; 1.x used "t".
_FRAME_BARS = ("frame_index", "t")


class RenderProgressLogger(proglog.ProgressBarLogger):
    """proglog logger that forwards frame progress as a 0–1 fraction.

    RULES:
    - Only the frame iteration bar is reported (audio chunks are ignored)
    - Fractions are (index + 1) / total, capped at 1.0
    """

    def __init__(self, on_progress: Optional[ProgressCallback] = None) -> None:
        super().__init__()
        self._on_progress = on_progress

    def bars_callback(self, bar, attr, value, old_value=None):  # noqa: ANN001
        if bar not in _FRAME_BARS or attr != "index" or self._on_progress is None:
            return
        total = self.bars[bar].get("total")
        if not total:
            return
        self._on_progress(min(1.0, (value + 1) / total))


class CaptionRenderer:
    """Burns caption segments into a video file.

    RULES:
    - fps, codec and audio_codec default to the configured render settings
    - One instance may render several videos, one at a time
    """

    def __init__(
        self,
        fps: int = RENDER_FPS,
        codec: str = RENDER_CODEC,
        audio_codec: str = RENDER_AUDIO_CODEC,
    ) -> None:
        self.fps = fps
        self.codec = codec
        self.audio_codec = audio_codec

    def bundle(
        self,
        segments: Sequence[CaptionSegment],
        style: CaptionStyle,
        width: int,
        height: int,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[CaptionFrame, Overlay]:
        """Rasterize every frame the captions can show."""
        frames = plan_caption_frames(segments, style)
        cache: Dict[CaptionFrame, Overlay] = {}
        total = len(frames)
        for done, frame in enumerate(frames, start=1):
            cache[frame] = rasterize(frame, width, height)
            if on_progress:
                on_progress(done / total)
        if on_progress and total == 0:
            on_progress(1.0)
        logger.info("Bundled %d caption overlays at %dx%d", total, width, height)
        return cache

    def render(
        self,
        video_path: Path,
        segments: Sequence[CaptionSegment],
        style: CaptionStyle,
        output_path: Path,
        on_bundling_progress: Optional[ProgressCallback] = None,
        on_rendering_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Render video_path with captions to output_path and return it."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with VideoFileClip(str(video_path)) as clip:
            width, height = clip.size
            cache = self.bundle(segments, style, width, height, on_bundling_progress)

            def draw_captions(get_frame, t):
                frame = get_frame(t)
                caption = resolve_caption_frame(segments, t, style)
                if caption is None:
                    return frame
                overlay = cache.get(caption)
                if overlay is None:
                    overlay = cache[caption] = rasterize(caption, width, height)
                return composite(frame, overlay)

            # The transformed clip shares the source reader; closing clip closes both.
            captioned = clip.transform(draw_captions)
            logger.info(
                "Rendering %s (%.1fs, %dx%d) with style %s",
                video_path, clip.duration or 0.0, width, height, style.value,
            )
            captioned.write_videofile(
                str(output_path),
                fps=self.fps,
                codec=self.codec,
                audio_codec=self.audio_codec,
                logger=RenderProgressLogger(on_rendering_progress),
            )

        if on_rendering_progress:
            on_rendering_progress(1.0)
        return output_path
