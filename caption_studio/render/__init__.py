"""Caption rendering: Pillow overlays composited onto moviepy frames.

WHY: Burning captions into the video makes the output playable anywhere
without a subtitle track.

HOW: overlay.py rasterizes CaptionFrames into RGBA arrays; engine.py
drives moviepy, compositing the active overlay on every frame and
reporting bundling/rendering progress.
"""

from caption_studio.render.engine import CaptionRenderer, RenderProgressLogger

__all__ = ["CaptionRenderer", "RenderProgressLogger"]
