"""Caption Studio: automatic captions for uploaded videos.

WHY: Speech recognition services return word-level timestamps, but a
video needs short, readable caption segments and a renderer that knows
which segment (and, for karaoke, which word) is visible on every frame.
This package turns recognised words into caption segments, previews them,
and burns them into a final video file.

HOW: Four layers: core (pure segmentation, selection, progress mapping),
speech/media (Google Speech-to-Text, Cloud Storage, ffmpeg), render
(Pillow overlays composited frame by frame with moviepy), and server/cli
(orchestration behind FastAPI and argparse).

RULES:
- The core never performs network or media I/O
- Caption segments are the stable contract between transcription and rendering
- Every render is tracked under its own render id
"""

__version__ = "0.1.0"
