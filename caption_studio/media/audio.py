"""ffmpeg probing and audio extraction.

WHY: Speech recognition takes audio, not video. The upload flow extracts
an MP3 track with ffmpeg before handing it to the speech service, and
refuses uploads early when ffmpeg is missing.

HOW: Both helpers shell out with subprocess.run(check=True). ffmpeg's
stderr is captured so a failed extraction carries the real reason.

RULES:
- Output is MP3 (libmp3lame) at the configured sample rate, no video
- A missing ffmpeg binary is "not installed", not an exception
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from caption_studio.config import SPEECH_SAMPLE_RATE_HZ

logger = logging.getLogger(__name__)


class AudioExtractionError(RuntimeError):
    """Raised when ffmpeg fails to extract audio.

    RULES:
    - stderr holds ffmpeg's diagnostic output (may be empty)
    """

    def __init__(self, message: str, stderr: str = "") -> None:
        self.stderr = stderr
        super().__init__(message)


def is_ffmpeg_installed() -> bool:
    try:
        subprocess.run(["ffmpeg", "-version"], capture_output=True, check=True)
    except (FileNotFoundError, subprocess.CalledProcessError):
        return False
    return True


def extract_audio(
    video_path: Path,
    audio_path: Path,
    sample_rate: int = SPEECH_SAMPLE_RATE_HZ,
) -> Path:
    """Extract the audio track of video_path into an MP3 at audio_path."""
    cmd = [
        "ffmpeg", "-y",
        "-i", str(video_path),
        "-vn",
        "-acodec", "libmp3lame",
        "-ar", str(sample_rate),
        str(audio_path),
    ]
    logger.info("Extracting audio: %s -> %s", video_path, audio_path)
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True)
    except FileNotFoundError as exc:
        raise AudioExtractionError("FFmpeg is not installed") from exc
    except subprocess.CalledProcessError as exc:
        logger.error("ffmpeg failed: %s", exc.stderr)
        raise AudioExtractionError(
            "Failed to extract audio from {}".format(Path(video_path).name),
            stderr=exc.stderr or "",
        ) from exc
    return Path(audio_path)
