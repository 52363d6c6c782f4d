"""Configuration constants, caption policy, and .env loading.

WHY: Centralizes every tunable value (caption segmentation policy,
render settings, progress file location, Google Cloud settings) so they
are easy to find and override without touching logic.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level values read from the environment with documented
defaults. Validation helpers raise ConfigurationError with a short error
and a longer human-readable hint.

RULES:
- CAPTION_MAX_WORDS (10) and CAPTION_SILENCE_GAP_S (1.0) are product
  policy; change the defaults only with product sign-off
- Progress split: bundling owns 0–20 %, rendering the remaining 80 %
- Unknown caption styles fall back to "bottom-centered" (see core.ir)
- Credentials are never hardcoded; they come from key.json, a base64
  env var, or Application Default Credentials
"""

from __future__ import annotations

import base64
import binascii
import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (where the app is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Caption segmentation policy
# ---------------------------------------------------------------------------

CAPTION_MAX_WORDS = int(os.getenv("CAPTION_MAX_WORDS", "10"))
"""Maximum number of words in one caption segment."""

CAPTION_SILENCE_GAP_S = float(os.getenv("CAPTION_SILENCE_GAP_S", "1.0"))
"""A pause longer than this (seconds) between two words forces a new segment."""

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

RENDER_FPS = int(os.getenv("RENDER_FPS", "30"))
RENDER_CODEC = os.getenv("RENDER_CODEC", "libx264")
RENDER_AUDIO_CODEC = os.getenv("RENDER_AUDIO_CODEC", "aac")

# Reference composition height; overlay sizes are scaled from it.
REFERENCE_FRAME_HEIGHT = 1080

# Optional font overrides; otherwise Noto Sans / DejaVu Sans are searched.
CAPTION_FONT_PATH = os.getenv("CAPTION_FONT_PATH", "")
CAPTION_BOLD_FONT_PATH = os.getenv("CAPTION_BOLD_FONT_PATH", "")

BUNDLING_PROGRESS_START = 0
BUNDLING_PROGRESS_END = 20
RENDERING_PROGRESS_WEIGHT = 0.8
# Rendering holds here until the output is stored; only complete() reaches 100.
RENDERING_PROGRESS_CAP = 95

# Pollers must get a chance to see 100 % before the record disappears.
PROGRESS_ENSURE_COMPLETION_DELAY_S = 0.5
PROGRESS_CLEANUP_DELAY_S = float(os.getenv("PROGRESS_CLEANUP_DELAY_S", "5.0"))

PROGRESS_DIR = Path(
    os.getenv(
        "CAPTION_PROGRESS_DIR",
        os.path.join(tempfile.gettempdir(), "caption_studio_progress"),
    )
)

# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------

MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "100"))
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024

SUPPORTED_VIDEO_FORMATS: set[str] = {
    ".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi",
}
"""Video file extensions accepted for upload (lowercase, with dot)."""

SIGNED_READ_URL_TTL_S = 7 * 24 * 60 * 60
SIGNED_UPLOAD_URL_TTL_S = 15 * 60

# ---------------------------------------------------------------------------
# Google Cloud
# ---------------------------------------------------------------------------

GOOGLE_CLOUD_PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT_ID", "")
GOOGLE_CLOUD_BUCKET_NAME = os.getenv("GOOGLE_CLOUD_BUCKET_NAME", "captiongenerator")

SPEECH_BASE_URL = os.getenv("SPEECH_BASE_URL", "https://speech.googleapis.com/v1p1beta1")
SPEECH_LANGUAGE_CODE = os.getenv("SPEECH_LANGUAGE_CODE", "en-US")
SPEECH_ALTERNATIVE_LANGUAGE_CODES = [
    code.strip()
    for code in os.getenv("SPEECH_ALTERNATIVE_LANGUAGE_CODES", "hi-IN").split(",")
    if code.strip()
]
SPEECH_MODEL = os.getenv("SPEECH_MODEL", "latest_long")
SPEECH_SAMPLE_RATE_HZ = 44100

ENVIRONMENT = os.getenv("APP_ENV", "development")

_PLACEHOLDER_PROJECT_ID = "your-project-id"
_CREDENTIALS_TEMP_PATH = Path(tempfile.gettempdir()) / "google-credentials.json"


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or invalid.

    RULES:
    - error: short, user-facing summary ("Google Cloud not configured")
    - details: how to fix it
    """

    def __init__(self, error: str, details: str = "") -> None:
        self.error = error
        self.details = details
        super().__init__(f"{error}: {details}" if details else error)


def load_speech_api_key() -> str | None:
    """Return the Speech-to-Text API key, or None to use ADC tokens."""
    key = os.getenv("GOOGLE_SPEECH_API_KEY", "").strip()
    return key or None


def validate_google_cloud_config() -> None:
    """Check that the Google Cloud project and bucket are configured.

    WHY: Uploads and transcription fail deep inside the pipeline when the
    project or bucket is missing; checking first gives a clear error.

    RULES:
    - Missing or placeholder GOOGLE_CLOUD_PROJECT_ID → ConfigurationError
    - Missing GOOGLE_CLOUD_BUCKET_NAME → ConfigurationError
    """
    project_id = os.getenv("GOOGLE_CLOUD_PROJECT_ID", GOOGLE_CLOUD_PROJECT_ID)
    if not project_id or project_id == _PLACEHOLDER_PROJECT_ID:
        raise ConfigurationError(
            "Google Cloud not configured",
            "Set GOOGLE_CLOUD_PROJECT_ID in your .env file to your Google Cloud project ID",
        )
    if not os.getenv("GOOGLE_CLOUD_BUCKET_NAME", GOOGLE_CLOUD_BUCKET_NAME):
        raise ConfigurationError(
            "Google Cloud Storage not configured",
            "Set GOOGLE_CLOUD_BUCKET_NAME in your .env file to your bucket name",
        )


def initialize_google_credentials(key_path: Path | None = None) -> Path | None:
    """Point GOOGLE_APPLICATION_CREDENTIALS at a usable service account key.

    WHY: Deployments either ship a key.json next to the app or inject the
    key as a base64 environment variable. Google client libraries only
    look at GOOGLE_APPLICATION_CREDENTIALS.

    HOW: Prefer ./key.json; otherwise decode GOOGLE_CREDENTIALS_BASE64 into
    a temp file. Returns the key path used, or None when neither exists
    (Application Default Credentials still apply).

    RULES:
    - A malformed base64 value raises ConfigurationError
    """
    local_key = key_path or Path.cwd() / "key.json"
    if local_key.exists():
        os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = str(local_key)
        return local_key

    encoded = os.getenv("GOOGLE_CREDENTIALS_BASE64", "").strip()
    if not encoded:
        return None

    try:
        key_json = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ConfigurationError(
            "Google credentials invalid",
            "GOOGLE_CREDENTIALS_BASE64 is not valid base64-encoded JSON",
        ) from exc

    _CREDENTIALS_TEMP_PATH.write_text(key_json, encoding="utf-8")
    os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = str(_CREDENTIALS_TEMP_PATH)
    return _CREDENTIALS_TEMP_PATH


def credentials_configured() -> bool:
    """True when some form of Google credentials is available."""
    return bool(
        os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        or os.getenv("GOOGLE_CREDENTIALS_BASE64")
    )
