"""Speech-to-text package: async REST interface to Google Speech-to-Text.

WHY: Captions are built from word-level timestamps that only a speech
recognition service can provide. This package wraps the long-running
recognize workflow behind one async client.

HOW: SpeechClient (client.py) uses httpx.AsyncClient; response JSON is
parsed into dataclasses defined in models.py and converted to
TranscribedPassage objects for the segmenter.

RULES:
- All Speech API HTTP calls go through SpeechClient
- Recognized audio must already be in Cloud Storage (gs:// URI)
"""

from caption_studio.speech.client import (
    RecognitionError,
    RecognitionTimeoutError,
    SpeechAPIError,
    SpeechClient,
)
from caption_studio.speech.models import RecognitionResult, passages_from_response

__all__ = [
    "RecognitionError",
    "RecognitionResult",
    "RecognitionTimeoutError",
    "SpeechAPIError",
    "SpeechClient",
    "passages_from_response",
]
