"""Async HTTP client for the Google Speech-to-Text long-running recognize API.

WHY: Captions need word-level timestamps for audio of arbitrary length.
The long-running recognize endpoint accepts a Cloud Storage URI, returns
an operation name, and is polled until the transcript is ready. This
module hides that workflow behind one client class so orchestrators and
the CLI never touch HTTP details.

HOW: Uses httpx.AsyncClient against the v1p1beta1 REST surface. The
client is an async context manager: enter it to get an authenticated
client, exit to close the connection pool. The workflow is
start_recognition → poll_until_complete, wrapped by transcribe() which
returns TranscribedPassage objects ready for the segmenter.

RULES:
- Always use the async context manager (async with SpeechClient() as client:)
- Auth: API key (?key=...) when configured, otherwise a bearer token from
  Application Default Credentials via google-auth
- Recognition config: MP3, 44100 Hz, en-US + alternative languages,
  automatic punctuation, word time offsets, model latest_long
- Polling uses exponential backoff: 2s initial, 1.5x factor, 15s max, 60min timeout
- Status callback (on_status) is optional; when provided, called with status strings
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

import google.auth
import httpx
from google.auth.transport.requests import Request

from caption_studio.config import (
    SPEECH_ALTERNATIVE_LANGUAGE_CODES,
    SPEECH_BASE_URL,
    SPEECH_LANGUAGE_CODE,
    SPEECH_MODEL,
    SPEECH_SAMPLE_RATE_HZ,
    load_speech_api_key,
)
from caption_studio.core.ir import TranscribedPassage
from caption_studio.speech.models import Operation, RecognitionResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_POLL_INITIAL_INTERVAL_S = 2.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 15.0
_POLL_TIMEOUT_S = 60 * 60  # 60 minutes

_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class SpeechAPIError(Exception):
    """Raised when the Speech API returns an error response.

    RULES:
    - Always include status_code and message
    - message is the response body text or a summary
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Speech API error {status_code}: {message}")


class RecognitionError(Exception):
    """Raised when a recognize operation finishes with an error."""


class RecognitionTimeoutError(TimeoutError):
    """Raised when polling exceeds the maximum timeout.

    RULES:
    - Message includes the operation name and elapsed time
    """


def build_recognition_config(
    sample_rate_hz: int = SPEECH_SAMPLE_RATE_HZ,
    language_code: str = SPEECH_LANGUAGE_CODE,
    alternative_language_codes: Optional[List[str]] = None,
    model: str = SPEECH_MODEL,
) -> dict:
    """Build the RecognitionConfig JSON for extracted MP3 audio."""
    if alternative_language_codes is None:
        alternative_language_codes = SPEECH_ALTERNATIVE_LANGUAGE_CODES
    config = {
        "encoding": "MP3",
        "sampleRateHertz": sample_rate_hz,
        "languageCode": language_code,
        "enableAutomaticPunctuation": True,
        "enableWordTimeOffsets": True,
        "model": model,
    }
    if alternative_language_codes:
        config["alternativeLanguageCodes"] = list(alternative_language_codes)
    return config


class SpeechClient:
    """Async client for Google Speech-to-Text long-running recognition.

    WHY: Provides a typed interface for the transcription workflow:
    start → poll → parse. Handles auth, backoff, and error wrapping.

    HOW: Wraps httpx.AsyncClient. With an API key every request carries
    ?key=; without one, a bearer token is fetched from Application Default
    Credentials (refreshed in a worker thread since google-auth is sync).

    RULES:
    - Use as: async with SpeechClient() as client: ...
    - api_key defaults to load_speech_api_key() from .env
    - base_url defaults to SPEECH_BASE_URL from config
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        credentials=None,
    ) -> None:
        self._api_key = api_key or load_speech_api_key()
        self._base_url = (base_url or SPEECH_BASE_URL).rstrip("/")
        self._model = model or SPEECH_MODEL
        self._transport = transport
        self._credentials = credentials
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> SpeechClient:
        headers = {}
        params = {}
        if self._api_key:
            params["key"] = self._api_key
        else:
            token = await asyncio.to_thread(self._fetch_access_token)
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            params=params,
            timeout=httpx.Timeout(300.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _fetch_access_token(self) -> str:
        """Get an OAuth token from Application Default Credentials."""
        credentials = self._credentials
        if credentials is None:
            credentials, _ = google.auth.default(scopes=[_CLOUD_PLATFORM_SCOPE])
            self._credentials = credentials
        credentials.refresh(Request())
        return credentials.token

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "SpeechClient must be used as an async context manager: "
                "async with SpeechClient() as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Step 1: Start recognition
    # ------------------------------------------------------------------

    async def start_recognition(
        self,
        gcs_uri: str,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Start a long-running recognize operation and return its name.

        RULES:
        - gcs_uri must be a gs://bucket/object URI of MP3 audio
        - Raises SpeechAPIError on non-2xx responses
        """
        client = self._ensure_client()
        if on_status:
            on_status("Starting speech recognition...")

        body = {
            "config": build_recognition_config(model=self._model),
            "audio": {"uri": gcs_uri},
        }
        resp = await client.post("/speech:longrunningrecognize", json=body)
        if resp.status_code not in (200, 201):
            raise SpeechAPIError(resp.status_code, resp.text)

        name = resp.json().get("name")
        if not name:
            raise SpeechAPIError(resp.status_code, "Response did not include an operation name")
        logger.info("Started recognition operation %s for %s", name, gcs_uri)
        return name

    # ------------------------------------------------------------------
    # Step 2: Poll until complete
    # ------------------------------------------------------------------

    async def poll_until_complete(
        self,
        operation_name: str,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> List[RecognitionResult]:
        """Poll an operation until it completes or fails.

        HOW: Exponential backoff polling. Starts at 2s intervals, grows
        by 1.5x per poll, capped at 15s. Total timeout is 60 minutes.

        RULES:
        - Returns the recognition results when done without error
        - Raises RecognitionError when the operation reports an error
        - Raises RecognitionTimeoutError after 60 minutes
        """
        client = self._ensure_client()
        interval = _POLL_INITIAL_INTERVAL_S
        start_time = time.monotonic()

        while True:
            elapsed = time.monotonic() - start_time
            if elapsed > _POLL_TIMEOUT_S:
                raise RecognitionTimeoutError(
                    f"Recognition {operation_name} timed out after "
                    f"{elapsed:.0f}s (limit: {_POLL_TIMEOUT_S}s)"
                )

            resp = await client.get(f"/operations/{operation_name}")
            if resp.status_code != 200:
                raise SpeechAPIError(resp.status_code, resp.text)

            operation = Operation.from_dict(resp.json())

            if operation.done:
                if operation.error is not None:
                    if on_status:
                        on_status(f"Recognition error: {operation.error.message}")
                    raise RecognitionError(
                        f"Recognition failed: {operation.error.message}"
                    )
                if on_status:
                    on_status("Recognition complete.")
                return operation.results

            if on_status:
                elapsed_min = int(elapsed) // 60
                elapsed_sec = int(elapsed) % 60
                percent = operation.progress_percent
                suffix = f", {percent}%" if percent is not None else ""
                on_status(
                    f"Transcribing... (elapsed: {elapsed_min}m {elapsed_sec:02d}s{suffix})"
                )

            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)

    # ------------------------------------------------------------------
    # Full workflow
    # ------------------------------------------------------------------

    async def transcribe(
        self,
        gcs_uri: str,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> List[TranscribedPassage]:
        """Recognize stored audio and return one passage per result."""
        name = await self.start_recognition(gcs_uri, on_status=on_status)
        results = await self.poll_until_complete(name, on_status=on_status)
        passages = [r.to_passage() for r in results]
        logger.info(
            "Recognition %s returned %d passages, %d words",
            name, len(passages), sum(len(p.words) for p in passages),
        )
        return passages
