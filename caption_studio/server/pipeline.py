"""Orchestration: video → captions, and captions + video → rendered video.

WHY: The HTTP endpoints and the CLI share two workflows that touch every
external service: transcribing a video into caption segments, and
rendering captions into a video while publishing progress. Keeping them
here leaves the endpoints as thin request/response adapters.

HOW:
  captions_for_video      - ffmpeg audio → storage → speech → validate → segment
  process_uploaded_video  - store the upload, caption it, roll back on failure
  process_stored_video    - caption a video already in storage
  render_captioned_video  - fetch → bundle/render with progress → upload
Blocking storage/ffmpeg calls from async code run via asyncio.to_thread.

RULES:
- Every failure surfaces as ServiceError(kind, message, details, status_code)
- The temporary audio object is always deleted after recognition
- A failed upload flow deletes the uploaded video; cleanup failures are
  logged and never mask the original error
- A failed render resets its progress record; a completed one is reset
  after PROGRESS_CLEANUP_DELAY_S
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import urlparse

from caption_studio.config import (
    PROGRESS_CLEANUP_DELAY_S,
    PROGRESS_ENSURE_COMPLETION_DELAY_S,
)
from caption_studio.core.ir import CaptionSegment, RenderRequest
from caption_studio.core.progress import ProgressStore, RenderProgressTracker
from caption_studio.core.segmenter import (
    MalformedTranscriptError,
    segment_passages,
    validate_words,
)
from caption_studio.media.audio import AudioExtractionError, extract_audio
from caption_studio.media.fetch import fetch_video
from caption_studio.media.storage import VideoStorage, sanitize_filename, timestamped_name
from caption_studio.render.engine import CaptionRenderer
from caption_studio.server.jobs import RenderStatus, RenderStore
from caption_studio.speech.client import SpeechClient

logger = logging.getLogger(__name__)

VIDEO_PREFIX = "videos"
AUDIO_PREFIX = "audio-files"
RENDER_PREFIX = "renders"


class ServiceError(Exception):
    """A failure the API reports to clients.

    RULES:
    - kind: stable machine-readable code ("upload_failed", "render_failed", ...)
    - message: short human-readable summary (the JSON "error" field)
    - details: underlying cause, safe to show to the user
    - status_code: HTTP status the API responds with
    """

    def __init__(
        self,
        kind: str,
        message: str,
        details: Optional[str] = None,
        status_code: int = 500,
    ) -> None:
        self.kind = kind
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(f"{message}: {details}" if details else message)

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, "details": self.details}


@dataclass
class ProcessedVideo:
    video_url: str
    captions: List[CaptionSegment]


def _as_service_error(exc: Exception, kind: str, message: str) -> ServiceError:
    if isinstance(exc, ServiceError):
        return exc
    if isinstance(exc, MalformedTranscriptError):
        return ServiceError("invalid_transcript", "Speech service returned malformed timing", str(exc), 502)
    if isinstance(exc, AudioExtractionError):
        details = str(exc)
        if exc.stderr:
            details = "{}\n{}".format(details, exc.stderr.strip()[-500:])
        return ServiceError(kind, message, details)
    return ServiceError(kind, message, str(exc))


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------


async def captions_for_video(
    video_path: Path,
    storage: VideoStorage,
    work_dir: Path,
    speech_client_factory: Callable[[], SpeechClient] = SpeechClient,
    on_status: Optional[Callable[[str], None]] = None,
) -> List[CaptionSegment]:
    """Transcribe a local video into caption segments.

    RULES:
    - Audio is extracted to work_dir/audio.mp3 and uploaded unsigned
    - The audio object is deleted whether or not recognition succeeds
    - Word timing is validated before segmentation
    """
    video_path = Path(video_path)
    audio_path = Path(work_dir) / "audio.mp3"
    await asyncio.to_thread(extract_audio, video_path, audio_path)

    audio_name = timestamped_name(AUDIO_PREFIX, video_path.stem + ".mp3")
    uploaded = await asyncio.to_thread(storage.upload_file, audio_path, audio_name, False)
    try:
        async with speech_client_factory() as client:
            passages = await client.transcribe(uploaded.gcs_uri, on_status=on_status)
    finally:
        await asyncio.to_thread(storage.delete_file, audio_name)

    for passage in passages:
        validate_words(passage.words)
    segments = segment_passages(passages)
    logger.info("Built %d caption segments for %s", len(segments), video_path.name)
    return segments


async def process_uploaded_video(
    upload_path: Path,
    filename: str,
    storage: VideoStorage,
    speech_client_factory: Callable[[], SpeechClient] = SpeechClient,
) -> ProcessedVideo:
    """Store an uploaded video and caption it.

    RULES:
    - The stored object is deleted again if captioning fails
    - upload_path's directory is used as scratch space; the caller owns it
    """
    upload_path = Path(upload_path)
    video_name = timestamped_name(VIDEO_PREFIX, filename)
    try:
        uploaded = await asyncio.to_thread(storage.upload_file, upload_path, video_name)
    except Exception as exc:
        logger.exception("Failed to store upload %s", filename)
        raise _as_service_error(exc, "upload_failed", "Failed to upload video") from exc

    try:
        captions = await captions_for_video(
            upload_path, storage, upload_path.parent, speech_client_factory
        )
    except Exception as exc:
        logger.exception("Captioning failed for %s; rolling back upload", video_name)
        await asyncio.to_thread(storage.delete_file, video_name)
        raise _as_service_error(exc, "upload_failed", "Failed to process video") from exc

    return ProcessedVideo(video_url=uploaded.public_url, captions=captions)


async def process_stored_video(
    file_name: str,
    public_url: str,
    storage: VideoStorage,
    speech_client_factory: Callable[[], SpeechClient] = SpeechClient,
) -> ProcessedVideo:
    """Caption a video that a client uploaded directly to storage."""
    with tempfile.TemporaryDirectory(prefix="caption_process_") as tmp:
        work_dir = Path(tmp)
        local_name = sanitize_filename(Path(file_name).name) or "video.mp4"
        try:
            local_path = await asyncio.to_thread(
                storage.download_file, file_name, work_dir / local_name
            )
            captions = await captions_for_video(
                local_path, storage, work_dir, speech_client_factory
            )
        except Exception as exc:
            logger.exception("Captioning failed for stored video %s", file_name)
            raise _as_service_error(exc, "upload_failed", "Failed to process video") from exc

    return ProcessedVideo(video_url=public_url, captions=captions)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def validate_render_source(video_path: str, storage: Optional[VideoStorage] = None) -> None:
    """Reject render sources the API must not read.

    RULES:
    - http(s) URLs are accepted
    - gs:// URIs are accepted only for the configured bucket
    - Local paths and other schemes → ServiceError("invalid_video_path", 400)
    """
    parsed = urlparse(video_path or "")
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return
    if parsed.scheme == "gs" and storage is not None and parsed.netloc == storage.bucket_name:
        return
    raise ServiceError(
        "invalid_video_path",
        "Invalid video path",
        "videoPath must be an http(s) URL or a gs:// URI in the configured bucket",
        400,
    )


def render_captioned_video(
    job_id: str,
    job_store: RenderStore,
    request: RenderRequest,
    progress_store: ProgressStore,
    storage: Optional[VideoStorage] = None,
    renderer: Optional[CaptionRenderer] = None,
    completion_delay_s: float = PROGRESS_ENSURE_COMPLETION_DELAY_S,
    cleanup_delay_s: float = PROGRESS_CLEANUP_DELAY_S,
) -> None:
    """Render one job end to end; signature fits RenderStore.run_in_background.

    RULES:
    - Progress is published under the job id
    - With storage, the output is uploaded and the work dir emptied;
      without it, output_url is the local output path
    - Any failure resets progress and raises ServiceError("render_failed")
    - 100 % is published only after output_url is recorded on the job
    """
    job = job_store.get_job(job_id)
    if job is None:
        return
    renderer = renderer or CaptionRenderer()

    def on_publish(percent: int) -> None:
        job_store.update_job(job_id, progress=percent)

    tracker = RenderProgressTracker(progress_store, job_id, on_publish=on_publish)
    tracker.start()
    rendering_started = []

    def on_rendering_progress(fraction: float) -> None:
        if not rendering_started:
            rendering_started.append(True)
            job_store.update_job(job_id, status=RenderStatus.RENDERING)
        tracker.on_rendering_progress(fraction)

    try:
        job_store.update_job(job_id, status=RenderStatus.DOWNLOADING)
        try:
            video = fetch_video(request.video_path, job.work_dir, storage)
        except ValueError as exc:
            raise ServiceError("invalid_video_path", "Invalid video path", str(exc), 400) from exc

        job_store.update_job(job_id, status=RenderStatus.BUNDLING)
        output = renderer.render(
            video,
            request.captions,
            request.style,
            job.work_dir / "rendered.mp4",
            on_bundling_progress=tracker.on_bundling_progress,
            on_rendering_progress=on_rendering_progress,
        )

        job_store.update_job(job_id, status=RenderStatus.UPLOADING)
        if storage is not None:
            output_url = storage.upload_file(
                output, timestamped_name(RENDER_PREFIX, "rendered.mp4")
            ).public_url
        else:
            output_url = str(output)

        # 100 % is only published once the output location is recorded.
        job_store.update_job(job_id, output_url=output_url)
        tracker.complete()
        if completion_delay_s:
            time.sleep(completion_delay_s)
        job_store.update_job(job_id, status=RenderStatus.COMPLETED)
        tracker.schedule_reset(cleanup_delay_s)
        logger.info("Render %s completed: %s", job_id, output_url)
    except ServiceError:
        tracker.fail()
        raise
    except Exception as exc:
        tracker.fail()
        raise ServiceError("render_failed", "Failed to render video", str(exc)) from exc
    finally:
        if storage is not None:
            shutil.rmtree(job.work_dir, ignore_errors=True)
