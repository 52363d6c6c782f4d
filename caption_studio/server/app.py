"""FastAPI application exposing captioning, rendering, and progress routes.

WHY: The browser client uploads videos, edits the generated captions,
previews them, and requests a captioned render whose progress it polls.
FastAPI gives request validation, background tasks, and OpenAPI docs.

HOW: Endpoints are thin adapters over server.pipeline. Uploads are
streamed to a temp directory, checked against the size limit, then
handed to process_uploaded_video(). Renders are registered in the job
store and run through RenderStore.run_in_background() as a FastAPI
background task; progress is read from the ProgressStore by render id.

RULES:
- Every error response is JSON {error, kind, details}
- Request validation errors are 400 with kind "missing_parameters"
- The job store and progress store are module singletons (tests patch them)
- Uploads over MAX_UPLOAD_SIZE_BYTES are rejected with 413
- Clients poll /api/render-progress every 500 ms until it reads 100
"""

from __future__ import annotations

import asyncio
import functools
import logging
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

from fastapi import BackgroundTasks, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from caption_studio import __version__
from caption_studio.config import (
    ENVIRONMENT,
    MAX_UPLOAD_SIZE_BYTES,
    MAX_UPLOAD_SIZE_MB,
    PROGRESS_DIR,
    SUPPORTED_VIDEO_FORMATS,
    ConfigurationError,
    credentials_configured,
    initialize_google_credentials,
    validate_google_cloud_config,
)
from caption_studio.core.progress import ProgressStore
from caption_studio.core.selector import resolve_caption_frame
from caption_studio.media.audio import is_ffmpeg_installed
from caption_studio.media.storage import VideoStorage
from caption_studio.server.jobs import RenderJob, RenderStore, TooManyRendersError
from caption_studio.server.models import (
    CaptionFrameModel,
    CaptionSegmentModel,
    ErrorResponse,
    GenerateUploadUrlRequest,
    GenerateUploadUrlResponse,
    HealthResponse,
    PreviewRequest,
    PreviewResponse,
    ProcessVideoRequest,
    ProgressResponse,
    RenderCreatedResponse,
    RenderJobResponse,
    RenderRequestModel,
    UploadResponse,
)
from caption_studio.server.pipeline import (
    ProcessedVideo,
    ServiceError,
    process_stored_video,
    process_uploaded_video,
    render_captioned_video,
    validate_render_source,
)

logger = logging.getLogger(__name__)

_UPLOAD_CHUNK_SIZE = 1024 * 1024
_CLEANUP_INTERVAL_S = 300

_CONFIG_ERROR_KINDS = {
    "Google Cloud not configured": "google_cloud_not_configured",
    "Google Cloud Storage not configured": "google_cloud_storage_not_configured",
}

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

job_store = RenderStore()
progress_store = ProgressStore(PROGRESS_DIR)

_storage: Optional[VideoStorage] = None
_started_at = time.monotonic()


def get_storage() -> VideoStorage:
    """Return the shared VideoStorage, creating it on first use."""
    global _storage
    if _storage is None:
        _storage = VideoStorage()
    return _storage


async def _periodic_cleanup() -> None:
    """Run render job cleanup every 5 minutes."""
    while True:
        await asyncio.sleep(_CLEANUP_INTERVAL_S)
        job_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Resolve credentials and start periodic cleanup; cancel on shutdown."""
    try:
        key_path = initialize_google_credentials()
        if key_path:
            logger.info("Using Google credentials from %s", key_path)
    except ConfigurationError as exc:
        logger.warning("Google credentials not initialized: %s", exc)

    task = asyncio.create_task(_periodic_cleanup())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    lifespan=lifespan,
    title="Caption Studio API",
    description=(
        "Upload a video, get timed captions generated from its speech, "
        "preview them in one of three styles, and render a captioned video "
        "while polling its progress."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    500: {"model": ErrorResponse, "description": "Service failure"},
}


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        "{}: {}".format(".".join(str(p) for p in err.get("loc", ())), err.get("msg", ""))
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "kind": "missing_parameters", "details": details},
    )


def _require_cloud_config() -> None:
    try:
        validate_google_cloud_config()
    except ConfigurationError as exc:
        raise ServiceError(
            _CONFIG_ERROR_KINDS.get(exc.error, "google_cloud_not_configured"),
            exc.error,
            exc.details,
            500,
        ) from exc


async def _require_ffmpeg() -> None:
    if not await asyncio.to_thread(is_ffmpeg_installed):
        raise ServiceError(
            "ffmpeg_not_installed",
            "FFmpeg is not installed",
            "Install FFmpeg on the server to extract audio from uploaded videos",
            500,
        )


def _processed_to_response(result: ProcessedVideo) -> UploadResponse:
    return UploadResponse(
        success=True,
        video_path=result.video_url,
        captions=[CaptionSegmentModel.from_segment(s) for s in result.captions],
    )


def _job_to_response(job: RenderJob) -> RenderJobResponse:
    return RenderJobResponse(
        render_id=job.id,
        status=job.status.value,
        progress=job.progress,
        style=job.style.value,
        created_at=job.created_at,
        output_path=job.output_url,
        error=job.error,
        kind=job.error_kind,
    )


async def _save_upload(upload: UploadFile, destination: Path) -> int:
    """Stream an upload to disk, enforcing the size limit."""
    size = 0
    with open(destination, "wb") as out:
        while True:
            chunk = await upload.read(_UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > MAX_UPLOAD_SIZE_BYTES:
                raise ServiceError(
                    "file_too_large",
                    "File too large",
                    "Maximum upload size is {} MB".format(MAX_UPLOAD_SIZE_MB),
                    413,
                )
            out.write(chunk)
    return size


# ---------------------------------------------------------------------------
# Endpoints: Captions
# ---------------------------------------------------------------------------


@app.post(
    "/api/upload",
    response_model=UploadResponse,
    tags=["captions"],
    summary="Upload a video and generate captions",
    description=(
        "Multipart upload (field 'video', at most 100 MB). The video is stored, "
        "its audio transcribed, and caption segments returned. The stored video "
        "is deleted again if captioning fails."
    ),
    responses={**_ERROR_RESPONSES, 413: {"model": ErrorResponse, "description": "File too large"}},
)
async def upload_video(
    video: Annotated[Optional[UploadFile], File(description="Video file to caption")] = None,
) -> UploadResponse:
    await _require_ffmpeg()
    _require_cloud_config()

    if video is None or not video.filename:
        raise ServiceError("no_file_uploaded", "No video file uploaded", None, 400)

    filename = Path(video.filename).name
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_VIDEO_FORMATS:
        raise ServiceError(
            "unsupported_file_type",
            "Unsupported file type",
            "'{}' is not one of: {}".format(ext, ", ".join(sorted(SUPPORTED_VIDEO_FORMATS))),
            400,
        )

    work_dir = Path(tempfile.mkdtemp(prefix="caption_upload_"))
    try:
        upload_path = work_dir / "upload{}".format(ext)
        size = await _save_upload(video, upload_path)
        logger.info("Received upload %s (%d bytes)", filename, size)
        result = await process_uploaded_video(upload_path, filename, get_storage())
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    return _processed_to_response(result)


@app.post(
    "/api/generate-upload-url",
    response_model=GenerateUploadUrlResponse,
    tags=["captions"],
    summary="Create a signed URL for a direct upload",
    description=(
        "Returns a 15-minute signed PUT URL for uploading straight to storage, "
        "plus a 7-day read URL. Call /api/process-video once the PUT succeeds."
    ),
    responses=_ERROR_RESPONSES,
)
async def generate_upload_url(body: GenerateUploadUrlRequest) -> GenerateUploadUrlResponse:
    _require_cloud_config()
    try:
        signed = await asyncio.to_thread(
            get_storage().generate_upload_url, body.file_name, body.content_type
        )
    except Exception as exc:
        logger.exception("Failed to generate upload URL for %s", body.file_name)
        raise ServiceError("upload_url_failed", "Failed to generate upload URL", str(exc)) from exc

    return GenerateUploadUrlResponse(
        upload_url=signed.upload_url,
        file_name=signed.file_name,
        public_url=signed.public_url,
    )


@app.post(
    "/api/process-video",
    response_model=UploadResponse,
    tags=["captions"],
    summary="Generate captions for a directly uploaded video",
    responses=_ERROR_RESPONSES,
)
async def process_video(body: ProcessVideoRequest) -> UploadResponse:
    await _require_ffmpeg()
    _require_cloud_config()
    result = await process_stored_video(body.gcs_file_name, body.public_url, get_storage())
    return _processed_to_response(result)


@app.post(
    "/api/preview",
    response_model=PreviewResponse,
    tags=["captions"],
    summary="Resolve the caption shown at a playback time",
    description=(
        "Evaluates the same selection and style rules the renderer uses, so the "
        "editor preview matches the final video."
    ),
    responses={400: _ERROR_RESPONSES[400]},
)
async def preview_caption(body: PreviewRequest) -> PreviewResponse:
    segments = [c.to_segment() for c in body.captions]
    frame = resolve_caption_frame(segments, body.time, body.style)
    if frame is None:
        return PreviewResponse(caption=None)
    return PreviewResponse(caption=CaptionFrameModel(**frame.to_dict()))


# ---------------------------------------------------------------------------
# Endpoints: Renders
# ---------------------------------------------------------------------------


@app.post(
    "/api/render",
    response_model=RenderCreatedResponse,
    status_code=202,
    tags=["renders"],
    summary="Start a captioned render",
    description=(
        "Accepts the video URL, captions, and style, and renders in the "
        "background. Poll /api/render-progress?renderId=... for a 0–100 "
        "percentage and GET /api/renders/{id} for the result."
    ),
    responses={**_ERROR_RESPONSES, 429: {"model": ErrorResponse, "description": "Too many renders"}},
)
async def create_render(
    body: RenderRequestModel,
    background_tasks: BackgroundTasks,
) -> RenderCreatedResponse:
    _require_cloud_config()
    storage = get_storage()
    validate_render_source(body.video_path, storage)
    request = body.to_request()

    try:
        job = job_store.create_job(request.video_path, request.style)
    except TooManyRendersError as exc:
        raise ServiceError("too_many_renders", "Too many renders", str(exc), 429) from exc

    task = functools.partial(
        render_captioned_video,
        request=request,
        progress_store=progress_store,
        storage=storage,
    )
    background_tasks.add_task(job_store.run_in_background, job.id, task)
    return RenderCreatedResponse(render_id=job.id, status=job.status.value)


@app.get(
    "/api/renders/{render_id}",
    response_model=RenderJobResponse,
    tags=["renders"],
    summary="Get render status",
    responses={404: {"model": ErrorResponse, "description": "Render not found"}},
)
async def get_render(render_id: str) -> RenderJobResponse:
    job = job_store.get_job(render_id)
    if job is None:
        raise ServiceError("not_found", "Render not found", render_id, 404)
    return _job_to_response(job)


@app.delete(
    "/api/renders/{render_id}",
    status_code=204,
    tags=["renders"],
    summary="Delete a render",
    description="Removes the render job, its temp files, and its progress record.",
    responses={404: {"model": ErrorResponse, "description": "Render not found"}},
)
async def delete_render(render_id: str) -> Response:
    if not job_store.delete_job(render_id):
        raise ServiceError("not_found", "Render not found", render_id, 404)
    progress_store.reset(render_id)
    return Response(status_code=204)


@app.get(
    "/api/render-progress",
    response_model=ProgressResponse,
    tags=["renders"],
    summary="Poll render progress",
    description="Returns the latest published percentage; 0 when none is recorded.",
    responses={400: _ERROR_RESPONSES[400]},
)
async def render_progress(
    render_id: Annotated[
        Optional[str],
        Query(alias="renderId", description="Id returned by POST /api/render."),
    ] = None,
) -> ProgressResponse:
    if not render_id:
        raise ServiceError("missing_parameters", "Missing renderId", None, 400)
    try:
        progress = progress_store.read(render_id)
    except ValueError as exc:
        raise ServiceError("invalid_render_id", "Invalid renderId", str(exc), 400) from exc
    return ProgressResponse(progress=progress)


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/api/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness check reporting Google Cloud configuration and ffmpeg availability.",
)
async def health_check() -> HealthResponse:
    try:
        validate_google_cloud_config()
        google_cloud = True
    except ConfigurationError:
        google_cloud = False

    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(time.monotonic() - _started_at, 3),
        environment=ENVIRONMENT,
        version=__version__,
        services={
            "googleCloud": google_cloud,
            "credentials": credentials_configured(),
            "ffmpeg": await asyncio.to_thread(is_ffmpeg_installed),
        },
    )


def run_api():
    """Entry point for the caption-studio-api console script."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
