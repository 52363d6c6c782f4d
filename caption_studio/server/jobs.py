"""In-memory render job store with background execution and TTL cleanup.

WHY: A render takes from seconds to many minutes, far longer than an HTTP
request should block. The API returns a render id immediately, runs the
render in the background, and lets clients poll the job (and the
progress store) by that id. An in-memory store is enough for a single
instance with no persistence requirements.

HOW: Three components work together:
  RenderStatus - enum of valid job states
  RenderJob    - dataclass holding job metadata, status, and work directory
  RenderStore  - thread-safe dict-based store with create/update/get/list/delete,
                 a background runner, and TTL cleanup

RULES:
- All store mutations are protected by threading.Lock for thread safety
- Each job gets a dedicated temp directory for downloads and output
- TTL-based expiry removes terminal jobs and cleans up their temp directories
- The background runner marks a job FAILED on any unhandled exception
- Job ids are UUID4 hex strings, which are also valid progress ids
- Default TTL is 1 hour (3600 seconds)
"""

from __future__ import annotations

import enum
import logging
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from caption_studio.core.ir import CaptionStyle

logger = logging.getLogger(__name__)

# Default time-to-live for completed/failed jobs (seconds)
DEFAULT_TTL_SECONDS = 3600

DEFAULT_MAX_JOBS = 20


class RenderStatus(str, enum.Enum):
    """Valid states for a render job.

    RULES:
    - pending: job created, not yet started
    - downloading: fetching the source video
    - bundling: rasterizing caption overlays
    - rendering: encoding frames
    - uploading: storing the rendered file
    - completed: output_url is ready
    - failed: unrecoverable error at any stage
    """

    PENDING = "pending"
    DOWNLOADING = "downloading"
    BUNDLING = "bundling"
    RENDERING = "rendering"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (RenderStatus.COMPLETED, RenderStatus.FAILED)


@dataclass
class RenderJob:
    """Metadata and state for a single render.

    RULES:
    - id: UUID4 hex string, unique and immutable after creation
    - video_path: the source as requested (URL, gs:// URI, or local path)
    - work_dir: temp directory owned by the job
    - progress: last published percentage (0–100)
    - error / error_kind: set only when status is FAILED
    - output_url: set only when status is COMPLETED
    """

    id: str
    status: RenderStatus
    video_path: str
    style: CaptionStyle
    work_dir: Path
    created_at: float
    updated_at: float
    completed_at: Optional[float] = None
    progress: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    output_url: Optional[str] = None


class TooManyRendersError(ValueError):
    """Raised by create_job() when the store is full."""


class RenderStore:
    """Thread-safe in-memory store for render jobs.

    WHY: API requests, background renders, and progress callbacks touch
    job state concurrently. A central store with one lock keeps every
    transition consistent.

    RULES:
    - All public methods that mutate state acquire self._lock
    - get_job() returns None for missing job ids (no exceptions)
    - update_job() applies only non-None arguments
    - delete_job() and cleanup_expired() remove work directories outside the lock
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_jobs: int = DEFAULT_MAX_JOBS,
    ) -> None:
        self._jobs = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self.max_jobs = max_jobs

    def create_job(self, video_path: str, style: CaptionStyle) -> RenderJob:
        """Create a PENDING job with its own work directory.

        RULES:
        - Raises TooManyRendersError when max_jobs are already stored
        """
        with self._lock:
            if len(self._jobs) >= self.max_jobs:
                raise TooManyRendersError(
                    "Maximum number of renders ({}) reached".format(self.max_jobs)
                )

            job_id = uuid.uuid4().hex
            now = time.time()
            job = RenderJob(
                id=job_id,
                status=RenderStatus.PENDING,
                video_path=video_path,
                style=style,
                work_dir=Path(tempfile.mkdtemp(prefix="caption_render_")),
                created_at=now,
                updated_at=now,
            )
            self._jobs[job_id] = job

        logger.info("Created render %s (style %s)", job_id, style.value)
        return job

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[RenderJob]:
        """Return all jobs, oldest first."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def update_job(
        self,
        job_id: str,
        status: Optional[RenderStatus] = None,
        progress: Optional[int] = None,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
        output_url: Optional[str] = None,
    ) -> Optional[RenderJob]:
        """Update a job's mutable fields.

        RULES:
        - Returns the updated job, or None if job_id is unknown
        - updated_at is always bumped
        - completed_at is set when the job reaches a terminal state
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None

            now = time.time()
            if status is not None:
                job.status = status
            if progress is not None:
                job.progress = progress
            if error is not None:
                job.error = error
            if error_kind is not None:
                job.error_kind = error_kind
            if output_url is not None:
                job.output_url = output_url

            job.updated_at = now
            if job.status in TERMINAL_STATUSES and job.completed_at is None:
                job.completed_at = now
            return job

    def run_in_background(
        self,
        job_id: str,
        task: Callable[[str, RenderStore], None],
    ) -> None:
        """Run task(job_id, store), marking the job FAILED if it raises.

        Intended as the callable handed to BackgroundTasks; exceptions are
        logged and recorded on the job, never propagated.
        """
        try:
            task(job_id, self)
        except Exception as exc:
            logger.exception("Render %s failed", job_id)
            self.update_job(
                job_id,
                status=RenderStatus.FAILED,
                error=str(exc),
                error_kind=getattr(exc, "kind", None) or "render_failed",
            )

    def delete_job(self, job_id: str) -> bool:
        """Delete a job and its work directory; False if unknown."""
        with self._lock:
            job = self._jobs.pop(job_id, None)

        if job is None:
            return False

        self._cleanup_work_dir(job.work_dir)
        logger.info("Deleted render %s", job_id)
        return True

    def cleanup_expired(self) -> int:
        """Remove terminal jobs older than the TTL; return how many.

        RULES:
        - TTL is measured from completed_at, not created_at
        - In-progress jobs are never expired
        """
        now = time.time()
        expired: List[RenderJob] = []

        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if job.status not in TERMINAL_STATUSES or job.completed_at is None:
                    continue
                if now - job.completed_at > self._ttl_seconds:
                    expired.append(self._jobs.pop(job_id))

        for job in expired:
            self._cleanup_work_dir(job.work_dir)
            logger.info("Expired render %s (completed %.0fs ago)", job.id, now - job.completed_at)

        return len(expired)

    @staticmethod
    def _cleanup_work_dir(work_dir: Path) -> None:
        if work_dir.exists():
            try:
                shutil.rmtree(work_dir)
            except OSError:
                logger.warning("Failed to clean up temp dir: %s", work_dir)
