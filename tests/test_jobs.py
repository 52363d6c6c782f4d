"""Unit tests for the in-memory render store and background runner.

WHY: The render store is the central state manager for asynchronous
renders. Race conditions, missing cleanup, or incorrect status
transitions would cause stale renders, leaked temp files, or broken
polling.

HOW: Tests are organized by class, one per RenderStore method or concern:
  - TestJobCreation: create_job basics, defaults, and the job limit
  - TestJobRetrieval: get_job and list_jobs
  - TestJobUpdate: status transitions, progress, errors, terminal states
  - TestJobDeletion: delete and temp dir cleanup
  - TestTTLCleanup: expiry logic and boundary conditions
  - TestBackgroundRunner: success and failure scenarios
  - TestThreadSafety: concurrent access doesn't corrupt state

RULES:
- Each test creates its own RenderStore instance (no shared mutable state)
- Temp directories are cleaned up by the store or explicitly in tests
- Time-dependent tests use monkeypatch to control time.time()
"""

from __future__ import annotations

import shutil
import threading
import time

import pytest

from caption_studio.core.ir import CaptionStyle
from caption_studio.server.jobs import (
    DEFAULT_MAX_JOBS,
    DEFAULT_TTL_SECONDS,
    RenderStatus,
    RenderStore,
    TooManyRendersError,
)

VIDEO = "https://example.com/video.mp4"


def _make_store(**kwargs) -> RenderStore:
    return RenderStore(**kwargs)


# ---------------------------------------------------------------------------
# TestJobCreation
# ---------------------------------------------------------------------------


class TestJobCreation:
    """RenderStore.create_job() creates a render in PENDING state."""

    def test_creates_job_with_pending_status(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.KARAOKE)
        assert job.status == RenderStatus.PENDING
        assert job.style is CaptionStyle.KARAOKE
        assert job.video_path == VIDEO
        store.delete_job(job.id)

    def test_ids_are_unique_and_progress_safe(self):
        store = _make_store()
        job1 = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        job2 = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        assert job1.id != job2.id
        assert job1.id.isalnum()
        store.delete_job(job1.id)
        store.delete_job(job2.id)

    def test_creates_temp_directory(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.BOTTOM_CENTERED)
        assert job.work_dir.is_dir()
        store.delete_job(job.id)

    def test_initial_fields(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.BOTTOM_CENTERED)
        assert job.progress == 0
        assert job.completed_at is None
        assert job.error is None
        assert job.error_kind is None
        assert job.output_url is None
        store.delete_job(job.id)

    def test_limit_enforced(self):
        store = _make_store(max_jobs=2)
        jobs = [store.create_job(VIDEO, CaptionStyle.TOP_BAR) for _ in range(2)]
        with pytest.raises(TooManyRendersError):
            store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        for job in jobs:
            store.delete_job(job.id)

    def test_default_limit(self):
        assert DEFAULT_MAX_JOBS == 20


# ---------------------------------------------------------------------------
# TestJobRetrieval
# ---------------------------------------------------------------------------


class TestJobRetrieval:
    def test_get_existing_job(self):
        store = _make_store()
        created = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        assert store.get_job(created.id) is created
        store.delete_job(created.id)

    def test_get_missing_job_returns_none(self):
        assert _make_store().get_job("nonexistent-id") is None

    def test_list_jobs_ordered_by_creation_time(self, monkeypatch):
        store = _make_store()
        monkeypatch.setattr(time, "time", lambda: 100.0)
        j1 = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        monkeypatch.setattr(time, "time", lambda: 101.0)
        j2 = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        assert [j.id for j in store.list_jobs()] == [j1.id, j2.id]
        store.delete_job(j1.id)
        store.delete_job(j2.id)


# ---------------------------------------------------------------------------
# TestJobUpdate
# ---------------------------------------------------------------------------


class TestJobUpdate:
    def test_update_status(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        updated = store.update_job(job.id, status=RenderStatus.RENDERING)
        assert updated.status == RenderStatus.RENDERING
        store.delete_job(job.id)

    def test_update_progress(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(job.id, progress=60)
        assert job.progress == 60
        store.delete_job(job.id)

    def test_update_bumps_updated_at(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        old_updated = job.updated_at
        time.sleep(0.01)
        store.update_job(job.id, status=RenderStatus.BUNDLING)
        assert job.updated_at > old_updated
        store.delete_job(job.id)

    def test_update_failure_fields(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(
            job.id, status=RenderStatus.FAILED, error="codec missing", error_kind="render_failed"
        )
        assert job.error == "codec missing"
        assert job.error_kind == "render_failed"
        assert job.completed_at is not None
        store.delete_job(job.id)

    def test_completed_sets_output_and_completed_at(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(job.id, status=RenderStatus.COMPLETED, output_url="https://out")
        assert job.output_url == "https://out"
        assert job.completed_at is not None
        store.delete_job(job.id)

    def test_completed_at_set_only_once(self, monkeypatch):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=RenderStatus.COMPLETED)
        monkeypatch.setattr(time, "time", lambda: 200.0)
        store.update_job(job.id, progress=100)
        assert job.completed_at == 100.0
        store.delete_job(job.id)

    def test_non_terminal_status_does_not_set_completed_at(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(job.id, status=RenderStatus.UPLOADING)
        assert job.completed_at is None
        store.delete_job(job.id)

    def test_only_non_none_fields_updated(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(job.id, progress=40)
        store.update_job(job.id, status=RenderStatus.RENDERING)
        assert job.progress == 40
        assert job.error is None
        store.delete_job(job.id)

    def test_update_missing_job_returns_none(self):
        assert _make_store().update_job("nonexistent", status=RenderStatus.FAILED) is None


# ---------------------------------------------------------------------------
# TestJobDeletion
# ---------------------------------------------------------------------------


class TestJobDeletion:
    def test_delete_existing_job(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        (job.work_dir / "rendered.mp4").write_bytes(b"fake")
        assert store.delete_job(job.id) is True
        assert store.get_job(job.id) is None
        assert not job.work_dir.exists()

    def test_delete_missing_job_returns_false(self):
        assert _make_store().delete_job("nonexistent") is False

    def test_delete_handles_already_removed_dir(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        shutil.rmtree(job.work_dir)
        assert store.delete_job(job.id) is True


# ---------------------------------------------------------------------------
# TestTTLCleanup
# ---------------------------------------------------------------------------


class TestTTLCleanup:
    def test_cleanup_removes_expired_job(self, monkeypatch):
        store = _make_store(ttl_seconds=60)
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)

        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=RenderStatus.COMPLETED)

        monkeypatch.setattr(time, "time", lambda: 161.0)
        assert store.cleanup_expired() == 1
        assert store.get_job(job.id) is None
        assert not job.work_dir.exists()

    def test_cleanup_keeps_non_expired_job(self, monkeypatch):
        store = _make_store(ttl_seconds=60)
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)

        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=RenderStatus.FAILED, error="err")

        monkeypatch.setattr(time, "time", lambda: 159.0)
        assert store.cleanup_expired() == 0
        assert store.get_job(job.id) is not None
        store.delete_job(job.id)

    def test_cleanup_ignores_in_progress_jobs(self, monkeypatch):
        store = _make_store(ttl_seconds=1)
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(job.id, status=RenderStatus.RENDERING)

        far_future = time.time() + 10000
        monkeypatch.setattr(time, "time", lambda: far_future)
        assert store.cleanup_expired() == 0
        store.delete_job(job.id)

    def test_cleanup_frees_capacity(self, monkeypatch):
        store = _make_store(ttl_seconds=60, max_jobs=1)
        monkeypatch.setattr(time, "time", lambda: 100.0)
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.update_job(job.id, status=RenderStatus.COMPLETED)

        monkeypatch.setattr(time, "time", lambda: 200.0)
        store.cleanup_expired()
        again = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        store.delete_job(again.id)

    def test_default_ttl_is_one_hour(self):
        assert DEFAULT_TTL_SECONDS == 3600


# ---------------------------------------------------------------------------
# TestBackgroundRunner
# ---------------------------------------------------------------------------


class TestBackgroundRunner:
    def test_successful_task_runs_callable(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
        called_with = {}

        def task(job_id, job_store):
            called_with["job_id"] = job_id
            called_with["store"] = job_store
            job_store.update_job(job_id, status=RenderStatus.COMPLETED)

        store.run_in_background(job.id, task)
        assert called_with == {"job_id": job.id, "store": store}
        assert job.status == RenderStatus.COMPLETED
        store.delete_job(job.id)

    def test_failing_task_marks_job_failed(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)

        def task(job_id, job_store):
            raise RuntimeError("encoder crashed")

        store.run_in_background(job.id, task)
        assert job.status == RenderStatus.FAILED
        assert job.error == "encoder crashed"
        assert job.error_kind == "render_failed"
        store.delete_job(job.id)

    def test_error_kind_taken_from_exception(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)

        class KindedError(Exception):
            kind = "invalid_video_path"

        def task(job_id, job_store):
            raise KindedError("bad source")

        store.run_in_background(job.id, task)
        assert job.error_kind == "invalid_video_path"
        store.delete_job(job.id)


# ---------------------------------------------------------------------------
# TestThreadSafety
# ---------------------------------------------------------------------------


class TestThreadSafety:
    def test_concurrent_creates(self):
        store = _make_store(max_jobs=200)
        created = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)
                with lock:
                    created.append(job.id)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(created)) == 80
        assert len(store.list_jobs()) == 80
        for job_id in created:
            store.delete_job(job_id)

    def test_concurrent_progress_updates(self):
        store = _make_store()
        job = store.create_job(VIDEO, CaptionStyle.TOP_BAR)

        def worker(n):
            for i in range(50):
                store.update_job(job.id, progress=n * 50 + i)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert 0 <= job.progress < 200
        store.delete_job(job.id)
