"""Render progress mapping, persistence, and the per-render tracker.

WHY: A render runs in two phases, bundling (pre-rasterising overlays)
and rendering (encoding frames), and the renderer reports each as a
0–1 fraction. Clients, possibly served by another process, poll a single
0–100 percentage. This module maps the fractions onto one scale and
persists the result under the render's id so concurrent renders never
overwrite each other.

HOW: Two pure mapping functions place bundling on 0–20 % and rendering
on 20–100 %. The tracker holds rendering at RENDERING_PROGRESS_CAP so
that 100 % means the output is stored and ready. ProgressStore writes
one small JSON file per render id with an atomic replace.
RenderProgressTracker drives the state machine IDLE → BUNDLING →
RENDERING → DONE → IDLE and drops any value lower than the last one
published.

RULES:
- Every published value is clamped to [0, 100] and stored as an int
- Within one render, published values never decrease
- reset() removes the record; a read then returns 0
- Render ids may only contain letters, digits, '-' and '_'
- Failure during any phase resets straight to IDLE
- Only complete() publishes 100
"""

from __future__ import annotations

import enum
import json
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from caption_studio.config import (
    BUNDLING_PROGRESS_END,
    BUNDLING_PROGRESS_START,
    RENDERING_PROGRESS_CAP,
    RENDERING_PROGRESS_WEIGHT,
)
from caption_studio.core.ir import ProgressData

logger = logging.getLogger(__name__)

_RENDER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_FILE_PREFIX = "render-progress-"


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def map_bundling_progress(
    fraction: float,
    start_percent: float = BUNDLING_PROGRESS_START,
    end_percent: float = BUNDLING_PROGRESS_END,
) -> float:
    """Map bundling progress (0–1) onto [start_percent, end_percent]."""
    return clamp(start_percent + fraction * (end_percent - start_percent), 0, 100)


def map_rendering_progress(
    fraction: float,
    start_percent: float = BUNDLING_PROGRESS_END,
    weight: float = RENDERING_PROGRESS_WEIGHT,
) -> float:
    """Map rendering progress (0–1) onto the weighted remainder of the scale."""
    return clamp(start_percent + fraction * 100 * weight, 0, 100)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class ProgressStore:
    """File-backed progress records, one JSON file per render id.

    WHY: The render runs in a worker while pollers may be served by any
    process. A file per render id is the simplest shared medium that
    survives process boundaries.

    HOW: publish() writes to a temp file in the same directory and
    os.replace()s it over the record, so readers see either the old or
    the new record, never a partial one.

    RULES:
    - Missing record → read() returns 0, read_data() returns None
    - An unreadable record is logged and treated as missing
    - reset() on a missing record is a no-op
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, render_id: str) -> Path:
        if not _RENDER_ID_RE.match(render_id or ""):
            raise ValueError("Invalid render id: {!r}".format(render_id))
        return self.directory / "{}{}.json".format(_FILE_PREFIX, render_id)

    def publish(self, render_id: str, percent: float) -> ProgressData:
        """Overwrite the record for render_id with a clamped percentage."""
        path = self.path_for(render_id)
        data = ProgressData(
            progress=int(clamp(percent, 0, 100)),
            timestamp=int(time.time() * 1000),
        )
        self.directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data.to_dict(), f)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return data

    def read_data(self, render_id: str) -> Optional[ProgressData]:
        path = self.path_for(render_id)
        try:
            with open(path, encoding="utf-8") as f:
                return ProgressData.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Unreadable progress record: %s", path)
            return None

    def read(self, render_id: str) -> int:
        data = self.read_data(render_id)
        return data.progress if data is not None else 0

    def reset(self, render_id: str) -> None:
        path = self.path_for(render_id)
        try:
            path.unlink()
        except FileNotFoundError:
            pass


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class RenderPhase(str, enum.Enum):
    """Lifecycle of one render's progress."""

    IDLE = "idle"
    BUNDLING = "bundling"
    RENDERING = "rendering"
    DONE = "done"


class RenderProgressTracker:
    """Adapts renderer callbacks into monotonic published percentages.

    WHY: The renderer reports raw fractions per phase, from worker
    threads, sometimes repeating or regressing slightly. Pollers must only
    ever see a value that moves forward.

    HOW: Each callback maps its fraction with the phase's mapping function
    and publishes through the store unless the value is below the last
    published one. A lock serialises callbacks.

    RULES:
    - start() clears any previous record and publishes 0
    - on_rendering_progress() moves the phase to RENDERING
    - Rendering values stop at RENDERING_PROGRESS_CAP
    - complete() publishes 100 and moves to DONE
    - fail() and reset() remove the record and move to IDLE
    - on_publish (optional) is called with every value actually written
    """

    def __init__(
        self,
        store: ProgressStore,
        render_id: str,
        on_publish: Optional[Callable[[int], None]] = None,
    ) -> None:
        store.path_for(render_id)
        self._store = store
        self.render_id = render_id
        self._on_publish = on_publish
        self._lock = threading.Lock()
        self._phase = RenderPhase.IDLE
        self._last = 0
        self._timer: Optional[threading.Timer] = None

    @property
    def phase(self) -> RenderPhase:
        return self._phase

    @property
    def percent(self) -> int:
        return self._last

    def start(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._store.reset(self.render_id)
            self._phase = RenderPhase.BUNDLING
            self._last = 0
            self._write(0)

    def on_bundling_progress(self, fraction: float) -> None:
        with self._lock:
            if self._phase is not RenderPhase.BUNDLING:
                return
            self._publish(map_bundling_progress(fraction))

    def on_rendering_progress(self, fraction: float) -> None:
        with self._lock:
            if self._phase not in (RenderPhase.BUNDLING, RenderPhase.RENDERING):
                return
            self._phase = RenderPhase.RENDERING
            self._publish(min(map_rendering_progress(fraction), RENDERING_PROGRESS_CAP))

    def complete(self) -> None:
        with self._lock:
            self._phase = RenderPhase.DONE
            self._publish(100)

    def fail(self) -> None:
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._store.reset(self.render_id)
            self._phase = RenderPhase.IDLE
            self._last = 0

    def schedule_reset(self, delay_s: float) -> None:
        """Reset after delay_s so pollers can observe the final 100 %."""
        with self._lock:
            self._cancel_timer()
            self._timer = threading.Timer(delay_s, self.reset)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _publish(self, value: float) -> None:
        percent = int(clamp(value, 0, 100))
        if percent < self._last:
            return
        self._write(percent)

    def _write(self, percent: int) -> None:
        self._store.publish(self.render_id, percent)
        self._last = percent
        if self._on_publish is not None:
            self._on_publish(percent)
