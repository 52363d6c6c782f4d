"""Resolve a render's video source to a local file.

Render requests name their video as an http(s) URL (usually a signed
read URL), a gs:// URI, or, from the CLI, a local path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from caption_studio.media.storage import VideoStorage, sanitize_filename

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


def _local_name(path: str, default: str = "input.mp4") -> str:
    name = sanitize_filename(Path(unquote(path)).name)
    return name or default


def fetch_video(
    source: str,
    work_dir: Path,
    storage: Optional[VideoStorage] = None,
) -> Path:
    """Return a local path for source, downloading into work_dir if needed.

    RULES:
    - http(s)://  → streamed download with httpx
    - gs://bucket/name → storage.download_file (bucket must match storage)
    - existing local path → returned unchanged
    - anything else → ValueError
    """
    work_dir = Path(work_dir)
    parsed = urlparse(source)

    if parsed.scheme in ("http", "https"):
        destination = work_dir / _local_name(parsed.path)
        work_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading video from %s", parsed.netloc)
        with httpx.stream("GET", source, follow_redirects=True, timeout=300.0) as resp:
            resp.raise_for_status()
            with open(destination, "wb") as f:
                for chunk in resp.iter_bytes(_CHUNK_SIZE):
                    f.write(chunk)
        return destination

    if parsed.scheme == "gs":
        if storage is None:
            raise ValueError("A storage backend is required for gs:// sources")
        name = parsed.path.lstrip("/")
        if not name:
            raise ValueError("Invalid Cloud Storage URI: {}".format(source))
        if parsed.netloc != storage.bucket_name:
            raise ValueError(
                "Video is in bucket {!r}, expected {!r}".format(parsed.netloc, storage.bucket_name)
            )
        return storage.download_file(name, work_dir / _local_name(name))

    if not parsed.scheme or len(parsed.scheme) == 1:
        # One-letter schemes are Windows drive letters.
        path = Path(source)
        if path.is_file():
            return path

    raise ValueError("Unsupported video source: {}".format(source))
