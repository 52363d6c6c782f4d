"""Cloud Storage wrapper for videos, extracted audio, and rendered output.

WHY: Uploaded videos, the temporary audio handed to speech recognition,
and rendered videos all live in one Cloud Storage bucket. Orchestrators
need a handful of operations (upload, download, delete, signed URLs)
without repeating the google-cloud-storage boilerplate.

HOW: VideoStorage wraps a storage.Client bucket, created lazily so tests
can inject a MagicMock client. Object names are built by
timestamped_name() from sanitized filenames.

RULES:
- Object names: "<prefix>/<epoch ms>-<sanitized filename>"
- Read URLs are v4 signed URLs valid for 7 days
- Upload URLs are v4 signed PUT URLs valid for 15 minutes
- delete_file() is best effort: failures are logged, never raised
"""

from __future__ import annotations

import logging
import mimetypes
import re
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from google.cloud import storage

from caption_studio.config import (
    GOOGLE_CLOUD_BUCKET_NAME,
    GOOGLE_CLOUD_PROJECT_ID,
    SIGNED_READ_URL_TTL_S,
    SIGNED_UPLOAD_URL_TTL_S,
)

logger = logging.getLogger(__name__)

_CACHE_CONTROL = "public, max-age=31536000"

_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".m4v": "video/x-m4v",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
    ".mp3": "audio/mpeg",
}


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------


def sanitize_filename(filename: str) -> str:
    """Make a filename safe for object names.

    Whitespace runs become '-', characters outside [A-Za-z0-9._-] are
    dropped, and the result is lowercased.
    """
    name = re.sub(r"\s+", "-", filename)
    name = re.sub(r"[^a-zA-Z0-9.\-_]", "", name)
    return name.lower()


def timestamped_name(prefix: str, filename: str) -> str:
    stamp = int(time.time() * 1000)
    return "{}/{}-{}".format(prefix.strip("/"), stamp, sanitize_filename(filename))


def content_type_for(name: str) -> str:
    suffix = Path(name).suffix.lower()
    if suffix in _CONTENT_TYPES:
        return _CONTENT_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class UploadResult:
    """Where an uploaded object lives.

    RULES:
    - public_url: signed read URL (or the plain public URL when unsigned)
    - gcs_uri: gs://bucket/name, what the speech service consumes
    - file_name: object name inside the bucket
    """

    public_url: str
    gcs_uri: str
    file_name: str


@dataclass
class SignedUpload:
    upload_url: str
    file_name: str
    public_url: str


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class VideoStorage:
    """Operations on the caption bucket.

    RULES:
    - client is created on first use unless injected
    - All methods take object names relative to the bucket
    """

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        client: Optional[storage.Client] = None,
        project_id: Optional[str] = None,
    ) -> None:
        self.bucket_name = bucket_name or GOOGLE_CLOUD_BUCKET_NAME
        self._project_id = project_id or GOOGLE_CLOUD_PROJECT_ID or None
        self._client = client
        self._bucket = None

    @property
    def bucket(self):
        if self._bucket is None:
            if self._client is None:
                self._client = storage.Client(project=self._project_id)
            self._bucket = self._client.bucket(self.bucket_name)
        return self._bucket

    def gcs_uri(self, name: str) -> str:
        return "gs://{}/{}".format(self.bucket_name, name)

    def public_url(self, name: str) -> str:
        return "https://storage.googleapis.com/{}/{}".format(self.bucket_name, name)

    def signed_read_url(self, name: str, ttl_s: int = SIGNED_READ_URL_TTL_S) -> str:
        blob = self.bucket.blob(name)
        return blob.generate_signed_url(
            version="v4",
            action="GET",
            expiration=timedelta(seconds=ttl_s),
        )

    def upload_file(
        self,
        path: Path,
        destination: str,
        signed: bool = True,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """Upload a local file and return where it can be read from."""
        blob = self.bucket.blob(destination)
        blob.cache_control = _CACHE_CONTROL
        blob.upload_from_filename(
            str(path),
            content_type=content_type or content_type_for(destination),
        )
        logger.info("Uploaded %s to %s", path, self.gcs_uri(destination))

        url = self.signed_read_url(destination) if signed else self.public_url(destination)
        return UploadResult(
            public_url=url,
            gcs_uri=self.gcs_uri(destination),
            file_name=destination,
        )

    def download_file(self, name: str, destination: Path) -> Path:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        self.bucket.blob(name).download_to_filename(str(destination))
        logger.info("Downloaded %s to %s", self.gcs_uri(name), destination)
        return destination

    def delete_file(self, name: str) -> bool:
        """Delete an object; return False (and log) if that fails.

        Never raises, whatever the failure (API, auth or transport).
        """
        try:
            self.bucket.blob(name).delete()
        except Exception as exc:
            logger.warning("Failed to delete %s: %s", self.gcs_uri(name), exc)
            return False
        logger.info("Deleted %s", self.gcs_uri(name))
        return True

    def generate_upload_url(
        self,
        filename: str,
        content_type: str = "video/mp4",
        prefix: str = "videos",
    ) -> SignedUpload:
        """Create a signed PUT URL for a direct browser upload.

        The returned public_url is a 7-day signed read URL for the same
        object, valid once the client has finished the PUT.
        """
        name = timestamped_name(prefix, filename)
        blob = self.bucket.blob(name)
        upload_url = blob.generate_signed_url(
            version="v4",
            action="PUT",
            expiration=timedelta(seconds=SIGNED_UPLOAD_URL_TTL_S),
            content_type=content_type,
        )
        return SignedUpload(
            upload_url=upload_url,
            file_name=name,
            public_url=self.signed_read_url(name),
        )
