"""Local file storage for uploaded sources and rendered outputs.

Layout under ``uploads_dir``::

    upload_<ms><ext>            uploaded source videos
    edited/edited_<ms>_<id>.mp4 rendered outputs

Both are served under ``uploads_url_prefix``.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from src.config import Settings, get_settings
from src.exceptions import InputVideoNotFoundError, InvalidInputVideoError, PayloadTooLargeError
from src.utils.fs import remove_file

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalStorageService:
    """Local file storage rooted at ``settings.uploads_dir``."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.base_path = Path(self.settings.uploads_dir).resolve()
        self.edited_path = self.base_path / self.settings.edited_subdir
        self.edited_path.mkdir(parents=True, exist_ok=True)

    @property
    def url_prefix(self) -> str:
        return "/" + self.settings.uploads_url_prefix.strip("/")

    def public_url(self, path: str | Path) -> str:
        """Get the URL a stored file is served under."""
        relative = Path(path).resolve().relative_to(self.base_path)
        return f"{self.url_prefix}/{relative.as_posix()}"

    def resolve_reference(self, video_url: str) -> Path:
        """Map a stored-file URL (or a key relative to the uploads dir) to its path.

        Raises:
            InputVideoNotFoundError: If the reference escapes the uploads dir
                or the file does not exist
        """
        key = video_url.strip()
        if key.startswith(self.url_prefix + "/"):
            key = key[len(self.url_prefix) + 1 :]
        key = key.lstrip("/")

        full_path = (self.base_path / key).resolve()
        if not full_path.is_relative_to(self.base_path) or full_path == self.base_path:
            logger.warning(f"[VIDEO API] Rejected video reference outside uploads: {video_url}")
            raise InputVideoNotFoundError(video_url)
        if not full_path.is_file():
            raise InputVideoNotFoundError(video_url)
        return full_path

    def new_output_path(self, job_id: str) -> Path:
        """Unique, timestamp-derived path for a rendered output."""
        ms = int(time.time() * 1000)
        return self.edited_path / f"edited_{ms}_{job_id[:8]}.mp4"

    async def save_upload(self, upload: UploadFile) -> Path:
        """Stream an uploaded video to ``upload_<ms><ext>``.

        Raises:
            InvalidInputVideoError: If the content type is not video/*
            PayloadTooLargeError: If the upload exceeds max_upload_size_mb
        """
        content_type = upload.content_type or ""
        if not content_type.startswith("video/"):
            raise InvalidInputVideoError(upload.filename, f"content type {content_type or 'unknown'}")

        ext = Path(upload.filename or "").suffix.lower()[:10]
        path = self.base_path / f"upload_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}{ext}"
        limit = self.settings.max_upload_size_mb * 1024 * 1024

        written = 0
        try:
            with path.open("wb") as f:
                while chunk := await upload.read(CHUNK_SIZE):
                    written += len(chunk)
                    if written > limit:
                        raise PayloadTooLargeError(
                            f"Upload exceeds {self.settings.max_upload_size_mb}MB"
                        )
                    f.write(chunk)
        except BaseException:
            remove_file(path)
            raise

        logger.info(f"[VIDEO API] Stored upload {upload.filename} -> {path.name} ({written} bytes)")
        return path

