"""Blob storage for completion photos."""
from __future__ import annotations

import logging
import os
import tempfile
from typing import BinaryIO, Optional, Union

from werkzeug.utils import secure_filename

from .config import ALLOWED_PHOTO_EXTS, MAX_PHOTO_BYTES, UPLOAD_FOLDER
from .errors import PhotoUploadError

LOGGER = logging.getLogger(__name__)


def task_photo_key(user_id: str, day: str, assigned_task_id: str) -> str:
    return f"task-photos/{user_id}/{day}/{assigned_task_id}"


def personal_task_photo_key(user_id: str, day: str, task_id: str) -> str:
    return f"personal-task-photos/{user_id}/{day}/{task_id}"


def allowed_photo(filename: Optional[str], content_type: Optional[str] = None) -> bool:
    if content_type and not content_type.startswith("image/"):
        return False
    if not filename:
        return bool(content_type)
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_PHOTO_EXTS


def validate_photo(filename: Optional[str], content_type: Optional[str], size: int) -> None:
    if not allowed_photo(filename, content_type):
        raise ValueError("Please select an image file")
    if size > MAX_PHOTO_BYTES:
        raise ValueError("Image is too large. Please select an image under 5MB.")


class LocalBlobStorage:
    """Stores objects under ``root`` and hands back URLs under ``base_url``."""

    def __init__(self, root: str = UPLOAD_FOLDER, base_url: str = "/photos"):
        self.root = root
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, key: str) -> str:
        parts = [secure_filename(part) for part in key.split("/") if part]
        if not parts or any(not part for part in parts):
            raise ValueError(f"Invalid object key: {key!r}")
        return os.path.join(self.root, *parts)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def upload(self, key: str, content: Union[bytes, BinaryIO]) -> str:
        """Store ``content`` under ``key`` and return its retrieval URL."""
        path = self.path_for(key)
        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, exist_ok=True)
            payload = content if isinstance(content, bytes) else content.read()
            fd, tmp = tempfile.mkstemp(prefix=".upload-", dir=directory)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp, path)
            finally:
                if os.path.exists(tmp):
                    os.remove(tmp)
        except OSError as exc:
            LOGGER.exception("Failed to store photo %s", key)
            raise PhotoUploadError(f"Failed to upload photo: {exc}") from exc
        LOGGER.info("Stored photo %s (%d bytes)", key, len(payload))
        return self.url_for(key)

    def exists(self, key: str) -> bool:
        try:
            return os.path.isfile(self.path_for(key))
        except ValueError:
            return False
