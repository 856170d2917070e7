# Overview: Blob storage collaborator for receipts and avatars.

"""
Blob Storage

The app talks to a BlobStore, never to a storage backend directly. One
instance is created in create_app() (or injected by the caller, e.g. tests)
and kept in app.extensions["blob_store"].

LocalBlobStore writes files under UPLOAD_FOLDER and serves them below
UPLOAD_BASE_URL. Other backends only need to implement upload().
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename


IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class BlobStorageError(Exception):
    """Raised when a file cannot be stored."""
    pass


@dataclass(frozen=True)
class UploadResult:
    url: str
    thumbnail_url: str | None
    public_id: str
    filename: str
    mime_type: str


def file_extension(filename: str | None) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def check_upload(file: FileStorage | None, allowed_extensions) -> str:
    """
    Validate an incoming upload and return its extension.

    Raises:
        BlobStorageError: missing file or disallowed type
    """
    if file is None or not file.filename:
        raise BlobStorageError("No file uploaded")
    ext = file_extension(file.filename)
    if ext not in allowed_extensions:
        raise BlobStorageError(f"File type not allowed. Allowed: {', '.join(sorted(allowed_extensions))}")
    return ext


class BlobStore:
    """Interface: store a file and return where it can be fetched."""

    def upload(self, file: FileStorage, *, folder: str = "receipts") -> UploadResult:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: str, base_url: str = "/uploads"):
        self.root = root
        self.base_url = base_url.rstrip("/")

    def upload(self, file: FileStorage, *, folder: str = "receipts") -> UploadResult:
        original = secure_filename(file.filename or "") or "upload"
        ext = file_extension(original)
        public_id = f"{folder}/{uuid.uuid4().hex}"
        stored_name = f"{public_id}.{ext}" if ext else public_id

        target = os.path.join(self.root, stored_name)
        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            file.save(target)
        except OSError as exc:
            raise BlobStorageError(f"Failed to store file: {exc}") from exc

        url = f"{self.base_url}/{stored_name}"
        return UploadResult(
            url=url,
            thumbnail_url=url if ext in IMAGE_EXTENSIONS else None,
            public_id=public_id,
            filename=original,
            mime_type=file.mimetype or "application/octet-stream",
        )


def get_blob_store() -> BlobStore:
    return current_app.extensions["blob_store"]
