"""
Object Store
============

Thin handle over a Django Storage backend holding uploaded file bytes.

The services never touch default_storage directly: they receive an
ObjectStore (or build one from the configured default), so tests and
callers can inject a different backend.

Interface:
    upload(path, content, content_type) -> stored path
    public_url(path) -> url
    remove(paths) -> None, raises StorageError listing failed paths
    exists(path) -> bool
    open(path) -> file object
"""

import logging
import time

from django.conf import settings
from django.core.files.storage import Storage, default_storage

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class ObjectStore:
    def __init__(self, storage: Storage = None):
        self.storage = storage if storage is not None else default_storage

    def upload_path(self, user_id, file_name: str, folder: str = None) -> str:
        """Unique path for a user's upload: <folder>/<user_id>/<epoch_ms>_<name>."""
        folder = folder or settings.STUDYGRAM_UPLOAD_FOLDER
        timestamp = int(time.time() * 1000)
        return f"{folder}/{user_id}/{timestamp}_{file_name}"

    def upload(self, path: str, content, content_type: str = None) -> str:
        """
        Store the bytes under path and return the name actually used.

        The backend may alter the name to avoid collisions (never overwrites).
        """
        if content_type and not getattr(content, 'content_type', None):
            content.content_type = content_type
        try:
            stored = self.storage.save(path, content)
        except Exception as exc:
            raise StorageError(f"Upload of {path} failed: {exc}", paths=[path]) from exc
        logger.info(f"Uploaded {stored} ({content_type})")
        return stored

    def public_url(self, path: str) -> str:
        try:
            return self.storage.url(path)
        except Exception as exc:
            raise StorageError(f"No public URL for {path}: {exc}", paths=[path]) from exc

    def remove(self, paths) -> None:
        """
        Remove every path. All paths are attempted even if some fail;
        failures are reported together in one StorageError.
        """
        failed = []
        for path in paths:
            try:
                self.storage.delete(path)
            except Exception as exc:
                logger.warning(f"Removing {path} failed: {exc}")
                failed.append(path)
        if failed:
            raise StorageError(f"Could not remove {len(failed)} file(s)", paths=failed)

    def exists(self, path: str) -> bool:
        try:
            return self.storage.exists(path)
        except Exception as exc:
            raise StorageError(f"Could not check {path}: {exc}", paths=[path]) from exc

    def open(self, path: str):
        try:
            return self.storage.open(path, 'rb')
        except Exception as exc:
            raise StorageError(f"Could not open {path}: {exc}", paths=[path]) from exc
