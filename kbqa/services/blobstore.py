# =============================================================================
# Blob Store — Raw Upload Bytes
# =============================================================================
#
# Documents keep only an opaque storage key; the bytes live here. Keys look
# like "<owner_id>/<timestamp>-<filename>".
#
#   BlobStore (Protocol)
#   └── LocalBlobStore — files under Settings.upload_dir
#
# Any OSError leaves this module as PersistenceError.
# =============================================================================

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from kbqa.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def put(self, key: str, data: bytes) -> None:
        ...

    def get(self, key: str) -> bytes:
        ...

    def delete(self, key: str) -> None:
        ...


class LocalBlobStore:
    """Stores each blob as a file at upload_dir / key."""

    def __init__(self, upload_dir: str | Path) -> None:
        self._root = Path(upload_dir).resolve()

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise PersistenceError(f"Failed to store {key}: {exc}") from exc
        logger.info("Stored %d bytes at %s", len(data), key)

    def get(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Failed to read {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        """Remove a blob. A missing blob is not an error."""
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to delete {key}: {exc}") from exc

    def _path(self, key: str) -> Path:
        # Keys must stay inside the root directory
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise ValidationError(f"Invalid storage key: {key}")
        return path
