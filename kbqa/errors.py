# =============================================================================
# Error Taxonomy
# =============================================================================
#
#   KbqaError
#   ├── ValidationError        — bad input or an illegal state change
#   │   ├── UnsupportedFormatError
#   │   ├── EmptyContentError
#   │   ├── DocumentParseError
#   │   ├── ChunkingFailedError
#   │   └── IllegalTransitionError
#   ├── ExternalServiceError   — embedding / generation provider failure
#   ├── PersistenceError       — relational or object store write/read failure
#   └── NotFoundError
#       ├── NoVisibleDocumentsError
#       └── NoProcessedChunksError
#
# Every failure is terminal for the invocation that raised it. The error's
# class name is surfaced to callers as `errorType`.
# =============================================================================

from __future__ import annotations


class KbqaError(Exception):
    """Base class for every error this package raises on purpose."""


class ValidationError(KbqaError):
    """Input rejected before or during processing."""


class UnsupportedFormatError(ValidationError):
    def __init__(self, media_type: str | None) -> None:
        super().__init__(f"Unsupported file type: {media_type}")
        self.media_type = media_type


class EmptyContentError(ValidationError):
    def __init__(self, message: str = "No text could be extracted from document") -> None:
        super().__init__(message)


class DocumentParseError(ValidationError):
    """The parsing library could not read the payload (corrupt file)."""


class ChunkingFailedError(ValidationError):
    def __init__(self, message: str = "Failed to create text chunks") -> None:
        super().__init__(message)


class IllegalTransitionError(ValidationError):
    """A document status change that the state machine does not allow."""

    def __init__(self, current: object, target: object) -> None:
        super().__init__(
            f"Illegal status transition: {_status_label(current)} -> "
            f"{_status_label(target)}"
        )
        self.current = current
        self.target = target


class ExternalServiceError(KbqaError):
    """An embedding or generation provider call failed."""


class PersistenceError(KbqaError):
    """A relational or object store operation failed."""


class NotFoundError(KbqaError):
    """The requested data does not exist or is not visible."""


class NoVisibleDocumentsError(NotFoundError):
    def __init__(
        self,
        message: str = "No documents available. Upload and process documents first.",
    ) -> None:
        super().__init__(message)


class NoProcessedChunksError(NotFoundError):
    def __init__(self, message: str = "No processed chunks found.") -> None:
        super().__init__(message)


def _status_label(status: object) -> str:
    return getattr(status, "value", None) or str(status)
