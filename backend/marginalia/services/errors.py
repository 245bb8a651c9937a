"""
Error types raised by the annotation services.

Capture and validation errors are user-correctable and never reach the
store. Storage errors wrap the underlying transport failure.
"""

from __future__ import annotations

from typing import Optional


class AnnotationError(Exception):
    """Base class for annotation errors."""


class CaptureError(AnnotationError):
    """A selection could not be turned into an anchor."""

    reason = "capture_failed"


class EmptySelectionError(CaptureError):
    reason = "empty_selection"

    def __init__(self, message: str = "Cannot create anchor: empty selection"):
        super().__init__(message)


class AnnotationValidationError(AnnotationError, ValueError):
    """A submitted annotation violates the content/tag/anchor policy."""


class AnnotationNotFoundError(AnnotationError, LookupError):
    def __init__(self, annotation_id: str):
        super().__init__(f"Annotation with ID {annotation_id} not found")
        self.annotation_id = annotation_id


class StorageError(AnnotationError):
    """The store could not be opened or a transaction aborted."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original
