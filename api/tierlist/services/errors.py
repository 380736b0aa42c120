from __future__ import annotations


class EditError(Exception):
    """Base error of the edit engine, carrying a ``code`` such as ``vtir-005``."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(EditError):
    """Raised for malformed or out-of-range input before any side effect."""


class DanglingReferenceError(EditError):
    """Raised when an unchanged image names a file never stored for the entity."""


class ImageError(EditError):
    """Base error for image content and image write failures."""


class DecodeError(ImageError):
    pass


class AspectError(ImageError):
    pass


class RetryExhausted(ImageError):
    """Raised when every candidate file name already exists on disk."""


class StorageError(ImageError):
    """Raised when an image file cannot be written."""


class TransactionError(EditError):
    """Raised when the database transaction of an edit fails."""


class StorageCleanupError(EditError):
    """Raised by storage when an orphaned file cannot be removed.

    Coordinators log this after commit and never surface it to the caller.
    """
