from __future__ import annotations


class PhotoLibraryError(RuntimeError):
    """Base class for errors raised by the photo library."""


class PhotoValidationError(PhotoLibraryError):
    """Raised when an upload is rejected before anything is persisted."""


class UnsupportedImageTypeError(PhotoValidationError):
    """Raised when the image decodes but its format is not accepted."""


class ImageDecodeError(PhotoValidationError):
    """Raised when image bytes are malformed, truncated or lack dimensions."""


class PayloadTooLargeError(PhotoValidationError):
    """Raised when the original exceeds the configured upload size."""


class StorageError(PhotoLibraryError):
    """Raised when a blob store operation keeps failing after retries."""


class IngestError(PhotoLibraryError):
    """Raised when the pipeline aborts after durable state was created.

    Everything created by the failed run has been compensated (best effort)
    by the time this is raised.
    """


class PhotoNotFoundError(PhotoLibraryError):
    """Raised when a photo (or its original asset) does not exist."""


class PhotoStateError(PhotoLibraryError):
    """Raised when an edit would break the draft/published visibility rules."""


class DuplicatePhotoError(PhotoValidationError):
    """Raised when an original with the same SHA-256 checksum already exists."""

    def __init__(self, message: str, photo_id: str | None = None) -> None:
        super().__init__(message)
        self.photo_id = photo_id
