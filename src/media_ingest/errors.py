class MediaIngestError(Exception):
    """Base class for all media ingestion errors."""


class DecodeError(MediaIngestError):
    """The uploaded bytes are not a decodable image."""


class InvalidKeyError(MediaIngestError, ValueError):
    """A storage key could not be built or is not acceptable to a store."""


class UnsupportedMediaType(MediaIngestError):
    """The declared MIME type is neither an accepted image nor video type."""


class UploadTooLarge(MediaIngestError):
    """The uploaded file exceeds the size limit for its kind."""


class StoreError(MediaIngestError):
    """Base class for object store failures."""


class StoreUnavailable(StoreError):
    """Transient backend failure (network, auth, throttling). Retry later."""


class StoreRejected(StoreError):
    """The backend declined the operation (quota, permissions, bad request)."""


class UploadFailed(MediaIngestError):
    """An ingestion failed after uploads began; its keys were rolled back.

    ``error`` is the exception that triggered the rollback.
    """

    def __init__(self, message, error=None):
        super().__init__(message)
        self.error = error

    @property
    def retryable(self):
        return isinstance(self.error, StoreUnavailable)
