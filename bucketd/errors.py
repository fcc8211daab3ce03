"""Error taxonomy for the bucket store.

Every error carries the HTTP status and the ``code``/``message`` pair that
the API renders as ``{"code": ..., "message": ...}``.  Storage and archive
failures use a fixed message so internal paths never reach clients.
"""

from __future__ import annotations


class BucketError(Exception):
    """Base class for all expected bucket store failures."""

    status_code: int = 400
    code: str = "ERROR"
    default_message: str = "Invalid request"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BucketNotFound(BucketError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Invalid bucket id"


class FileNotFoundInBucket(BucketError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Invalid file index / name"


class AccessDenied(BucketError):
    status_code = 401
    default_message = "Access Denied"


class InvalidRequest(BucketError):
    status_code = 400


class PayloadTooLarge(BucketError):
    status_code = 413
    default_message = "Payload too large"


class StorageError(BucketError):
    """Disk read/write/delete failure. The original ``OSError`` is chained."""

    status_code = 500
    default_message = "Storage failure"


class ArchiveBuildError(BucketError):
    status_code = 500
    default_message = "Error creating zip file"
