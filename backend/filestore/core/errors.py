"""Error taxonomy shared by the storage layer and the HTTP handlers."""

from fastapi import status


class FileStorageError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(FileStorageError):
    """A required input is missing or empty."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(FileStorageError):
    """Bucket or object is absent, or a listing came back empty."""

    status_code = status.HTTP_404_NOT_FOUND


class BackendUnavailable(FileStorageError):
    """The object store could not be reached or timed out."""

    public_message = "Storage backend is unavailable."


class BackendOperationError(FileStorageError):
    """The object store reported a failure other than not-found."""


class PresignError(BackendOperationError):
    """Minting a presigned URL failed for one entry of a listing."""

    def __init__(self, key: str, *, detail: str | None = None) -> None:
        super().__init__(f"Error generating presigned URL for {key}", detail=detail)
        self.key = key
