"""Exception classes raised by the upload engine and API client."""

from typing import Optional


class UploadError(Exception):
    """
    Base exception class for all upload-related errors.
    """
    pass


class ReadError(UploadError):
    """
    Raised when the local file cannot be read (hashing or chunk slicing).
    """
    pass


class PrepareError(UploadError):
    """
    Raised when the prepare handshake fails or the server rejects it.
    """
    pass


class ChunkError(UploadError):
    """
    Raised when a chunk transfer fails.
    """

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class CompleteError(UploadError):
    """
    Raised when the completion handshake fails.
    """
    pass


class CancelError(UploadError):
    """
    Raised when the server refuses to discard an upload session.
    """
    pass


class ServerTaskError(UploadError):
    """
    Raised when listing, resuming or deleting server-side upload tasks fails.
    """
    pass


class UploadCancelledError(UploadError):
    """
    Raised when a local cancellation aborts an in-flight operation.
    """
    pass
