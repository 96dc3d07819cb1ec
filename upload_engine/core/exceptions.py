"""
Custom exceptions for the resumable upload engine.
Provides specific error types for different failure scenarios.
"""
from typing import Optional


class UploadEngineException(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationException(UploadEngineException):
    """Raised when caller input fails validation."""
    pass


class SessionNotFoundException(UploadEngineException):
    """Raised when no upload session exists for an id."""
    pass


class InvalidStateTransitionException(UploadEngineException):
    """Raised when an operation is not valid for the session's current status."""
    pass


class UploadNotRetryableException(InvalidStateTransitionException):
    """Raised when a failed session must be restarted with a fresh upload."""
    pass


class SessionStoreException(UploadEngineException):
    """Raised when the session store is unavailable."""
    pass


class IngestException(UploadEngineException):
    """Base exception for ingest endpoint failures."""
    pass


class IngestTransportException(IngestException):
    """Raised on network failure or when a request misses its deadline."""
    pass


class IngestResponseException(IngestException):
    """Raised when the ingest endpoint answers with an unexpected status."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class OffsetConflictException(IngestResponseException):
    """Raised when the chunk offset disagrees with the server's durable offset."""
    pass


class ResourceGoneException(IngestResponseException):
    """Raised when the remote upload resource no longer exists."""
    pass


class IngestProtocolException(IngestException):
    """Raised when a successful response is missing required protocol headers."""
    pass


class TransferStalledException(IngestException):
    """Raised when the server acknowledges none of a non-empty chunk."""
    pass


class UploadFailedException(UploadEngineException):
    """Raised inside the engine to end a run with a classified failure."""
    def __init__(self, message: str, reason, status_code: Optional[int] = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)
