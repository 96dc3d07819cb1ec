"""
Upload Session domain model.
Represents one file's transfer to the ingest endpoint, possibly across process restarts.
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class UploadStatus(str, Enum):
    """Lifecycle states of an upload session."""
    
    IDLE = "idle"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({UploadStatus.COMPLETED, UploadStatus.CANCELLED})


class FailureReason(str, Enum):
    """Stable, machine-readable failure codes."""
    
    RESOURCE_CREATION_FAILED = "resource_creation_failed"
    RESOURCE_EXPIRED = "resource_expired"
    OFFSET_ROLLBACK = "offset_rollback"
    INVALID_OFFSET = "invalid_offset"
    RETRY_EXHAUSTED = "retry_exhausted"
    CLIENT_ERROR = "client_error"
    PROTOCOL_ERROR = "protocol_error"
    INVALID_METADATA = "invalid_metadata"
    SOURCE_UNREADABLE = "source_unreadable"
    UNEXPECTED_ERROR = "unexpected_error"


# Reasons that require starting a fresh session instead of retrying
NON_RETRYABLE_REASONS = frozenset({
    FailureReason.RESOURCE_EXPIRED,
    FailureReason.OFFSET_ROLLBACK,
    FailureReason.INVALID_OFFSET,
    FailureReason.INVALID_METADATA,
})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadError:
    """Last classified failure of a session."""
    
    reason: FailureReason
    message: str
    status_code: Optional[int] = None
    
    @property
    def retryable(self) -> bool:
        """Whether retry() may continue the session."""
        return self.reason not in NON_RETRYABLE_REASONS
    
    def to_dict(self) -> Dict[str, Any]:
        data = {
            'reason': self.reason.value,
            'message': self.message,
            'retryable': self.retryable
        }
        if self.status_code is not None:
            data['status_code'] = self.status_code
        return data
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadError":
        status_code = data.get('status_code')
        return cls(
            reason=FailureReason(data['reason']),
            message=data.get('message', ''),
            status_code=int(status_code) if status_code is not None else None
        )


@dataclass
class UploadSession:
    """
    Domain model for a resumable upload.
    
    committed_bytes only ever holds a value the server acknowledged and is
    the cursor every resume starts from.
    """
    
    id: str
    total_bytes: int
    metadata: Dict[str, str] = field(default_factory=dict)
    status: UploadStatus = UploadStatus.IDLE
    committed_bytes: int = 0
    resource_handle: Optional[str] = None
    last_error: Optional[UploadError] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    
    @property
    def remaining_bytes(self) -> int:
        return self.total_bytes - self.committed_bytes
    
    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
    
    def progress(self) -> float:
        if self.total_bytes == 0:
            return 100.0
        return (self.committed_bytes / self.total_bytes) * 100
    
    def touch(self) -> None:
        self.updated_at = utc_now()
    
    def snapshot(self) -> "UploadSession":
        """Detached copy safe to hand to another thread."""
        return copy.deepcopy(self)
    
    def __repr__(self):
        return (
            f"UploadSession(id={self.id}, status={self.status.value}, "
            f"committed_bytes={self.committed_bytes}/{self.total_bytes})"
        )
