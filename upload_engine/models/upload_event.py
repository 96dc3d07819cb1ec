"""
Progress snapshot emitted to upload listeners.
"""
from dataclasses import dataclass
from typing import Optional
from upload_engine.models.upload_session import UploadError, UploadSession, UploadStatus


@dataclass(frozen=True)
class UploadEvent:
    session_id: str
    status: UploadStatus
    committed_bytes: int
    total_bytes: int
    speed_bytes_per_second: float = 0.0
    # None while the speed is unknown
    estimated_seconds_remaining: Optional[float] = None
    last_error: Optional[UploadError] = None
    progress: float = 0.0
    
    @classmethod
    def from_session(
        cls,
        session: UploadSession,
        speed_bytes_per_second: float = 0.0,
        estimated_seconds_remaining: Optional[float] = None
    ) -> "UploadEvent":
        return cls(
            session_id=session.id,
            status=session.status,
            committed_bytes=session.committed_bytes,
            total_bytes=session.total_bytes,
            speed_bytes_per_second=speed_bytes_per_second,
            estimated_seconds_remaining=estimated_seconds_remaining,
            last_error=session.last_error,
            progress=session.progress()
        )
