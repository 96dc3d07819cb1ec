"""
Data Transfer Objects for the Upload API.
Defines request and response schemas for API endpoints.
"""
import math
from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator
from upload_engine.models.upload_event import UploadEvent


class StartUploadRequest(BaseModel):
    """Request schema for starting an upload of a local file."""
    path: str = Field(..., min_length=1, description="Path to the source file")
    metadata: Dict[str, str] = Field(default_factory=dict, description="Descriptive fields sent with the upload")
    
    @field_validator('path')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or v.strip() == "":
            raise ValueError("Field cannot be empty")
        return v.strip()


class ResumeUploadRequest(BaseModel):
    """Request schema for resuming an upload; path is needed after a restart."""
    path: Optional[str] = Field(default=None, description="Path to the source file")


class UploadErrorResponse(BaseModel):
    reason: str
    message: str
    retryable: bool
    status_code: Optional[int] = None


class UploadStatusResponse(BaseModel):
    """Response schema for an upload progress snapshot."""
    session_id: str
    status: str
    committed_bytes: int
    total_bytes: int
    progress: float
    speed_bytes_per_second: float = 0.0
    estimated_seconds_remaining: Optional[float] = None
    last_error: Optional[UploadErrorResponse] = None
    
    @classmethod
    def from_event(cls, event: UploadEvent) -> "UploadStatusResponse":
        eta = event.estimated_seconds_remaining
        if eta is not None and not math.isfinite(eta):
            eta = None
        
        return cls(
            session_id=event.session_id,
            status=event.status.value,
            committed_bytes=event.committed_bytes,
            total_bytes=event.total_bytes,
            progress=round(event.progress, 2),
            speed_bytes_per_second=event.speed_bytes_per_second,
            estimated_seconds_remaining=eta,
            last_error=UploadErrorResponse(**event.last_error.to_dict()) if event.last_error else None
        )


class UploadListResponse(BaseModel):
    """Response schema for listing uploads."""
    uploads: list[UploadStatusResponse]
    count: int
