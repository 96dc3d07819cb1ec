"""
Upload API routes.
Control surface for starting, pausing, resuming, retrying and cancelling uploads.
"""
from typing import Optional
from fastapi import APIRouter, Depends, status
from upload_engine.core.dependencies import get_upload_manager
from upload_engine.models.dto.upload_dto import (
    ResumeUploadRequest,
    StartUploadRequest,
    UploadListResponse,
    UploadStatusResponse
)
from upload_engine.services.upload_manager import UploadManager

router = APIRouter(prefix="/v1/api", tags=["Uploads"])


@router.post("/uploads", response_model=UploadStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_upload(
    request: StartUploadRequest,
    upload_manager: UploadManager = Depends(get_upload_manager)
):
    """
    Start uploading a local file to the ingest endpoint.
    
    The transfer runs in the background; poll the session for progress.
    """
    session = await upload_manager.start_upload(request.path, request.metadata)
    return UploadStatusResponse.from_event(await upload_manager.get_upload(session.id))


@router.get("/uploads", response_model=UploadListResponse)
async def list_uploads(upload_manager: UploadManager = Depends(get_upload_manager)):
    """List active uploads and persisted sessions that can be resumed."""
    uploads = [UploadStatusResponse.from_event(event) for event in await upload_manager.list_uploads()]
    return UploadListResponse(uploads=uploads, count=len(uploads))


@router.get("/uploads/{session_id}", response_model=UploadStatusResponse)
async def get_upload(session_id: str, upload_manager: UploadManager = Depends(get_upload_manager)):
    """Get the latest progress snapshot of an upload."""
    return UploadStatusResponse.from_event(await upload_manager.get_upload(session_id))


@router.post("/uploads/{session_id}/pause", response_model=UploadStatusResponse)
async def pause_upload(session_id: str, upload_manager: UploadManager = Depends(get_upload_manager)):
    await upload_manager.pause_upload(session_id)
    return UploadStatusResponse.from_event(await upload_manager.get_upload(session_id))


@router.post("/uploads/{session_id}/resume", response_model=UploadStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def resume_upload(
    session_id: str,
    request: Optional[ResumeUploadRequest] = None,
    upload_manager: UploadManager = Depends(get_upload_manager)
):
    """
    Resume a paused or interrupted upload.
    
    - **path**: source file path, required when resuming after a restart
    """
    path = request.path if request else None
    await upload_manager.resume_upload(session_id, path)
    return UploadStatusResponse.from_event(await upload_manager.get_upload(session_id))


@router.post("/uploads/{session_id}/retry", response_model=UploadStatusResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_upload(session_id: str, upload_manager: UploadManager = Depends(get_upload_manager)):
    await upload_manager.retry_upload(session_id)
    return UploadStatusResponse.from_event(await upload_manager.get_upload(session_id))


@router.post("/uploads/{session_id}/cancel", response_model=UploadStatusResponse)
async def cancel_upload(session_id: str, upload_manager: UploadManager = Depends(get_upload_manager)):
    """Cancel an upload and release its remote resource."""
    await upload_manager.cancel_upload(session_id)
    return UploadStatusResponse.from_event(await upload_manager.get_upload(session_id))
