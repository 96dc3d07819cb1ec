"""
Global exception handler for the Upload API.
Provides centralized error handling for all API exceptions.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .exceptions import (
    IngestException,
    InvalidStateTransitionException,
    SessionNotFoundException,
    SessionStoreException,
    UploadNotRetryableException,
    ValidationException
)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    
    @app.exception_handler(SessionNotFoundException)
    async def handle_not_found(request: Request, exc: SessionNotFoundException):
        return JSONResponse(
            status_code=404,
            content={"error": "Not Found", "message": exc.message}
        )
    
    @app.exception_handler(ValidationException)
    async def handle_validation_error(request: Request, exc: ValidationException):
        return JSONResponse(
            status_code=400,
            content={"error": "Validation Error", "message": exc.message}
        )
    
    @app.exception_handler(UploadNotRetryableException)
    async def handle_not_retryable(request: Request, exc: UploadNotRetryableException):
        return JSONResponse(
            status_code=409,
            content={"error": "Upload Not Retryable", "message": exc.message}
        )
    
    @app.exception_handler(InvalidStateTransitionException)
    async def handle_invalid_transition(request: Request, exc: InvalidStateTransitionException):
        return JSONResponse(
            status_code=409,
            content={"error": "Invalid State", "message": exc.message}
        )
    
    @app.exception_handler(SessionStoreException)
    async def handle_store_error(request: Request, exc: SessionStoreException):
        return JSONResponse(
            status_code=503,
            content={"error": "Session Store Unavailable", "message": exc.message}
        )
    
    @app.exception_handler(IngestException)
    async def handle_ingest_error(request: Request, exc: IngestException):
        return JSONResponse(
            status_code=502,
            content={"error": "Ingest Endpoint Error", "message": exc.message}
        )
