"""
Dependency injection container for FastAPI.
Provides singleton-like behavior for services and repositories.
"""
from functools import lru_cache
from upload_engine.core import config
from upload_engine.repositories.dynamo_session_repository import DynamoSessionRepository
from upload_engine.repositories.ingest_client import TusIngestClient
from upload_engine.repositories.memory_session_repository import InMemorySessionRepository
from upload_engine.repositories.session_repository import SessionRepository
from upload_engine.repositories.session_store import SessionStore
from upload_engine.services.retry_scheduler import RetryScheduler
from upload_engine.services.upload_manager import UploadManager


@lru_cache()
def get_session_repository() -> SessionRepository:
    """Get the configured SessionRepository singleton instance."""
    backend = config.settings.session_store_backend.lower()
    if backend == "memory":
        return InMemorySessionRepository()
    if backend == "dynamodb":
        return DynamoSessionRepository()
    raise ValueError(f"Unknown session store backend: {config.settings.session_store_backend}")


@lru_cache()
def get_session_store() -> SessionStore:
    """Get SessionStore singleton instance."""
    return SessionStore(
        repository=get_session_repository(),
        min_write_interval=config.settings.session_save_interval_seconds
    )


@lru_cache()
def get_ingest_client() -> TusIngestClient:
    """Get TusIngestClient singleton instance."""
    return TusIngestClient()


@lru_cache()
def get_retry_scheduler() -> RetryScheduler:
    """Get RetryScheduler singleton instance."""
    return RetryScheduler(
        delays=config.settings.retry_delay_sequence,
        max_retries=config.settings.max_retry_attempts
    )


@lru_cache()
def get_upload_manager() -> UploadManager:
    """Get UploadManager singleton instance with injected dependencies."""
    return UploadManager(
        session_store=get_session_store(),
        ingest_client=get_ingest_client(),
        retry_scheduler=get_retry_scheduler(),
        chunk_size=config.settings.chunk_size_bytes
    )
