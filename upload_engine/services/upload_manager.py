"""
Upload Manager for the caller-facing surface.
Owns one ChunkTransferEngine per active upload and the source files they read.
"""
import asyncio
import logging
import mimetypes
import os
from datetime import datetime, timedelta, timezone
from collections import OrderedDict
from typing import BinaryIO, Callable, Dict, List, Optional
from upload_engine.core import config
from upload_engine.core.exceptions import (
    SessionNotFoundException,
    ValidationException
)
from upload_engine.models.upload_event import UploadEvent
from upload_engine.models.upload_session import UploadSession, UploadStatus
from upload_engine.repositories.ingest_client import TusIngestClient
from upload_engine.repositories.session_store import SessionStore
from upload_engine.services.chunk_transfer_engine import ChunkTransferEngine, MetadataValidator
from upload_engine.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], ChunkTransferEngine]

# Upper bound on cached snapshots, oldest dropped first
MAX_FINISHED_SNAPSHOTS = 1000


class UploadManager:
    """Service for starting, controlling and listing uploads."""
    
    def __init__(
        self,
        session_store: SessionStore,
        ingest_client: TusIngestClient,
        retry_scheduler: RetryScheduler = None,
        chunk_size: int = None,
        metadata_validator: Optional[MetadataValidator] = None,
        engine_factory: Optional[EngineFactory] = None
    ):
        self.session_store = session_store
        self.ingest_client = ingest_client
        self.retry_scheduler = retry_scheduler
        self.chunk_size = chunk_size
        self.metadata_validator = metadata_validator
        self._engine_factory = engine_factory or self._default_engine
        self._engines: Dict[str, ChunkTransferEngine] = {}
        self._files: Dict[str, BinaryIO] = {}
        self._latest: "OrderedDict[str, UploadEvent]" = OrderedDict()
        self._listeners: List[Callable[[UploadEvent], None]] = []
    
    def subscribe(self, listener: Callable[[UploadEvent], None]) -> None:
        """Receive events from every upload this manager drives."""
        self._listeners.append(listener)
    
    async def start_upload(self, path: str, metadata: Optional[Dict[str, str]] = None) -> UploadSession:
        """
        Open a local file and start uploading it.
        
        Args:
            path: Path to the source file
            metadata: Descriptive fields; filename, filetype and title are filled in
            
        Returns:
            The new UploadSession
            
        Raises:
            ValidationException: If the file cannot be opened
        """
        fields = self._describe_file(path, metadata)
        file = self._open(path)
        engine = self._engine_factory()
        self._attach(engine)
        try:
            session = await engine.start(file, fields)
        except Exception:
            file.close()
            raise
        
        self._engines[session.id] = engine
        self._files[session.id] = file
        return session
    
    async def pause_upload(self, session_id: str) -> UploadSession:
        return await self._engine_for(session_id).pause()
    
    async def resume_upload(self, session_id: str, path: Optional[str] = None) -> UploadSession:
        """
        Resume an upload in this process, or one persisted by an earlier process.
        
        Args:
            session_id: Session identifier
            path: Source file path; required when the session was persisted by another process
        """
        engine = self._engines.get(session_id)
        file = None
        if path is not None:
            file = self._open(path)
        
        if engine is None:
            if file is None:
                raise ValidationException("A source file path is required to resume a persisted upload")
            engine = self._engine_factory()
            self._attach(engine)
        
        try:
            session = await engine.resume(session_id, file)
        except Exception:
            if file is not None:
                file.close()
            raise
        
        if file is not None:
            previous = self._files.get(session_id)
            if previous is not None and previous is not file:
                previous.close()
            self._files[session_id] = file
        self._engines[session_id] = engine
        return session
    
    async def retry_upload(self, session_id: str) -> UploadSession:
        return await self._engine_for(session_id).retry()
    
    async def cancel_upload(self, session_id: str) -> UploadSession:
        """Cancel an upload; persisted sessions from earlier processes are cancelled too."""
        engine = self._engines.get(session_id)
        if engine is None:
            session = await asyncio.to_thread(self.session_store.load, session_id)
            if session is None:
                raise SessionNotFoundException(f"Upload session '{session_id}' not found")
            engine = self._engine_factory()
            self._attach(engine)
            engine.session = session
            self._engines[session_id] = engine
        return await engine.cancel()
    
    async def get_upload(self, session_id: str) -> UploadEvent:
        """
        Latest snapshot for a session.
        
        Raises:
            SessionNotFoundException: If the session is neither active nor persisted
        """
        engine = self._engines.get(session_id)
        if engine is not None:
            return engine.snapshot()
        
        latest = self._latest.get(session_id)
        if latest is not None:
            return latest
        
        session = await asyncio.to_thread(self.session_store.load, session_id)
        if session is None:
            raise SessionNotFoundException(f"Upload session '{session_id}' not found")
        return UploadEvent.from_session(session)
    
    async def list_uploads(self) -> List[UploadEvent]:
        """Active uploads plus every persisted, resumable session."""
        events = {
            session.id: UploadEvent.from_session(session)
            for session in await asyncio.to_thread(self.session_store.list_all)
        }
        for session_id, engine in self._engines.items():
            events[session_id] = engine.snapshot()
        return sorted(events.values(), key=lambda event: event.session_id)
    
    async def evict_stale(self, max_age_hours: Optional[int] = None) -> List[str]:
        """Delete persisted sessions untouched for longer than max_age_hours."""
        hours = max_age_hours if max_age_hours is not None else config.settings.session_ttl_hours
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        evicted = await asyncio.to_thread(self.session_store.evict_stale, cutoff)
        for session_id in evicted:
            self._latest.pop(session_id, None)
            if session_id in self._engines and not self._engines[session_id].is_running:
                self._release(session_id)
        return evicted
    
    async def shutdown(self) -> None:
        """Pause every running upload so it can resume after a restart."""
        for session_id, engine in list(self._engines.items()):
            if engine.status is UploadStatus.UPLOADING:
                await engine.pause()
            elif engine.is_running:
                # Still creating the remote resource, nothing to resume yet
                await engine.cancel()
        await asyncio.to_thread(self.session_store.flush)
        for session_id in list(self._files):
            self._release(session_id)
        await self.ingest_client.aclose()
    
    def _default_engine(self) -> ChunkTransferEngine:
        return ChunkTransferEngine(
            ingest_client=self.ingest_client,
            session_store=self.session_store,
            retry_scheduler=self.retry_scheduler,
            chunk_size=self.chunk_size,
            metadata_validator=self.metadata_validator
        )
    
    def _attach(self, engine: ChunkTransferEngine) -> None:
        engine.subscribe(self._on_event)
    
    def _on_event(self, event: UploadEvent) -> None:
        self._latest[event.session_id] = event
        self._latest.move_to_end(event.session_id)
        while len(self._latest) > MAX_FINISHED_SNAPSHOTS:
            self._latest.popitem(last=False)
        if event.status in (UploadStatus.COMPLETED, UploadStatus.CANCELLED):
            self._release(event.session_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Upload listener failed for session %s", event.session_id)
    
    def _release(self, session_id: str) -> None:
        """Close the source file and drop the engine of a finished session."""
        file = self._files.pop(session_id, None)
        if file is not None:
            file.close()
        self._engines.pop(session_id, None)
    
    def _engine_for(self, session_id: str) -> ChunkTransferEngine:
        engine = self._engines.get(session_id)
        if engine is None:
            raise SessionNotFoundException(f"No active upload for session '{session_id}'")
        return engine
    
    @staticmethod
    def _open(path: str) -> BinaryIO:
        try:
            return open(path, 'rb')
        except OSError as e:
            raise ValidationException(f"Cannot open source file '{path}': {e.strerror}") from e
    
    @staticmethod
    def _describe_file(path: str, metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Default the descriptive fields derived from the file itself."""
        filename = os.path.basename(path)
        fields = {str(key): str(value) for key, value in (metadata or {}).items()}
        fields.setdefault('filename', filename)
        fields.setdefault('title', filename)
        filetype, _ = mimetypes.guess_type(filename)
        if filetype:
            fields.setdefault('filetype', filetype)
        return fields
