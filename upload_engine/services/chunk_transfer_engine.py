"""
Chunk Transfer Engine.
Drives one upload session from creation or resumption to completion, pause,
cancellation or failure, sending sequential byte windows to the ingest endpoint.
"""
import asyncio
import contextlib
import logging
import os
import threading
import time
import uuid
from typing import Awaitable, BinaryIO, Callable, Dict, List, Optional
from upload_engine.core import config
from upload_engine.core.exceptions import (
    IngestException,
    IngestProtocolException,
    IngestResponseException,
    IngestTransportException,
    InvalidStateTransitionException,
    OffsetConflictException,
    ResourceGoneException,
    SessionNotFoundException,
    SessionStoreException,
    TransferStalledException,
    UploadFailedException,
    UploadNotRetryableException,
    ValidationException
)
from upload_engine.models.upload_event import UploadEvent
from upload_engine.models.upload_session import FailureReason, UploadError, UploadSession, UploadStatus
from upload_engine.repositories.ingest_client import TusIngestClient
from upload_engine.repositories.session_store import SessionStore
from upload_engine.services.retry_scheduler import ErrorClass, RetryScheduler
from upload_engine.services.throughput_estimator import ThroughputEstimate, ThroughputEstimator

logger = logging.getLogger(__name__)

UploadListener = Callable[[UploadEvent], None]
MetadataValidator = Callable[[Dict[str, str]], None]


def classify_error(error: IngestException) -> ErrorClass:
    """Network failures, timeouts, 5xx and stalls are retryable; everything else is fatal."""
    if isinstance(error, (IngestTransportException, TransferStalledException)):
        return ErrorClass.RETRYABLE
    if isinstance(error, IngestResponseException) and error.status_code is not None and error.status_code >= 500:
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


class ChunkTransferEngine:
    """
    Owns the network conversation for a single upload session.
    
    One network operation is outstanding at a time, and committed_bytes
    only moves to the offset the server reports after applying a chunk.
    start/resume/retry return once the run is launched; wait() awaits it.
    """
    
    def __init__(
        self,
        ingest_client: TusIngestClient,
        session_store: SessionStore,
        retry_scheduler: Optional[RetryScheduler] = None,
        chunk_size: Optional[int] = None,
        sample_interval: Optional[float] = None,
        metadata_validator: Optional[MetadataValidator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ingest_client = ingest_client
        self.session_store = session_store
        self.retry_scheduler = retry_scheduler or RetryScheduler(
            config.settings.retry_delay_sequence,
            config.settings.max_retry_attempts
        )
        self.chunk_size = chunk_size or config.settings.chunk_size_bytes
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.sample_interval = (
            sample_interval if sample_interval is not None
            else config.settings.progress_sample_interval_seconds
        )
        self.metadata_validator = metadata_validator
        self._sleep = sleep
        self._clock = clock
        
        self.session: Optional[UploadSession] = None
        self._file: Optional[BinaryIO] = None
        self._file_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[UploadListener] = []
        self._throughput: Optional[ThroughputEstimator] = None
        self._estimate: Optional[ThroughputEstimate] = None
    
    @property
    def status(self) -> Optional[UploadStatus]:
        return self.session.status if self.session else None
    
    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
    
    def subscribe(self, listener: UploadListener) -> Callable[[], None]:
        """Register a listener for UploadEvent snapshots. Returns an unsubscribe callable."""
        self._listeners.append(listener)
        
        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        
        return unsubscribe
    
    def snapshot(self) -> Optional[UploadEvent]:
        """Latest progress snapshot, without emitting it."""
        if self.session is None:
            return None
        return self._build_event()
    
    async def start(self, file: BinaryIO, metadata: Optional[Dict[str, str]] = None) -> UploadSession:
        """
        Begin a new upload.
        
        Args:
            file: Seekable binary stream; its size fixes total_bytes
            metadata: Descriptive fields sent once with resource creation
            
        Returns:
            The new session, still idle until the resource is created
            
        Raises:
            InvalidStateTransitionException: If the engine already holds a live session
            ValidationException: If the file is not seekable or is too large
        """
        if self.session is not None and not self.session.is_terminal:
            raise InvalidStateTransitionException(
                f"Engine is already driving upload session {self.session.id}"
            )
        
        total_bytes = self._measure(file)
        if total_bytes > config.settings.max_file_size_bytes:
            raise ValidationException(
                f"File size ({total_bytes} bytes) exceeds maximum allowed size of "
                f"{config.settings.max_file_size_gb}GB"
            )
        
        session_id = str(uuid.uuid4())
        fields = {str(key): str(value) for key, value in (metadata or {}).items()}
        fields.setdefault('sessionId', session_id)
        
        self.session = UploadSession(id=session_id, total_bytes=total_bytes, metadata=fields)
        self._file = file
        self._reset_throughput()
        logger.info("Upload session %s created (%d bytes)", session_id, total_bytes)
        self._emit()
        
        if self.metadata_validator:
            try:
                self.metadata_validator(dict(fields))
            except ValidationException as e:
                await self._fail(UploadError(FailureReason.INVALID_METADATA, e.message))
                return self.session
        
        self._launch(create=True)
        return self.session
    
    async def resume(self, session_id: Optional[str] = None, file: Optional[BinaryIO] = None) -> UploadSession:
        """
        Continue a paused, failed or interrupted upload from the server's offset.
        
        Args:
            session_id: Persisted session to reload; defaults to the current session
            file: Live handle to the same source file; required after a restart
            
        Raises:
            SessionNotFoundException: If no session exists for the id
            InvalidStateTransitionException: If the session is running or terminal
            UploadNotRetryableException: If the last failure requires a fresh start
            ValidationException: If no file handle is available or its size changed
        """
        if self.is_running:
            raise InvalidStateTransitionException(f"Upload session {self.session.id} is already running")
        
        if session_id is not None and (self.session is None or self.session.id != session_id):
            if self.session is not None and not self.session.is_terminal:
                raise InvalidStateTransitionException(
                    f"Engine is already driving upload session {self.session.id}"
                )
            loaded = await asyncio.to_thread(self.session_store.load, session_id)
            if loaded is None:
                raise SessionNotFoundException(f"Upload session '{session_id}' not found")
            self.session = loaded
            self._file = None
        
        session = self.session
        if session is None:
            raise SessionNotFoundException("No upload session to resume")
        if session.is_terminal:
            raise InvalidStateTransitionException(
                f"Upload session {session.id} is {session.status.value} and cannot be resumed"
            )
        if session.status is UploadStatus.FAILED and session.last_error and not session.last_error.retryable:
            raise UploadNotRetryableException(
                f"Upload session {session.id} failed with '{session.last_error.reason.value}'; "
                "start a new upload"
            )
        
        if file is not None:
            self._file = file
        if self._file is None:
            raise ValidationException("A live handle to the source file is required to resume")
        size = self._measure(self._file)
        if size != session.total_bytes:
            raise ValidationException(
                f"Source file is {size} bytes but upload session {session.id} expects {session.total_bytes}"
            )
        
        self._reset_throughput()
        if session.resource_handle is None:
            self._transition(UploadStatus.IDLE)
            self._launch(create=True)
        else:
            self._transition(UploadStatus.UPLOADING)
            self._launch(create=False)
        return session
    
    async def retry(self, file: Optional[BinaryIO] = None) -> UploadSession:
        """Resume a failed session after re-querying the server offset."""
        if self.session is None:
            raise SessionNotFoundException("No upload session to retry")
        if self.session.status is not UploadStatus.FAILED:
            raise InvalidStateTransitionException(
                f"retry() requires a failed session, upload {self.session.id} is {self.session.status.value}"
            )
        return await self.resume(file=file)
    
    async def pause(self) -> UploadSession:
        """
        Abort the in-flight request and keep the session for a later resume.
        
        Raises:
            InvalidStateTransitionException: If the session is not uploading
        """
        self._require_status(UploadStatus.UPLOADING, "pause")
        await self._abort_in_flight()
        
        # The run may have finished while it was being aborted
        if self.session.status is not UploadStatus.UPLOADING:
            return self.session
        
        self._reset_throughput()
        self._transition(UploadStatus.PAUSED)
        await self._persist(force=True)
        return self.session
    
    async def cancel(self) -> UploadSession:
        """
        Abort the upload, release the remote resource and forget the session.
        
        Raises:
            InvalidStateTransitionException: If the session already completed or was cancelled
        """
        if self.session is None:
            raise SessionNotFoundException("No upload session to cancel")
        if self.session.is_terminal:
            raise InvalidStateTransitionException(
                f"Upload session {self.session.id} is {self.session.status.value} and cannot be cancelled"
            )
        
        await self._abort_in_flight()
        session = self.session
        if session.status is UploadStatus.COMPLETED:
            return session
        
        if session.resource_handle:
            try:
                await self.ingest_client.release(session.resource_handle)
            except IngestException as e:
                logger.warning("Best-effort release of upload session %s failed: %s", session.id, e.message)
        
        try:
            await asyncio.to_thread(self.session_store.delete, session.id)
        except SessionStoreException as e:
            logger.warning("Could not delete cancelled upload session %s: %s", session.id, e.message)
        
        self._reset_throughput()
        self._transition(UploadStatus.CANCELLED)
        return session
    
    async def wait(self) -> Optional[UploadSession]:
        """Wait for the current run to stop, whatever its outcome."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        return self.session
    
    # Run loop
    
    def _launch(self, create: bool) -> None:
        self._task = asyncio.create_task(self._run(create))
    
    async def _run(self, create: bool) -> None:
        try:
            if create:
                await self._create_resource()
            else:
                await self._reconcile_offset()
            await self._transfer_loop()
            await self._complete()
        except UploadFailedException as e:
            await self._fail(UploadError(e.reason, e.message, e.status_code))
        except Exception as e:
            logger.exception("Upload session %s stopped on an unexpected error", self.session.id)
            await self._fail(UploadError(FailureReason.UNEXPECTED_ERROR, f"Unexpected error: {str(e)}"))
    
    async def _create_resource(self) -> None:
        session = self.session
        try:
            created = await self.ingest_client.create(session.total_bytes, session.metadata)
        except ValidationException as e:
            raise UploadFailedException(e.message, FailureReason.INVALID_METADATA) from e
        except IngestResponseException as e:
            raise UploadFailedException(
                f"Resource creation failed: {e.message}",
                FailureReason.RESOURCE_CREATION_FAILED,
                e.status_code
            ) from e
        except IngestException as e:
            raise UploadFailedException(
                f"Resource creation failed: {e.message}",
                FailureReason.RESOURCE_CREATION_FAILED
            ) from e
        
        session.resource_handle = created.resource_handle
        self._accept_offset(created.committed_bytes)
        logger.info("Upload session %s bound to %s", session.id, created.resource_handle)
        self._transition(UploadStatus.UPLOADING)
        await self._persist(force=True)
    
    async def _reconcile_offset(self) -> None:
        """Adopt the server's committed offset; never trust the local copy."""
        handle = self.session.resource_handle
        server_offset = await self._with_retries(
            lambda: self.ingest_client.query_offset(handle),
            "Offset query"
        )
        if server_offset != self.session.committed_bytes:
            logger.info(
                "Upload session %s reconciled offset %d -> %d",
                self.session.id, self.session.committed_bytes, server_offset
            )
        self._accept_offset(server_offset)
        await self._persist()
    
    async def _transfer_loop(self) -> None:
        session = self.session
        while session.remaining_bytes > 0:
            offset = session.committed_bytes
            length = min(self.chunk_size, session.remaining_bytes)
            data = await self._read_window(offset, length)
            
            reported = await self._with_retries(
                lambda: self._send_window(offset, data),
                f"Chunk at offset {offset}"
            )
            self._accept_offset(reported)
            session.last_error = None
            session.touch()
            await self._persist()
            self._sample()
    
    async def _send_window(self, offset: int, data: bytes) -> int:
        handle = self.session.resource_handle
        try:
            reported = await self.ingest_client.transfer_chunk(handle, offset, data)
        except OffsetConflictException:
            logger.warning("Offset conflict at %d for upload session %s, querying server", offset, self.session.id)
            reported = await self.ingest_client.query_offset(handle)
        
        if data and reported == offset:
            raise TransferStalledException(f"Server acknowledged no bytes at offset {offset}")
        return reported
    
    async def _with_retries(self, operation: Callable[[], Awaitable[int]], description: str) -> int:
        """Run a network operation, backing off on retryable failures."""
        failures = 0
        while True:
            try:
                return await operation()
            except ResourceGoneException as e:
                raise UploadFailedException(
                    f"Upload resource expired or was deleted: {e.message}",
                    FailureReason.RESOURCE_EXPIRED,
                    e.status_code
                ) from e
            except IngestException as e:
                error_class = classify_error(e)
                failures += 1
                delay = self.retry_scheduler.next_delay(failures - 1, error_class)
                if delay is None:
                    raise self._escalate(e, error_class, description, failures) from e
                logger.warning(
                    "%s failed for upload session %s (%s), retry %d in %.1fs",
                    description, self.session.id, e.message, failures, delay
                )
                await self._sleep(delay)
    
    def _escalate(self, error: IngestException, error_class: ErrorClass, description: str, failures: int) -> UploadFailedException:
        status_code = getattr(error, 'status_code', None)
        if error_class is ErrorClass.RETRYABLE:
            return UploadFailedException(
                f"{description} failed after {failures} attempts: {error.message}",
                FailureReason.RETRY_EXHAUSTED,
                status_code
            )
        if isinstance(error, IngestProtocolException):
            return UploadFailedException(error.message, FailureReason.PROTOCOL_ERROR)
        return UploadFailedException(
            f"{description} rejected: {error.message}",
            FailureReason.CLIENT_ERROR,
            status_code
        )
    
    def _accept_offset(self, reported: int) -> None:
        """Move committed_bytes forward to a server-reported offset."""
        session = self.session
        if reported < session.committed_bytes:
            raise UploadFailedException(
                f"Server offset {reported} is behind committed offset {session.committed_bytes}",
                FailureReason.OFFSET_ROLLBACK
            )
        if reported > session.total_bytes:
            raise UploadFailedException(
                f"Server offset {reported} exceeds upload size {session.total_bytes}",
                FailureReason.INVALID_OFFSET
            )
        session.committed_bytes = reported
    
    async def _read_window(self, offset: int, length: int) -> bytes:
        try:
            data = await asyncio.to_thread(self._read_at, offset, length)
        except OSError as e:
            raise UploadFailedException(f"Could not read source file: {str(e)}", FailureReason.SOURCE_UNREADABLE) from e
        if len(data) != length:
            raise UploadFailedException(
                f"Source file ended at {offset + len(data)}, expected {offset + length} bytes",
                FailureReason.SOURCE_UNREADABLE
            )
        return data
    
    def _read_at(self, offset: int, length: int) -> bytes:
        with self._file_lock:
            self._file.seek(offset)
            parts = []
            remaining = length
            while remaining > 0:
                piece = self._file.read(remaining)
                if not piece:
                    break
                parts.append(piece)
                remaining -= len(piece)
            return b"".join(parts)
    
    async def _complete(self) -> None:
        session = self.session
        self._sample()
        self._transition(UploadStatus.COMPLETED)
        try:
            await asyncio.to_thread(self.session_store.delete, session.id)
        except SessionStoreException as e:
            logger.warning("Could not delete completed upload session %s: %s", session.id, e.message)
    
    async def _fail(self, error: UploadError) -> None:
        session = self.session
        session.last_error = error
        logger.error("Upload session %s failed (%s): %s", session.id, error.reason.value, error.message)
        self._transition(UploadStatus.FAILED)
        await self._persist(force=True)
    
    async def _abort_in_flight(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])
    
    async def _persist(self, force: bool = False) -> None:
        """Save the session; a store outage never interrupts the transfer."""
        try:
            await asyncio.to_thread(self.session_store.save, self.session.snapshot(), force)
        except SessionStoreException as e:
            logger.warning("Could not persist upload session %s: %s", self.session.id, e.message)
    
    # Events
    
    def _transition(self, status: UploadStatus) -> None:
        previous = self.session.status
        self.session.status = status
        self.session.touch()
        logger.info("Upload session %s: %s -> %s", self.session.id, previous.value, status.value)
        self._emit()
    
    def _sample(self) -> None:
        estimate = self._throughput.record(self.session.committed_bytes, self._clock())
        if estimate is not None:
            self._estimate = estimate
            self._emit()
    
    def _reset_throughput(self) -> None:
        if self._throughput is None or self._throughput.total_bytes != self.session.total_bytes:
            self._throughput = ThroughputEstimator(self.session.total_bytes, self.sample_interval)
        else:
            self._throughput.reset()
        self._estimate = None
    
    def _build_event(self) -> UploadEvent:
        if self._estimate is not None:
            return UploadEvent.from_session(
                self.session,
                speed_bytes_per_second=self._estimate.speed_bytes_per_second,
                estimated_seconds_remaining=self._estimate.estimated_seconds_remaining
            )
        return UploadEvent.from_session(self.session)
    
    def _emit(self) -> None:
        event = self._build_event()
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Upload listener failed for session %s", self.session.id)
    
    def _require_status(self, status: UploadStatus, operation: str) -> None:
        if self.session is None:
            raise SessionNotFoundException(f"No upload session to {operation}")
        if self.session.status is not status:
            raise InvalidStateTransitionException(
                f"{operation}() requires a {status.value} session, "
                f"upload {self.session.id} is {self.session.status.value}"
            )
    
    @staticmethod
    def _measure(file: BinaryIO) -> int:
        """Total length of a seekable stream, leaving its position unchanged."""
        try:
            if not file.seekable():
                raise ValidationException("Source file must be seekable")
            position = file.tell()
            size = file.seek(0, os.SEEK_END)
            file.seek(position)
        except (AttributeError, OSError) as e:
            raise ValidationException(f"Source file must be a seekable byte stream: {str(e)}") from e
        return size
