"""
Session Store.
Coalescing, per-id serialized front for a SessionRepository.
"""
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional
from upload_engine.models.upload_session import UploadSession
from upload_engine.repositories.session_repository import SessionRepository

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Durable mapping from session id to UploadSession.
    
    Writes for one id are serialized; writes for different ids run
    concurrently. A save arriving within min_write_interval of the previous
    write for the same id is held as pending and written by the next
    eligible save or by flush(). Reads always see pending records.
    
    The store never validates session semantics.
    """
    
    def __init__(
        self,
        repository: SessionRepository,
        min_write_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.repository = repository
        self.min_write_interval = min_write_interval
        self._clock = clock
        self._pending: Dict[str, UploadSession] = {}
        self._last_write: Dict[str, float] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
    
    def save(self, session: UploadSession, force: bool = False) -> bool:
        """
        Upsert a session record.
        
        Args:
            session: Session to persist; a detached copy is stored
            force: Write through even if the id was written recently
            
        Returns:
            True if the record reached the repository, False if it was coalesced
            
        Raises:
            SessionStoreException: If the repository write fails
        """
        record = session.snapshot()
        with self._lock_for(record.id):
            now = self._clock()
            last = self._last_write.get(record.id)
            if not force and last is not None and now - last < self.min_write_interval:
                self._pending[record.id] = record
                return False
            
            # Keep the record pending until the write lands so a failed
            # write is retried by the next save
            self._pending[record.id] = record
            self.repository.save(record)
            self._pending.pop(record.id, None)
            self._last_write[record.id] = now
            return True
    
    def flush(self, session_id: Optional[str] = None) -> None:
        """Write pending records, for one id or for all of them."""
        session_ids = [session_id] if session_id else list(self._pending)
        for pending_id in session_ids:
            with self._lock_for(pending_id):
                record = self._pending.get(pending_id)
                if record is None:
                    continue
                self.repository.save(record)
                self._pending.pop(pending_id, None)
                self._last_write[pending_id] = self._clock()
    
    def load(self, session_id: str) -> Optional[UploadSession]:
        with self._lock_for(session_id):
            pending = self._pending.get(session_id)
            if pending is not None:
                return pending.snapshot()
            return self.repository.load(session_id)
    
    def delete(self, session_id: str) -> None:
        with self._lock_for(session_id):
            self._pending.pop(session_id, None)
            self._last_write.pop(session_id, None)
            self.repository.delete(session_id)
        with self._locks_guard:
            self._locks.pop(session_id, None)
    
    def list_all(self) -> List[UploadSession]:
        """All records, with pending writes taking precedence over stored ones."""
        records = {session.id: session for session in self.repository.list_all()}
        for session_id, pending in list(self._pending.items()):
            records[session_id] = pending.snapshot()
        return list(records.values())
    
    def evict_stale(self, older_than: datetime) -> List[str]:
        """
        Delete records last updated before the cut-off.
        
        Args:
            older_than: Timezone-aware cut-off
            
        Returns:
            Ids of the evicted sessions
        """
        evicted = []
        for session in self.list_all():
            if session.updated_at < older_than:
                self.delete(session.id)
                evicted.append(session.id)
        
        if evicted:
            logger.info("Evicted %d stale upload session(s)", len(evicted))
        return evicted
    
    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock
