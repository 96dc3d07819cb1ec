"""
In-memory session repository.
Used for tests and for ephemeral runs where sessions need not survive a restart.
"""
import threading
from typing import Dict, List, Optional
from upload_engine.models.upload_session import UploadSession
from upload_engine.repositories.session_repository import SessionRepository


class InMemorySessionRepository(SessionRepository):
    """Thread-safe dictionary of detached session copies."""
    
    def __init__(self):
        self._records: Dict[str, UploadSession] = {}
        self._lock = threading.Lock()
    
    def save(self, session: UploadSession) -> None:
        with self._lock:
            self._records[session.id] = session.snapshot()
    
    def load(self, session_id: str) -> Optional[UploadSession]:
        with self._lock:
            record = self._records.get(session_id)
            return record.snapshot() if record else None
    
    def delete(self, session_id: str) -> None:
        with self._lock:
            self._records.pop(session_id, None)
    
    def list_all(self) -> List[UploadSession]:
        with self._lock:
            return [record.snapshot() for record in self._records.values()]
