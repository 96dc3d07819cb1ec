"""
Abstract base class for session repositories.
Defines the contract for durable upload session storage.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from upload_engine.models.upload_session import UploadSession


class SessionRepository(ABC):
    """Abstract repository interface for upload session records."""
    
    @abstractmethod
    def save(self, session: UploadSession) -> None:
        """Insert or replace the record for session.id."""
        pass
    
    @abstractmethod
    def load(self, session_id: str) -> Optional[UploadSession]:
        """Return the record for session_id, or None if not found."""
        pass
    
    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove the record for session_id. Missing records are ignored."""
        pass
    
    @abstractmethod
    def list_all(self) -> List[UploadSession]:
        """Return every stored record."""
        pass
