"""
DynamoDB Repository for upload session records.
Persists session metadata and the resumption handle, never file bytes.
"""
from datetime import datetime
from typing import List, Optional
import boto3
from botocore.exceptions import ClientError
from upload_engine.core import config
from upload_engine.core.exceptions import SessionStoreException
from upload_engine.models.upload_session import UploadError, UploadSession, UploadStatus
from upload_engine.repositories.session_repository import SessionRepository


class DynamoSessionRepository(SessionRepository):
    """Repository for upload session DynamoDB operations."""
    
    def __init__(self, table_name: Optional[str] = None):
        self.dynamodb = boto3.resource('dynamodb', region_name=config.settings.aws_region)
        self.table = self.dynamodb.Table(table_name or config.settings.upload_sessions_table_name)
    
    def save(self, session: UploadSession) -> None:
        """
        Upsert an upload session record.
        
        Args:
            session: UploadSession domain model
            
        Raises:
            SessionStoreException: If the write fails
        """
        try:
            self.table.put_item(Item=self._session_to_item(session))
        except ClientError as e:
            raise SessionStoreException(f"Failed to save upload session: {str(e)}") from e
        except Exception as e:
            raise SessionStoreException(f"Unexpected error saving upload session: {str(e)}") from e
    
    def load(self, session_id: str) -> Optional[UploadSession]:
        """
        Retrieve an upload session by ID.
        
        Args:
            session_id: Session identifier
            
        Returns:
            UploadSession or None if not found
            
        Raises:
            SessionStoreException: If the read fails
        """
        try:
            response = self.table.get_item(Key={'session_id': session_id})
            
            if 'Item' not in response:
                return None
            
            return self._item_to_session(response['Item'])
            
        except ClientError as e:
            raise SessionStoreException(f"Failed to load upload session: {str(e)}") from e
        except Exception as e:
            raise SessionStoreException(f"Unexpected error loading upload session: {str(e)}") from e
    
    def delete(self, session_id: str) -> None:
        try:
            self.table.delete_item(Key={'session_id': session_id})
        except ClientError as e:
            raise SessionStoreException(f"Failed to delete upload session: {str(e)}") from e
        except Exception as e:
            raise SessionStoreException(f"Unexpected error deleting upload session: {str(e)}") from e
    
    def list_all(self) -> List[UploadSession]:
        """
        Scan every session record, following pagination.
        
        Raises:
            SessionStoreException: If the scan fails
        """
        try:
            sessions = []
            scan_kwargs = {}
            
            while True:
                response = self.table.scan(**scan_kwargs)
                sessions.extend(self._item_to_session(item) for item in response.get('Items', []))
                
                last_key = response.get('LastEvaluatedKey')
                if not last_key:
                    break
                scan_kwargs['ExclusiveStartKey'] = last_key
            
            return sessions
            
        except ClientError as e:
            raise SessionStoreException(f"Failed to list upload sessions: {str(e)}") from e
        except Exception as e:
            raise SessionStoreException(f"Unexpected error listing upload sessions: {str(e)}") from e
    
    def _session_to_item(self, session: UploadSession) -> dict:
        """Convert UploadSession domain model to DynamoDB item."""
        item = {
            'session_id': session.id,
            'status': session.status.value,
            'total_bytes': session.total_bytes,
            'committed_bytes': session.committed_bytes,
            'metadata': dict(session.metadata),
            'created_at': session.created_at.isoformat(),
            'updated_at': session.updated_at.isoformat()
        }
        
        if session.resource_handle:
            item['resource_handle'] = session.resource_handle
        
        if session.last_error:
            item['last_error'] = session.last_error.to_dict()
        
        return item
    
    def _item_to_session(self, item: dict) -> UploadSession:
        """Convert DynamoDB item to UploadSession domain model."""
        last_error = item.get('last_error')
        return UploadSession(
            id=item['session_id'],
            total_bytes=int(item['total_bytes']),
            metadata={key: str(value) for key, value in item.get('metadata', {}).items()},
            status=UploadStatus(item['status']),
            committed_bytes=int(item.get('committed_bytes', 0)),
            resource_handle=item.get('resource_handle'),
            last_error=UploadError.from_dict(last_error) if last_error else None,
            created_at=datetime.fromisoformat(item['created_at']),
            updated_at=datetime.fromisoformat(item['updated_at'])
        )
