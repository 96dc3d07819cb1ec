"""
Lambda function to evict stale upload sessions.
Triggered on a schedule (EventBridge rule).
"""
import json
from datetime import datetime, timedelta, timezone
from upload_engine.core import config
from upload_engine.core.exceptions import SessionStoreException
from upload_engine.repositories.dynamo_session_repository import DynamoSessionRepository
from upload_engine.repositories.session_store import SessionStore


def handler(event, context):
    """
    Lambda handler for scheduled session eviction.
    
    Args:
        event: Scheduled event; may carry "max_age_hours" to override the TTL
        context: Lambda context object
        
    Returns:
        dict: Eviction result with status and evicted ids
    """
    max_age_hours = _max_age_hours(event)
    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    
    try:
        store = SessionStore(DynamoSessionRepository())
        evicted = store.evict_stale(cutoff)
        
        print(f"Evicted {len(evicted)} upload session(s) idle for more than {max_age_hours}h")
        
        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': f'Evicted {len(evicted)} stale sessions',
                'evicted': evicted,
                'cutoff': cutoff.isoformat()
            })
        }
    
    except SessionStoreException as e:
        print(f"Session store error: {e.message}")
        return {
            'statusCode': 500,
            'body': json.dumps({
                'error': 'Session Store Error',
                'message': e.message
            })
        }


def _max_age_hours(event) -> int:
    """Read the optional TTL override from the scheduled event."""
    if isinstance(event, dict) and event.get('max_age_hours') is not None:
        return int(event['max_age_hours'])
    return config.settings.session_ttl_hours
