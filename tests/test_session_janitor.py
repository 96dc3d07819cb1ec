import json
import pytest
from datetime import datetime, timedelta, timezone
from moto import mock_aws
import boto3
from lambda_functions.session_janitor import handler
from upload_engine.core import config
from upload_engine.models.upload_session import UploadSession
from upload_engine.repositories.dynamo_session_repository import DynamoSessionRepository


@pytest.fixture
def setup_test_env(monkeypatch):
    monkeypatch.setenv("UPLOAD_SESSIONS_TABLE_NAME", "UploadSessions-test")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("SESSION_TTL_HOURS", "72")
    config.settings = config.Settings()
    yield
    config.settings = config.Settings()


@pytest.fixture
def sessions_table(setup_test_env):
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        dynamodb.create_table(
            TableName="UploadSessions-test",
            KeySchema=[{"AttributeName": "session_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "session_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST"
        )
        repo = DynamoSessionRepository()
        now = datetime.now(timezone.utc)
        repo.save(UploadSession(id="stale", total_bytes=10, updated_at=now - timedelta(hours=100)))
        repo.save(UploadSession(id="recent", total_bytes=10, updated_at=now - timedelta(hours=10)))
        yield repo


class TestSessionJanitorLambda:
    def test_evicts_sessions_past_ttl(self, sessions_table):
        result = handler({}, None)
        
        assert result['statusCode'] == 200
        body = json.loads(result['body'])
        assert body['evicted'] == ["stale"]
        assert sessions_table.load("stale") is None
        assert sessions_table.load("recent") is not None

    def test_event_overrides_max_age(self, sessions_table):
        result = handler({'max_age_hours': 1}, None)
        
        body = json.loads(result['body'])
        assert sorted(body['evicted']) == ["recent", "stale"]

    def test_store_error_returns_500(self, setup_test_env, monkeypatch):
        monkeypatch.setenv("UPLOAD_SESSIONS_TABLE_NAME", "missing-table")
        config.settings = config.Settings()
        
        with mock_aws():
            result = handler({}, None)
        
        assert result['statusCode'] == 500
        assert json.loads(result['body'])['error'] == 'Session Store Error'
