"""
Unit tests for TusIngestClient against an httpx mock transport.
"""
import asyncio
import base64
import httpx
import pytest
from upload_engine.core.exceptions import (
    IngestProtocolException,
    IngestResponseException,
    IngestTransportException,
    OffsetConflictException,
    ResourceGoneException,
    ValidationException
)
from upload_engine.repositories.ingest_client import TUS_VERSION, TusIngestClient, encode_metadata

ENDPOINT = "https://ingest.test/files/"


def make_client(handler, timeout_seconds=5.0):
    transport = httpx.MockTransport(handler)
    return TusIngestClient(
        endpoint=ENDPOINT,
        timeout_seconds=timeout_seconds,
        http_client=httpx.AsyncClient(transport=transport)
    )


class TestEncodeMetadata:
    def test_values_are_base64(self):
        header = encode_metadata({'filename': 'clip.mp4', 'title': 'Día de campo'})
        
        pairs = dict(pair.split(" ") for pair in header.split(","))
        assert base64.b64decode(pairs['filename']).decode() == 'clip.mp4'
        assert base64.b64decode(pairs['title']).decode('utf-8') == 'Día de campo'

    @pytest.mark.parametrize("key", ["", "my title", "a,b"])
    def test_invalid_keys_rejected(self, key):
        with pytest.raises(ValidationException):
            encode_metadata({key: 'value'})


class TestTusIngestClient:
    @pytest.mark.asyncio
    async def test_create_sends_length_and_metadata(self):
        seen = {}
        
        def handler(request):
            seen['method'] = request.method
            seen['headers'] = request.headers
            return httpx.Response(201, headers={'Location': '/files/abc123'})
        
        client = make_client(handler)
        created = await client.create(104857600, {'filename': 'clip.mp4'})
        
        assert seen['method'] == "POST"
        assert seen['headers']['Tus-Resumable'] == TUS_VERSION
        assert seen['headers']['Upload-Length'] == "104857600"
        assert seen['headers']['Upload-Metadata'].startswith("filename ")
        assert created.resource_handle == "https://ingest.test/files/abc123"
        assert created.committed_bytes == 0

    @pytest.mark.asyncio
    async def test_create_without_location_is_protocol_error(self):
        client = make_client(lambda request: httpx.Response(201))
        
        with pytest.raises(IngestProtocolException):
            await client.create(10, {})

    @pytest.mark.asyncio
    async def test_create_rejected(self):
        client = make_client(lambda request: httpx.Response(413))
        
        with pytest.raises(IngestResponseException) as exc_info:
            await client.create(10, {})
        assert exc_info.value.status_code == 413

    @pytest.mark.asyncio
    async def test_query_offset(self):
        def handler(request):
            assert request.method == "HEAD"
            assert request.headers['Cache-Control'] == 'no-store'
            return httpx.Response(200, headers={'Upload-Offset': '40000000', 'Upload-Length': '104857600'})
        
        client = make_client(handler)
        
        assert await client.query_offset(ENDPOINT + "abc") == 40000000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_query_offset_gone(self, status_code):
        client = make_client(lambda request: httpx.Response(status_code))
        
        with pytest.raises(ResourceGoneException) as exc_info:
            await client.query_offset(ENDPOINT + "abc")
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, "abc", "-5"])
    async def test_invalid_offset_header(self, value):
        headers = {} if value is None else {'Upload-Offset': value}
        client = make_client(lambda request: httpx.Response(200, headers=headers))
        
        with pytest.raises(IngestProtocolException):
            await client.query_offset(ENDPOINT + "abc")

    @pytest.mark.asyncio
    async def test_transfer_chunk(self):
        seen = {}
        
        def handler(request):
            seen['method'] = request.method
            seen['headers'] = request.headers
            seen['body'] = request.content
            return httpx.Response(204, headers={'Upload-Offset': '8'})
        
        client = make_client(handler)
        reported = await client.transfer_chunk(ENDPOINT + "abc", 4, b"data")
        
        assert reported == 8
        assert seen['method'] == "PATCH"
        assert seen['headers']['Upload-Offset'] == "4"
        assert seen['headers']['Content-Type'] == "application/offset+octet-stream"
        assert seen['body'] == b"data"

    @pytest.mark.asyncio
    async def test_transfer_chunk_conflict(self):
        client = make_client(lambda request: httpx.Response(409))
        
        with pytest.raises(OffsetConflictException):
            await client.transfer_chunk(ENDPOINT + "abc", 0, b"x")

    @pytest.mark.asyncio
    async def test_server_error_keeps_status(self):
        client = make_client(lambda request: httpx.Response(503))
        
        with pytest.raises(IngestResponseException) as exc_info:
            await client.transfer_chunk(ENDPOINT + "abc", 0, b"x")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        
        client = make_client(handler)
        
        with pytest.raises(IngestTransportException):
            await client.transfer_chunk(ENDPOINT + "abc", 0, b"x")

    @pytest.mark.asyncio
    async def test_undecodable_response_is_transport_failure(self):
        def handler(request):
            raise httpx.DecodingError("malformed gzip body", request=request)
        
        client = make_client(handler)
        
        with pytest.raises(IngestTransportException):
            await client.transfer_chunk(ENDPOINT + "abc", 0, b"x")

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(204, headers={'Upload-Offset': '1'})
        
        client = make_client(handler, timeout_seconds=0.05)
        
        with pytest.raises(IngestTransportException):
            await client.transfer_chunk(ENDPOINT + "abc", 0, b"x")

    @pytest.mark.asyncio
    async def test_release(self):
        seen = []
        
        def handler(request):
            seen.append(request.method)
            return httpx.Response(204)
        
        client = make_client(handler)
        await client.release(ENDPOINT + "abc")
        await client.aclose()
        
        assert seen == ["DELETE"]
