"""
Ingest endpoint client.
Speaks the tus 1.0.0 resumable upload protocol over HTTP(S) with httpx.
"""
import asyncio
import base64
from dataclasses import dataclass
from typing import Dict, Iterable, Optional
from urllib.parse import urljoin
import httpx
from upload_engine.core import config
from upload_engine.core.exceptions import (
    IngestProtocolException,
    IngestResponseException,
    IngestTransportException,
    OffsetConflictException,
    ResourceGoneException,
    ValidationException
)

TUS_VERSION = "1.0.0"
OFFSET_CONTENT_TYPE = "application/offset+octet-stream"


@dataclass(frozen=True)
class CreatedResource:
    """Result of a successful create-upload request."""
    resource_handle: str
    committed_bytes: int = 0


def encode_metadata(metadata: Dict[str, str]) -> str:
    """
    Encode metadata as a tus Upload-Metadata header value.
    
    Raises:
        ValidationException: If a key is empty or contains a space or comma
    """
    pairs = []
    for key, value in metadata.items():
        if not key or ' ' in key or ',' in key:
            raise ValidationException(f"Invalid metadata key: {key!r}")
        encoded = base64.b64encode(str(value).encode('utf-8')).decode('ascii')
        pairs.append(f"{key} {encoded}")
    return ",".join(pairs)


class TusIngestClient:
    """Client for the remote ingest endpoint."""
    
    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.endpoint = endpoint or config.settings.ingest_endpoint
        self.timeout_seconds = timeout_seconds or config.settings.request_timeout_seconds
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        self._headers = {'Tus-Resumable': TUS_VERSION, **(headers or {})}
    
    async def create(self, total_bytes: int, metadata: Dict[str, str]) -> CreatedResource:
        """
        Allocate a remote upload resource.
        
        Args:
            total_bytes: Final size of the upload
            metadata: Descriptive fields sent once with the resource
            
        Returns:
            CreatedResource with the absolute resource URL
            
        Raises:
            IngestTransportException: On network failure or timeout
            IngestResponseException: If the endpoint does not answer 201
            IngestProtocolException: If the response carries no Location
        """
        headers = {'Upload-Length': str(total_bytes)}
        if metadata:
            headers['Upload-Metadata'] = encode_metadata(metadata)
        
        response = await self._send("POST", self.endpoint, headers=headers)
        self._check_status(response, expected=(201,))
        
        location = response.headers.get('Location')
        if not location:
            raise IngestProtocolException("Create response did not include a Location header")
        
        committed = 0
        if 'Upload-Offset' in response.headers:
            committed = self._parse_offset(response)
        
        return CreatedResource(resource_handle=urljoin(self.endpoint, location), committed_bytes=committed)
    
    async def query_offset(self, resource_handle: str) -> int:
        """Return the server's authoritative committed byte count."""
        response = await self._send("HEAD", resource_handle, headers={'Cache-Control': 'no-store'})
        self._check_status(response, expected=(200, 204))
        return self._parse_offset(response)
    
    async def transfer_chunk(self, resource_handle: str, offset: int, data: bytes) -> int:
        """
        Send one byte range starting at offset.
        
        Returns:
            The committed byte count the server reports after applying the chunk
            
        Raises:
            OffsetConflictException: If offset disagrees with the server
            ResourceGoneException: If the resource expired or was deleted
        """
        headers = {
            'Upload-Offset': str(offset),
            'Content-Type': OFFSET_CONTENT_TYPE
        }
        response = await self._send("PATCH", resource_handle, headers=headers, content=data)
        self._check_status(response, expected=(200, 204))
        return self._parse_offset(response)
    
    async def release(self, resource_handle: str) -> None:
        """Ask the endpoint to discard the resource (tus termination)."""
        response = await self._send("DELETE", resource_handle)
        self._check_status(response, expected=(200, 204))
    
    async def aclose(self) -> None:
        await self._client.aclose()
    
    async def _send(self, method: str, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> httpx.Response:
        """Issue a request bounded by the overall deadline."""
        request_headers = {**self._headers, **(headers or {})}
        try:
            return await asyncio.wait_for(
                self._client.request(method, url, headers=request_headers, **kwargs),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise IngestTransportException(
                f"{method} {url} exceeded its {self.timeout_seconds}s deadline"
            ) from e
        except httpx.RequestError as e:
            raise IngestTransportException(f"{method} {url} failed: {str(e)}") from e
    
    def _check_status(self, response: httpx.Response, expected: Iterable[int]) -> None:
        status_code = response.status_code
        if status_code in expected:
            return
        
        method = response.request.method
        if status_code == 409:
            raise OffsetConflictException(f"{method} rejected with an offset conflict", status_code)
        if status_code in (404, 410):
            raise ResourceGoneException(f"Upload resource no longer exists ({status_code})", status_code)
        raise IngestResponseException(f"{method} returned unexpected status {status_code}", status_code)
    
    def _parse_offset(self, response: httpx.Response) -> int:
        raw = response.headers.get('Upload-Offset')
        try:
            offset = int(raw)
        except (TypeError, ValueError) as e:
            raise IngestProtocolException(f"Invalid Upload-Offset header: {raw!r}") from e
        if offset < 0:
            raise IngestProtocolException(f"Negative Upload-Offset header: {raw!r}")
        return offset
