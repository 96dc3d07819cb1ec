"""
Shared test fixtures and utilities.
"""
import asyncio
import io
import pytest
from upload_engine.core.exceptions import OffsetConflictException, ResourceGoneException
from upload_engine.repositories.ingest_client import CreatedResource
from upload_engine.repositories.memory_session_repository import InMemorySessionRepository
from upload_engine.repositories.session_store import SessionStore

MiB = 1024 * 1024


class SizedFile(io.RawIOBase):
    """Seekable stream of zero bytes that never holds the whole file in memory."""
    
    def __init__(self, size: int):
        self.size = size
        self.position = 0
    
    def readable(self):
        return True
    
    def seekable(self):
        return True
    
    def tell(self):
        return self.position
    
    def seek(self, offset, whence=io.SEEK_SET):
        if whence == io.SEEK_SET:
            self.position = offset
        elif whence == io.SEEK_CUR:
            self.position += offset
        else:
            self.position = self.size + offset
        return self.position
    
    def read(self, size=-1):
        remaining = self.size - self.position
        count = remaining if size is None or size < 0 else min(size, remaining)
        self.position += count
        return bytes(count)


class FakeIngestEndpoint:
    """In-memory stand-in for the tus ingest endpoint."""
    
    def __init__(self):
        self.offsets = {}
        self.totals = {}
        self.create_calls = []
        self.chunk_requests = []
        self.released = []
        self.transfer_failures = []
        self.query_failures = []
        self.create_error = None
        self.release_error = None
        self.max_accept = None
        self.gate = None
    
    def add_resource(self, handle: str, total_bytes: int, committed: int = 0) -> None:
        self.offsets[handle] = committed
        self.totals[handle] = total_bytes
    
    async def create(self, total_bytes, metadata):
        self.create_calls.append((total_bytes, dict(metadata)))
        if self.create_error:
            raise self.create_error
        handle = f"https://ingest.test/files/{len(self.create_calls)}"
        self.add_resource(handle, total_bytes)
        return CreatedResource(resource_handle=handle, committed_bytes=0)
    
    async def query_offset(self, resource_handle):
        if self.query_failures:
            raise self.query_failures.pop(0)
        if resource_handle not in self.offsets:
            raise ResourceGoneException("Upload resource no longer exists (404)", 404)
        return self.offsets[resource_handle]
    
    async def transfer_chunk(self, resource_handle, offset, data):
        self.chunk_requests.append((offset, len(data)))
        if self.gate is not None:
            await self.gate.wait()
        if self.transfer_failures:
            raise self.transfer_failures.pop(0)
        if resource_handle not in self.offsets:
            raise ResourceGoneException("Upload resource no longer exists (404)", 404)
        if offset != self.offsets[resource_handle]:
            raise OffsetConflictException("PATCH rejected with an offset conflict", 409)
        accepted = len(data) if self.max_accept is None else min(len(data), self.max_accept)
        self.offsets[resource_handle] += accepted
        return self.offsets[resource_handle]
    
    async def release(self, resource_handle):
        self.released.append(resource_handle)
        if self.release_error:
            raise self.release_error
        self.offsets.pop(resource_handle, None)
    
    async def aclose(self):
        pass


class RecordingSleep:
    """Async sleep replacement that records requested delays."""
    
    def __init__(self):
        self.delays = []
    
    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


class TickingClock:
    """Monotonic clock advancing by a fixed step on every read."""
    
    def __init__(self, step: float = 1.0):
        self.step = step
        self.now = 0.0
    
    def __call__(self):
        self.now += self.step
        return self.now


async def wait_until(predicate, timeout: float = 2.0):
    """Poll predicate while letting background tasks run."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def endpoint():
    return FakeIngestEndpoint()


@pytest.fixture
def repository():
    return InMemorySessionRepository()


@pytest.fixture
def session_store(repository):
    return SessionStore(repository, min_write_interval=0)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
