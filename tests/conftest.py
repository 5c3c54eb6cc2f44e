"""
Pytest configuration and shared fixtures for PinDrop tests.

Provides:
- Mocked asyncpg connection/manager fixtures for the CRUD managers
- In-memory bucket and file managers, blob store and challenge verifier
- A fully wired AccessService over the in-memory collaborators
- A FastAPI TestClient with prebuilt services
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import Mock, AsyncMock

import pytest
from fastapi.testclient import TestClient

from shared.auth.jwt_service import JWTService
from shared.models.bucket import Bucket
from shared.models.credential import LegacyPlainCredential, ProtectedCredential
from shared.models.file import File
from shared.models.owner import Owner
from shared.security.attempt_governor import AttemptGovernor
from shared.security.pin_codec import PinCodec
from shared.services.access_service import AccessService
from shared.services.analytics import AnalyticsSink
from shared.services.blob_store import BlobStore, BlobStoreError, StoredBlob
from shared.services.bucket_cache import BucketCache
from shared.services.challenge import ChallengeVerifier
from shared.services.errors import (
    BackendUnavailableError,
    BucketNotFoundError,
    FileObjectNotFoundError,
)
from shared.services.file_service import FileService
from shared.services.lifecycle_monitor import BucketLifecycleMonitor
from shared.services.storage_accountant import StorageAccountant


logging.basicConfig(level=logging.DEBUG)

TEST_ENCRYPTION_SECRET = "test-pin-encryption-secret"
TEST_HMAC_SECRET = "test-pin-hmac-secret"
TEST_JWT_SECRET = "test-jwt-secret-key"
TEST_API_KEY = "test-api-key"

MB = 1024 * 1024


# Environment

@pytest.fixture
def test_environment(monkeypatch, tmp_path):
    """Minimal valid environment; .env files are read from an empty temp dir."""
    env = {
        "PIN_ENCRYPTION_SECRET": TEST_ENCRYPTION_SECRET,
        "PIN_HMAC_SECRET": TEST_HMAC_SECRET,
        "JWT_SECRET_KEY": TEST_JWT_SECRET,
        "API_KEY": TEST_API_KEY,
        "POSTGRES_DB": "pindrop_test",
        "POSTGRES_USER": "postgres",
        "POSTGRES_PASSWORD": "postgres",
    }
    for key in ("ENV", "DATABASE_URL", "DOCKER_ENV", "RECAPTCHA_SECRET_KEY"):
        monkeypatch.delenv(key, raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    monkeypatch.chdir(tmp_path)
    return env


# Database mocks

class MockTransactionContext:
    """Mock async context manager for database transactions."""
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


class MockAcquireContext:
    """Mock async context manager for database connections."""
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def mock_db_connection():
    """Mock database connection with async methods."""
    connection = AsyncMock()
    connection.fetchrow = AsyncMock()
    connection.execute = AsyncMock()
    connection.fetch = AsyncMock()
    connection.fetchval = AsyncMock()
    return connection


@pytest.fixture
def mock_db_transaction(mock_db_connection):
    """Mock database transaction context manager."""
    return MockTransactionContext(mock_db_connection)


@pytest.fixture
def mock_database_manager(mock_db_connection, mock_db_transaction):
    """Mock database manager with acquire and transaction methods."""
    manager = Mock()
    manager.acquire.return_value = MockAcquireContext(mock_db_connection)
    manager.transaction.return_value = mock_db_transaction
    return manager


# In-memory collaborators

class InMemoryFileManager:
    """FileCRUDManager stand-in keeping records in a dict."""

    def __init__(self):
        self.files: Dict[uuid.UUID, File] = {}
        self.bucket_manager: Optional["InMemoryBucketManager"] = None
        self.fail_creates = False
        self.fail_increments = False
        self.download_increments: List[uuid.UUID] = []

    async def create_file(self, file: File) -> File:
        if self.fail_creates:
            raise BackendUnavailableError("Document store is unavailable")
        self.files[file.id] = file
        return file

    async def get_file(self, bucket_id, file_id) -> File:
        file = self.files.get(file_id)
        if file is None or file.bucket_id != bucket_id or not file.is_active:
            raise FileObjectNotFoundError()
        return file

    async def list_for_bucket(self, bucket_id) -> List[File]:
        return [f for f in self.files.values() if f.bucket_id == bucket_id and f.is_active]

    async def list_all_for_bucket(self, bucket_id) -> List[File]:
        return [f for f in self.files.values() if f.bucket_id == bucket_id]

    async def rename_file(self, bucket_id, file_id, new_name) -> File:
        file = await self.get_file(bucket_id, file_id)
        file.name = new_name
        return file

    async def soft_delete(self, bucket_id, file_id) -> None:
        file = await self.get_file(bucket_id, file_id)
        file.soft_delete()

    async def delete_file(self, bucket_id, file_id) -> None:
        file = self.files.get(file_id)
        if file is None or file.bucket_id != bucket_id:
            raise FileObjectNotFoundError()
        del self.files[file_id]

    async def increment_download(self, file_id) -> None:
        if self.fail_increments:
            raise BackendUnavailableError("Document store is unavailable")
        self.download_increments.append(file_id)

    async def bucket_stats(self, bucket_id):
        active = await self.list_for_bucket(bucket_id)
        return len(active), sum(f.size for f in active)

    async def total_active_bytes_for_owner(self, owner_id: str) -> int:
        buckets = self.bucket_manager.buckets if self.bucket_manager else {}
        return sum(
            f.size for f in self.files.values()
            if f.is_active
            and f.bucket_id in buckets
            and buckets[f.bucket_id].owner_id == owner_id
            and buckets[f.bucket_id].is_active
        )


class InMemoryBucketManager:
    """BucketCRUDManager stand-in keeping records in a dict."""

    def __init__(self, file_manager: InMemoryFileManager):
        self.buckets: Dict[uuid.UUID, Bucket] = {}
        self.file_manager = file_manager
        file_manager.bucket_manager = self
        self.fail_creates = 0
        self.fail_purges = set()
        self.create_calls = 0

    def add(self, bucket: Bucket) -> Bucket:
        if bucket.id is None:
            bucket.id = uuid.uuid4()
        self.buckets[bucket.id] = bucket
        return bucket

    async def create_bucket(self, bucket: Bucket) -> Bucket:
        self.create_calls += 1
        if self.fail_creates:
            self.fail_creates -= 1
            raise BackendUnavailableError("Document store is unavailable")
        return self.add(bucket)

    async def get_bucket(self, bucket_id) -> Bucket:
        if bucket_id not in self.buckets:
            raise BucketNotFoundError()
        return self.buckets[bucket_id]

    async def find_active_by_pin_code(self, pin_code: str) -> Optional[Bucket]:
        for bucket in self.buckets.values():
            credential = bucket.credential
            if bucket.is_active and isinstance(credential, LegacyPlainCredential) and credential.pin_code == pin_code:
                return bucket
        return None

    async def list_active_by_hashed_pin(self, hashed_pin: str) -> List[Bucket]:
        return sorted(
            (
                b for b in self.buckets.values()
                if b.is_active
                and isinstance(b.credential, ProtectedCredential)
                and b.credential.hashed_pin == hashed_pin
            ),
            key=lambda b: b.created_at
        )

    async def list_by_owner(self, owner_id: str, include_inactive: bool = False) -> List[Bucket]:
        return [
            b for b in self.buckets.values()
            if b.owner_id == owner_id and (include_inactive or b.is_active)
        ]

    async def list_shared_with(self, email: str) -> List[Bucket]:
        return [b for b in self.buckets.values() if email in b.collaborators and b.is_active]

    async def list_expired(self, created_before: datetime) -> List[Bucket]:
        return [b for b in self.buckets.values() if b.is_active and b.created_at <= created_before]

    async def list_inactive_since(self, updated_before: datetime) -> List[Bucket]:
        return [b for b in self.buckets.values() if not b.is_active and b.updated_at <= updated_before]

    async def update_bucket(self, bucket: Bucket) -> Bucket:
        if bucket.id not in self.buckets:
            raise BucketNotFoundError()
        bucket.updated_at = datetime.now(timezone.utc)
        self.buckets[bucket.id] = bucket
        return bucket

    async def update_stats(self, bucket_id, file_count: int, storage_used: int) -> None:
        bucket = self.buckets[bucket_id]
        bucket.file_count = file_count
        bucket.storage_used = storage_used

    async def purge(self, bucket_id) -> int:
        if bucket_id in self.fail_purges:
            raise BackendUnavailableError("Document store is unavailable")
        removed = [fid for fid, f in self.file_manager.files.items() if f.bucket_id == bucket_id]
        for file_id in removed:
            del self.file_manager.files[file_id]
        self.buckets.pop(bucket_id, None)
        return len(removed)


class FakeBlobStore(BlobStore):
    """Blob store keeping objects in memory, with injectable failures."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.failing_puts = set()
        self.failing_deletes = set()
        self.hanging_deletes = set()
        self.deleted: List[str] = []

    async def put(self, path: str, data: bytes, content_type: str) -> StoredBlob:
        if any(marker in path for marker in self.failing_puts):
            raise BlobStoreError(f"Failed to store {path}")
        self.objects[path] = data
        return StoredBlob(location=path, url=f"https://blobs.test/{path}")

    async def delete(self, path: str) -> None:
        if path in self.hanging_deletes:
            await asyncio.sleep(10)
        if path in self.failing_deletes:
            raise BlobStoreError(f"Failed to delete {path}")
        self.objects.pop(path, None)
        self.deleted.append(path)


class FakeChallengeVerifier(ChallengeVerifier):

    def __init__(self, valid_tokens=("valid-token",)):
        self.valid_tokens = set(valid_tokens)
        self.calls: List[str] = []

    async def verify(self, token: str, remote_ip: Optional[str] = None) -> bool:
        self.calls.append(token)
        return token in self.valid_tokens


class RecordingAnalyticsSink(AnalyticsSink):

    def __init__(self):
        self.events = []

    def log_event(self, name, params=None):
        self.events.append((name, dict(params or {})))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class FakeClock:
    """Monotonic seconds that tests advance by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def codec():
    return PinCodec(TEST_ENCRYPTION_SECRET, TEST_HMAC_SECRET)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def challenge_verifier():
    return FakeChallengeVerifier()


@pytest.fixture
def governor(challenge_verifier, clock):
    return AttemptGovernor(challenge_verifier, clock=clock)


@pytest.fixture
def file_manager():
    return InMemoryFileManager()


@pytest.fixture
def bucket_manager(file_manager):
    return InMemoryBucketManager(file_manager)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def analytics_sink():
    return RecordingAnalyticsSink()


@pytest.fixture
def bucket_cache():
    return BucketCache(ttl_seconds=60)


@pytest.fixture
def file_service(file_manager, bucket_manager, blob_store):
    return FileService(file_manager, bucket_manager, blob_store)


@pytest.fixture
def monitor(bucket_manager, file_service, bucket_cache):
    return BucketLifecycleMonitor(
        bucket_manager, file_service, cache=bucket_cache, blob_timeout_seconds=0.05
    )


@pytest.fixture
def accountant(file_manager):
    return StorageAccountant(file_manager, max_total_bytes=30 * MB, max_file_bytes=25 * MB)


@pytest.fixture
def access_service(codec, governor, bucket_manager, file_service, monitor, accountant,
                   bucket_cache, analytics_sink):
    return AccessService(
        codec=codec,
        governor=governor,
        bucket_manager=bucket_manager,
        file_service=file_service,
        monitor=monitor,
        accountant=accountant,
        cache=bucket_cache,
        analytics_sink=analytics_sink,
        create_retry_delay=0
    )


@pytest.fixture
def owner():
    return Owner(user_id="owner-1", email="owner@example.com", name="Owner One")


@pytest.fixture
def other_owner():
    return Owner(user_id="owner-2", email="other@example.com", name="Owner Two")


# HTTP layer

@pytest.fixture
def jwt_service():
    return JWTService(secret_key=TEST_JWT_SECRET, issuer="pindrop")


@pytest.fixture
def auth_headers(jwt_service, owner):
    token = jwt_service.generate_access_token(
        {"user_id": owner.user_id, "email": owner.email, "name": owner.name}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(jwt_service, other_owner):
    token = jwt_service.generate_access_token(
        {"user_id": other_owner.user_id, "email": other_owner.email}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_client(access_service, jwt_service):
    """TestClient over the in-memory service graph; the sweep task is disabled."""
    from backend.dependencies import Services
    from backend.main import create_app

    services = Services(
        access=access_service,
        jwt_service=jwt_service,
        api_key=TEST_API_KEY,
        sweep_enabled=False
    )
    return TestClient(create_app(services))
