import asyncio
import io
import itertools
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import quote

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

# Ensure project root is on sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from filestore.core.config import get_settings
from filestore.core.errors import BackendOperationError, NotFoundError
from filestore.core.security import TokenValidator
from filestore.models import ListingEntry
from filestore.services import storage as storage_service

TEST_SIGNING_KEY = "test-signing-key"
TEST_ISSUER = "https://idp.test"
TEST_SCOPE = "FileStorageAPI"


class InMemoryStorage(storage_service.StorageService):
    """Object store double keeping every bucket in a dict."""

    def __init__(self) -> None:  # type: ignore[super-init-not-called]
        self.settings = get_settings()
        self.client = None
        self.buckets: dict[str, dict[str, tuple[bytes, str]]] = {}
        self.calls: list[str] = []
        self.failing_presign_keys: set[str] = set()
        self.presign_delays: dict[str, float] = {}
        self.in_flight_presigns = 0
        self.max_in_flight_presigns = 0
        self.cancelled_presigns: list[str] = []
        self.completed_presigns: list[str] = []
        self.listing_delay = 0.0
        self.open_listings = 0
        self._signatures = itertools.count(1)

    def add_bucket(self, name: str, objects: dict[str, bytes] | None = None) -> None:
        self.buckets[name] = {
            key: (data, "application/octet-stream") for key, data in (objects or {}).items()
        }

    async def bucket_exists(self, bucket):  # type: ignore[override]
        self.calls.append("bucket_exists")
        return bucket in self.buckets

    async def list_buckets(self):  # type: ignore[override]
        self.calls.append("list_buckets")
        return sorted(self.buckets)

    async def put_object(self, upload):  # type: ignore[override]
        self.calls.append("put_object")
        ref = upload.reference
        if ref.bucket not in self.buckets:
            raise NotFoundError("Upload object: not found.")
        data = upload.stream.read()
        assert len(data) == upload.size_bytes
        self.buckets[ref.bucket][ref.key] = (data, upload.content_type)

    async def open_object(self, ref):  # type: ignore[override]
        self.calls.append("open_object")
        objects = self.buckets.get(ref.bucket)
        if objects is None or ref.key not in objects:
            raise NotFoundError("Get object: not found.")
        data, content_type = objects[ref.key]
        return storage_service.ObjectStream(
            ref, io.BytesIO(data), content_length=len(data), content_type=content_type
        )

    async def iter_objects(self, bucket, prefix=None):  # type: ignore[override]
        self.calls.append("iter_objects")
        self.open_listings += 1
        try:
            for key in sorted(self.buckets[bucket]):
                if prefix and not key.startswith(prefix):
                    continue
                if self.listing_delay:
                    await asyncio.sleep(self.listing_delay)
                data, _ = self.buckets[bucket][key]
                yield ListingEntry(bucket=bucket, key=key, size_bytes=len(data), is_dir=key.endswith("/"))
        finally:
            self.open_listings -= 1

    async def presign_get(self, request):  # type: ignore[override]
        self.calls.append("presign_get")
        ref = request.reference
        self.in_flight_presigns += 1
        self.max_in_flight_presigns = max(self.max_in_flight_presigns, self.in_flight_presigns)
        try:
            await asyncio.sleep(self.presign_delays.get(ref.key, 0))
            if ref.key in self.failing_presign_keys:
                raise BackendOperationError("Presign object failed.", detail="signer unavailable")
        except asyncio.CancelledError:
            self.cancelled_presigns.append(ref.key)
            raise
        finally:
            self.in_flight_presigns -= 1
        self.completed_presigns.append(ref.key)
        signature = f"{next(self._signatures):08x}"
        return (
            f"https://storage.test/{ref.bucket}/{quote(ref.key)}"
            f"?X-Amz-Expires={request.expiry_seconds}&X-Amz-Signature={signature}"
        )

    def close(self) -> None:  # type: ignore[override]
        return None


def make_token(key: str = TEST_SIGNING_KEY, algorithm: str = "HS256", headers=None, **overrides) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "iss": TEST_ISSUER,
        "sub": "client-1",
        "client_id": "file-storage-client",
        "scope": [TEST_SCOPE],
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(overrides)
    claims = {name: value for name, value in claims.items() if value is not None}
    return jwt.encode(claims, key, algorithm=algorithm, headers=headers)


@pytest.fixture(scope="session", autouse=True)
def configure_environment():
    os.environ["ENV"] = "test"
    os.environ["DEBUG"] = "false"
    os.environ["S3_ACCESS_KEY"] = "test"
    os.environ["S3_SECRET_KEY"] = "test"
    os.environ["S3_ENDPOINT_URL"] = "http://minio.test:9000"
    os.environ["S3_REGION"] = "us-east-1"
    os.environ["AUTH_SIGNING_KEY"] = TEST_SIGNING_KEY
    os.environ["AUTH_ALGORITHMS"] = '["HS256"]'
    os.environ["AUTH_ALLOWED_ISSUERS"] = f'["{TEST_ISSUER}"]'
    os.environ["AUTH_ALLOWED_SCOPES"] = f'["{TEST_SCOPE}"]'
    os.environ["EXPOSE_ERROR_DETAILS"] = "false"
    get_settings.cache_clear()


@pytest.fixture
def settings_override(monkeypatch):
    """Set env vars for one test and rebuild cached settings around it."""

    def apply(**env: str) -> None:
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        get_settings.cache_clear()

    yield apply
    monkeypatch.undo()
    get_settings.cache_clear()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def app_instance(configure_environment, storage):
    from filestore.main import create_app

    app = create_app()

    # Setup state for tests, mimicking lifespan events
    app.state.storage = storage
    app.state.token_validator = TokenValidator(get_settings().token_validation)
    return app


@pytest_asyncio.fixture
async def client(app_instance):
    transport = ASGITransport(app=app_instance)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}
