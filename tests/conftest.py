"""Shared pytest fixtures for gcsfiles tests.

A single RSA key pair is generated per test session; signatures produced by
the code under test are verified against its public key.  Storage access is
replaced by ``FakeStorageClient``, an in-memory stand-in for the GCS JSON
API with paginated bucket listing.
"""

from typing import Any
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from gcsfiles.config import merge_config
from gcsfiles.credentials import StaticCredentialProvider
from gcsfiles.transport import GCSTransport

CLIENT_EMAIL = "files@test-project.iam.gserviceaccount.com"
BUCKET = "my-bucket"
# 2023-11-14T22:13:20Z
NOW = 1_700_000_000.0


def http_error(status: int, message: str = "") -> Exception:
    """Create an exception mimicking aiohttp.ClientResponseError."""
    exc = Exception(message or f"HTTP {status}")
    exc.status = status  # type: ignore[attr-defined]
    return exc


class FakeReadStream:
    """ReadStream yielding preset chunks, optionally failing mid-way."""

    def __init__(
        self,
        chunks: list[bytes],
        status: int = 200,
        headers: dict[str, str] | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.status = status
        self.headers = headers or {}
        self._chunks = chunks
        self._fail_after = fail_after
        self.closed = False

    async def iter_chunks(self):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise http_error(500, "connection reset")
            yield chunk

    async def close(self) -> None:
        self.closed = True


class FakeStorageClient:
    """In-memory StorageClient.

    ``pages`` is the bucket listing split into pages; buckets created through
    create_bucket() appear on the last page.  Page tokens are page indexes.
    """

    def __init__(self, pages: list[list[dict[str, Any]]] | None = None) -> None:
        self.pages = pages or [[]]
        self.created: list[dict[str, Any]] = []
        self.list_calls: list[dict[str, Any]] = []
        self.init = AsyncMock()
        self.close = AsyncMock()
        self.get_object_metadata = AsyncMock(return_value={"name": "obj"})
        self.open_read = AsyncMock(return_value=FakeReadStream([b"data"]))
        self.create_resumable_upload = AsyncMock(
            return_value="https://storage.googleapis.com/upload/session/1"
        )

    async def list_buckets(self, query=None):
        query = dict(query or {})
        self.list_calls.append(query)
        index = int(query.get("pageToken", 0))
        page = list(self.pages[index])
        if index == len(self.pages) - 1:
            page.extend(self.created)
        next_query = None
        if index + 1 < len(self.pages):
            next_query = {**query, "pageToken": str(index + 1)}
        return page, next_query

    async def create_bucket(self, name, metadata=None):
        resource = {"name": name, **(metadata or {})}
        self.created.append(resource)
        return resource


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def credentials(private_key_pem) -> StaticCredentialProvider:
    return StaticCredentialProvider(
        {"private_key": private_key_pem, "client_email": CLIENT_EMAIL}
    )


@pytest.fixture
def storage_client() -> FakeStorageClient:
    return FakeStorageClient(pages=[[{"name": BUCKET, "location": "US"}]])


@pytest.fixture
def make_transport(credentials, storage_client):
    """Build a GCSTransport over the fake client with a fixed clock."""

    def _make(client=None, creds=None, **overrides) -> GCSTransport:
        config = merge_config({"bucket": {"name": BUCKET}, **overrides})
        return GCSTransport(
            config,
            client=client or storage_client,
            credentials=creds or credentials,
            clock=lambda: NOW,
        )

    return _make


@pytest.fixture
async def transport(make_transport) -> GCSTransport:
    """A connected transport."""
    t = make_transport()
    await t.connect()
    return t
