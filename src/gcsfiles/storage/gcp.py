"""Google Cloud Storage client for gcsfiles.

Talks to the GCS JSON API through gcloud-aio-storage and a shared aiohttp
session authenticated with a gcloud-aio-auth Token.  Object metadata
lookups go through ``Storage.download_metadata``; bucket listing/creation,
ranged downloads and resumable session initiation are issued directly so
that pagination, response headers and request hooks stay under our
control.

Credentials are resolved via GCS Application Default Credentials
(GOOGLE_APPLICATION_CREDENTIALS, gcloud auth, metadata server) unless a
service account file is given.
"""

import logging
import urllib.parse
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

import aiohttp
from gcloud.aio.auth import Token
from gcloud.aio.storage import Storage

from gcsfiles.upload import RequestHook, ResumableUploadClient

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024

SCOPES = ["https://www.googleapis.com/auth/devstorage.full_control"]


def byte_range_header(start: int = 0, end: int | None = None) -> dict[str, str]:
    """Build the Range header for an inclusive byte range.

    A read from 0 with no end is a full-object read and gets no header.
    """
    if start <= 0 and end is None:
        return {}
    if end is None:
        return {"Range": f"bytes={start}-"}
    return {"Range": f"bytes={start}-{end}"}


class GCSReadStream:
    """ReadStream over an aiohttp response."""

    def __init__(self, response: aiohttp.ClientResponse) -> None:
        self._response = response
        self.status = response.status
        self.headers = dict(response.headers)

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.content.iter_chunked(_CHUNK_SIZE):
            yield chunk

    async def close(self) -> None:
        self._response.release()


class GCSClient:
    """StorageClient implementation for Google Cloud Storage.

    Attributes:
        project: The GCP project used for bucket listing and creation.
        service_file: Path to a service account JSON key, or "" for ADC.
        api_root: Base URL of the JSON API.
    """

    def __init__(
        self,
        project: str = "",
        service_file: str = "",
        api_root: str = "https://storage.googleapis.com",
        upload_api_root: str = "https://storage.googleapis.com/upload",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.project = project
        self.service_file = service_file
        self.api_root = api_root.rstrip("/")
        self.upload_api_root = upload_api_root
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._session: aiohttp.ClientSession | None = None
        self._token: Token | None = None
        self._storage: Storage | None = None
        self._uploads: ResumableUploadClient | None = None

    async def init(self) -> None:
        """Create the HTTP session, token and gcloud-aio-storage client."""
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        self._token = Token(
            service_file=self.service_file or None,
            session=self._session,
            scopes=SCOPES,
        )
        self._storage = Storage(
            token=self._token,
            session=self._session,
            api_root=self.api_root,
        )
        self._uploads = ResumableUploadClient(
            self._session,
            self._token,
            upload_api_root=self.upload_api_root,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
        )
        logger.info(
            "GCS client initialized: project=%s api_root=%s",
            self.project,
            self.api_root,
        )

    async def close(self) -> None:
        """Close the gcloud-aio clients and the shared session."""
        if self._storage is not None:
            await self._storage.close()
            self._storage = None
        if self._token is not None:
            await self._token.close()
            self._token = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._uploads = None

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._token.get()
        return {"Authorization": f"Bearer {token}"}

    async def list_buckets(
        self, query: Mapping[str, Any] | None = None
    ) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
        """List one page of buckets in the project."""
        params: dict[str, Any] = {"project": self.project}
        params.update(query or {})

        async with self._session.get(
            f"{self.api_root}/storage/v1/b",
            params=params,
            headers=await self._auth_headers(),
        ) as resp:
            resp.raise_for_status()
            content = await resp.json()

        items = content.get("items", [])
        page_token = content.get("nextPageToken")
        next_query = None
        if page_token:
            next_query = dict(query or {})
            next_query["pageToken"] = page_token
        return items, next_query

    async def create_bucket(
        self, name: str, metadata: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Insert a bucket into the project."""
        body = dict(metadata or {})
        body["name"] = name

        async with self._session.post(
            f"{self.api_root}/storage/v1/b",
            params={"project": self.project},
            json=body,
            headers=await self._auth_headers(),
        ) as resp:
            resp.raise_for_status()
            created = await resp.json()

        logger.info("Created bucket %s in project %s", name, self.project)
        return created

    async def get_object_metadata(self, bucket: str, name: str) -> dict[str, Any]:
        """Fetch object metadata via gcloud-aio-storage."""
        return await self._storage.download_metadata(bucket, name)

    async def open_read(
        self, bucket: str, name: str, start: int = 0, end: int | None = None
    ) -> GCSReadStream:
        """Start a (ranged) media download and return the open stream."""
        url = (
            f"{self.api_root}/download/storage/v1/b/"
            f"{urllib.parse.quote(bucket, safe='')}/o/"
            f"{urllib.parse.quote(name, safe='')}"
        )
        headers = await self._auth_headers()
        headers.update(byte_range_header(start, end))

        resp = await self._session.get(url, params={"alt": "media"}, headers=headers)
        try:
            resp.raise_for_status()
        except aiohttp.ClientResponseError:
            resp.release()
            raise
        return GCSReadStream(resp)

    async def create_resumable_upload(
        self,
        bucket: str,
        name: str,
        metadata: Mapping[str, Any],
        generation: int | None = None,
        hooks: Iterable[RequestHook] = (),
    ) -> str:
        """Open a resumable upload session via ResumableUploadClient."""
        return await self._uploads.create_uri(
            bucket, name, metadata, generation=generation, hooks=hooks
        )
