"""Abstract storage client protocol for gcsfiles."""

from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any, Protocol

from gcsfiles.upload import RequestHook


class ReadStream(Protocol):
    """An open object download.

    Attributes:
        status: HTTP status of the response (200, or 206 for a range).
        headers: Response headers.
    """

    status: int
    headers: Mapping[str, str]

    def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the body as it arrives."""
        ...

    async def close(self) -> None:
        """Release the underlying connection."""
        ...


class StorageClient(Protocol):
    """Protocol defining the object storage client the transport wraps.

    Methods raise the client's own exceptions; the transport normalizes
    them into TransportError.
    """

    async def init(self) -> None:
        """Open sessions and authenticate."""
        ...

    async def close(self) -> None:
        """Release resources held by the client."""
        ...

    async def list_buckets(
        self, query: Mapping[str, Any] | None = None
    ) -> tuple[list[dict[str, Any]], dict[str, Any] | None]:
        """List one page of buckets.

        Args:
            query: Listing parameters, including ``pageToken`` for later pages.

        Returns:
            The bucket resources on this page and the query for the next
            page, or None when this is the last page.
        """
        ...

    async def create_bucket(
        self, name: str, metadata: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Create a bucket and return its resource."""
        ...

    async def get_object_metadata(self, bucket: str, name: str) -> dict[str, Any]:
        """Fetch an object's metadata. Raises a 404 error if it is missing."""
        ...

    async def open_read(
        self, bucket: str, name: str, start: int = 0, end: int | None = None
    ) -> ReadStream:
        """Open a download of bytes ``start`` through ``end`` (inclusive).

        ``end=None`` reads to the end of the object.
        """
        ...

    async def create_resumable_upload(
        self,
        bucket: str,
        name: str,
        metadata: Mapping[str, Any],
        generation: int | None = None,
        hooks: Iterable[RequestHook] = (),
    ) -> str:
        """Open a resumable upload session and return its URI."""
        ...
