"""Google Cloud Storage file transport.

``GCSTransport`` lets an application treat one GCS bucket as a generic
file-transport backend: it resolves (or creates) the bucket on
``connect()``, issues V2 signed URLs, opens resumable upload sessions,
streams downloads to caller-supplied handlers and checks existence.

``connect()`` must complete before any other operation; the resolved
bucket and the signing credentials are written once and read-only after
that.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from gcsfiles import metrics
from gcsfiles.config import GCSFilesConfig, merge_config
from gcsfiles.credentials import CredentialProvider, ServiceAccountFileProvider
from gcsfiles.errors import (
    ConfigurationError,
    GCSFilesError,
    NotConnectedError,
    ValidationError,
    _is_not_found,
    normalize_transport_error,
)
from gcsfiles.signing import Signer, SigningRequest
from gcsfiles.storage.backend import StorageClient
from gcsfiles.storage.gcp import GCSClient
from gcsfiles.upload import upload_content_length_hook

logger = logging.getLogger(__name__)

REQUIRED_UPLOAD_METADATA = ("contentType", "md5Hash")


@dataclass(frozen=True)
class BucketDescriptor:
    """A resolved bucket.

    Attributes:
        name: The bucket name.
        metadata: The bucket resource as returned by the storage API.
    """

    name: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class FileTransport(Protocol):
    """The generic file-transport contract."""

    async def connect(self) -> Any:
        ...

    async def close(self) -> None:
        ...

    async def create_signed_url(
        self,
        action: str,
        resource: str,
        expires: int | float | datetime,
        **options: Any,
    ) -> str:
        ...

    async def init_resumable_upload(
        self,
        filename: str,
        metadata: Mapping[str, Any],
        generation: int | None = None,
    ) -> str:
        ...

    def read_file(
        self,
        filename: str,
        *,
        on_error: Callable[..., Any],
        on_response: Callable[..., Any],
        on_data: Callable[..., Any],
        on_end: Callable[..., Any],
        start: int = 0,
        end: int | None = None,
    ) -> "asyncio.Task[None]":
        ...

    async def exists(self, filename: str) -> bool:
        ...


async def _dispatch(handler: Callable[..., Any], *args: Any) -> None:
    """Call a handler that may be a plain function or a coroutine function."""
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


def _validate_range(start: int, end: int | None) -> None:
    if start < 0:
        raise ValidationError(f"Range start must be >= 0, got {start}")
    if end is not None and end < start:
        raise ValidationError(f"Range end {end} is before start {start}")


class GCSTransport:
    """File transport backed by a single Google Cloud Storage bucket.

    Attributes:
        config: The effective configuration.
        log: Logger used for transport events.
    """

    def __init__(
        self,
        config: GCSFilesConfig | Mapping[str, Any] | None = None,
        *,
        client: StorageClient | None = None,
        credentials: CredentialProvider | None = None,
        log: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the transport.

        Args:
            config: A GCSFilesConfig, or a partial mapping merged over the
                defaults.
            client: Storage client; defaults to a GCSClient built from config.
            credentials: Signing credential provider; defaults to the
                configured service account file.
            log: Logger for transport events. Defaults to the module
                logger, which is silent unless the application configures
                logging.
            clock: Returns the current time in epoch seconds.
        """
        if not isinstance(config, GCSFilesConfig):
            config = merge_config(dict(config or {}))
        self.config = config
        self.log = log or logger

        if client is None:
            client = GCSClient(
                project=config.gcs.project,
                service_file=config.gcs.service_file,
                api_root=config.gcs.api_root,
                upload_api_root=config.gcs.upload_api_root,
                timeout=config.gcs.timeout,
                max_retries=config.upload.max_retries,
                retry_delay=config.upload.retry_delay,
            )
        self._client = client

        if credentials is None:
            credentials = ServiceAccountFileProvider(config.gcs.service_file)
        self._signer = Signer(credentials, cname=config.bucket.cname, clock=clock)

        self._bucket: BucketDescriptor | None = None

        if config.metrics.enabled:
            metrics.init_metrics()

    # -- bucket ------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._bucket is not None

    def _active_bucket(self, operation: str) -> BucketDescriptor:
        if self._bucket is None:
            raise NotConnectedError(operation)
        return self._bucket

    @property
    def bucket(self) -> BucketDescriptor:
        """The active bucket. Raises NotConnectedError before connect()."""
        return self._active_bucket("bucket")

    async def ensure_bucket(
        self, query: Mapping[str, Any] | None = None
    ) -> BucketDescriptor:
        """Find the configured bucket, creating it if no listing page has it.

        Pages are walked one at a time in order; creation happens only
        after the last page.

        Args:
            query: Initial listing parameters.

        Returns:
            The existing or newly created bucket.

        Raises:
            TransportError: If listing or creation fails.
        """
        needle = self.config.bucket.name
        try:
            while True:
                buckets, next_query = await self._client.list_buckets(query)
                for bucket in buckets:
                    if bucket.get("name") == needle:
                        self.log.debug("Found existing bucket %s", needle)
                        return BucketDescriptor(name=needle, metadata=bucket)
                if not next_query:
                    break
                query = next_query

            created = await self._client.create_bucket(
                needle, dict(self.config.bucket.metadata)
            )
        except GCSFilesError:
            raise
        except Exception as e:
            metrics.record_operation("ensure_bucket", "error")
            raise normalize_transport_error(e) from e

        self.log.info("Created bucket %s", needle, extra={"bucket": needle})
        metrics.record_operation("create_bucket", "ok")
        return BucketDescriptor(name=needle, metadata=created or {"name": needle})

    async def connect(self) -> BucketDescriptor:
        """Initialize the client and resolve the active bucket.

        Callers must not run connect() concurrently on one transport.
        """
        if self._bucket is not None:
            return self._bucket
        try:
            await self._client.init()
        except GCSFilesError:
            raise
        except Exception as e:
            raise normalize_transport_error(e) from e

        self._bucket = await self.ensure_bucket()
        self.log.info(
            "Connected to bucket %s", self._bucket.name, extra={"bucket": self._bucket.name}
        )
        return self._bucket

    async def close(self) -> None:
        """Release the storage client's resources."""
        await self._client.close()

    # -- signed URLs -------------------------------------------------------

    async def create_signed_url(
        self,
        action: str,
        resource: str,
        expires: int | float | datetime,
        *,
        content_type: str | None = None,
        md5: str | None = None,
        extension_headers: Mapping[str, Any] | None = None,
        response_type: str | None = None,
        response_disposition: str | None = None,
        prompt_save_as: str | None = None,
        generation: int | None = None,
    ) -> str:
        """Create a V2 signed URL for an object in the active bucket.

        Args:
            action: "read", "write" or "delete".
            resource: Object name within the bucket.
            expires: Expiry as epoch milliseconds or a datetime.
            content_type: Content-Type the client must send. Omit for downloads.
            md5: Base64 MD5 digest the client must send.
            extension_headers: x-goog-* headers the client must send.
            response_type: Overrides the Content-Type of the response.
            response_disposition: Overrides Content-Disposition of the response.
            prompt_save_as: Download filename; ignored if response_disposition
                is given.
            generation: Pin the URL to an object generation.

        Returns:
            The signed URL.

        Raises:
            NotConnectedError: Before connect().
            ValidationError: If ``expires`` is not in the future.
            ConfigurationError: On an unknown action or empty resource.
            SigningError: If credentials are unusable or signing fails.
        """
        bucket = self._active_bucket("create_signed_url")
        request = SigningRequest(
            action=action,
            bucket=bucket.name,
            resource=resource,
            expires=expires,
            content_md5=md5,
            content_type=content_type,
            extension_headers=dict(extension_headers or {}),
            response_type=response_type,
            response_disposition=response_disposition,
            prompt_save_as=prompt_save_as,
            generation=generation,
        )
        try:
            url = await self._signer.sign(request)
        except GCSFilesError as e:
            metrics.record_operation("create_signed_url", e.code)
            raise
        metrics.record_signed_url(action)
        metrics.record_operation("create_signed_url", "ok")
        return url

    # -- uploads -----------------------------------------------------------

    async def init_resumable_upload(
        self,
        filename: str,
        metadata: Mapping[str, Any],
        generation: int | None = None,
    ) -> str:
        """Open a resumable upload session for ``filename``.

        Args:
            filename: Target object name.
            metadata: Object metadata. ``contentType`` and ``md5Hash`` are
                required; ``contentLength`` (sent as X-Upload-Content-Length)
                and ``contentEncoding`` are optional.
            generation: Only create if the live generation matches.

        Returns:
            The session URI.

        Raises:
            NotConnectedError: Before connect().
            ConfigurationError: If required metadata is missing.
            TransportError: If the storage API refuses the session.
        """
        bucket = self._active_bucket("init_resumable_upload")
        missing = [key for key in REQUIRED_UPLOAD_METADATA if not metadata.get(key)]
        if missing:
            raise ConfigurationError(
                f"Resumable upload metadata must include {', '.join(missing)}"
            )

        hooks = [upload_content_length_hook(metadata)]
        try:
            uri = await self._client.create_resumable_upload(
                bucket.name,
                filename,
                dict(metadata),
                generation=generation,
                hooks=hooks,
            )
        except GCSFilesError:
            metrics.record_operation("init_resumable_upload", "error")
            raise
        except Exception as e:
            metrics.record_operation("init_resumable_upload", "error")
            raise normalize_transport_error(e) from e

        self.log.info(
            "Opened resumable upload for %s/%s",
            bucket.name,
            filename,
            extra={"bucket": bucket.name, "object": filename},
        )
        metrics.record_operation("init_resumable_upload", "ok")
        return uri

    # -- downloads ---------------------------------------------------------

    def read_file(
        self,
        filename: str,
        *,
        on_error: Callable[..., Any],
        on_response: Callable[..., Any],
        on_data: Callable[..., Any],
        on_end: Callable[..., Any],
        start: int = 0,
        end: int | None = None,
    ) -> "asyncio.Task[None]":
        """Stream an object to caller-supplied handlers.

        Must be called from a running event loop. Handlers may be plain
        functions or coroutine functions:

        * ``on_error(TransportError)`` on a storage failure (no further events),
        * ``on_response({"status": int, "headers": dict})`` once,
        * ``on_data(bytes)`` for each chunk, as received,
        * ``on_end()`` after the last chunk.

        Args:
            filename: Object name.
            start: First byte offset (default 0).
            end: Last byte offset, inclusive (default: end of object).

        Returns:
            The task pumping the stream; await it to wait for completion or
            cancel it to abort the download.

        Raises:
            NotConnectedError: Before connect().
            ValidationError: On a negative start or an end before start.
        """
        bucket = self._active_bucket("read_file")
        _validate_range(start, end)
        return asyncio.get_running_loop().create_task(
            self._pump(
                bucket.name, filename, start, end, on_error, on_response, on_data, on_end
            )
        )

    async def _pump(
        self,
        bucket: str,
        filename: str,
        start: int,
        end: int | None,
        on_error: Callable[..., Any],
        on_response: Callable[..., Any],
        on_data: Callable[..., Any],
        on_end: Callable[..., Any],
    ) -> None:
        try:
            stream = await self._client.open_read(bucket, filename, start=start, end=end)
        except Exception as e:
            metrics.record_operation("read_file", "error")
            await _dispatch(on_error, normalize_transport_error(e))
            return

        try:
            await _dispatch(on_response, {"status": stream.status, "headers": stream.headers})
            chunks = stream.iter_chunks().__aiter__()
            while True:
                try:
                    chunk = await chunks.__anext__()
                except StopAsyncIteration:
                    break
                except Exception as e:
                    metrics.record_operation("read_file", "error")
                    await _dispatch(on_error, normalize_transport_error(e))
                    return
                metrics.record_bytes_read(len(chunk))
                await _dispatch(on_data, chunk)
        finally:
            await stream.close()

        metrics.record_operation("read_file", "ok")
        await _dispatch(on_end)

    async def exists(self, filename: str) -> bool:
        """Tell whether ``filename`` exists in the active bucket.

        Raises:
            NotConnectedError: Before connect().
            TransportError: On any failure other than "not found".
        """
        bucket = self._active_bucket("exists")
        try:
            await self._client.get_object_metadata(bucket.name, filename)
        except Exception as e:
            if _is_not_found(e):
                return False
            if isinstance(e, GCSFilesError):
                raise
            raise normalize_transport_error(e) from e
        return True
