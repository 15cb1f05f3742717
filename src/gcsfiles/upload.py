"""Resumable upload session initiation against the GCS JSON API.

A session is opened with a POST to ``/storage/v1/b/{bucket}/o`` using
``uploadType=resumable``; the session URI comes back in the ``Location``
header.  The caller performs the chunked transfer against that URI.

Outgoing requests pass through a chain of request hooks, plain functions
taking an :class:`UploadRequest` and returning a (possibly new) one.  The
request is rebuilt from scratch and every hook is re-applied on every
attempt, so headers added by hooks are present on retries too.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import urllib.parse
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from gcsfiles import metrics

logger = logging.getLogger(__name__)

UPLOAD_CONTENT_LENGTH_HEADER = "X-Upload-Content-Length"
UPLOAD_CONTENT_TYPE_HEADER = "X-Upload-Content-Type"

# 408 Request Timeout, 429 Too Many Requests and 5xx are worth another try.
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class UploadRequest:
    """One outgoing session-initiation request."""

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UploadResponse:
    """The parts of the response the initiator cares about."""

    status: int
    location: str | None = None
    body: str = ""


RequestHook = Callable[[UploadRequest], UploadRequest]


class ResumableUploadError(Exception):
    """The storage API refused to open a session.

    Attributes:
        status: HTTP status of the final attempt (None for connection errors).
        body: Response body of the final attempt.
        attempts: Number of attempts made.
    """

    def __init__(
        self, message: str, status: int | None = None, body: str = "", attempts: int = 1
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.attempts = attempts


def upload_content_length_hook(metadata: Mapping[str, Any]) -> RequestHook:
    """Return a hook adding ``X-Upload-Content-Length`` from metadata.

    Existing headers are preserved. When ``contentLength`` is absent the
    hook returns requests unchanged.
    """
    content_length = metadata.get("contentLength")

    def hook(request: UploadRequest) -> UploadRequest:
        if content_length is None or content_length == "":
            return request
        headers = dict(request.headers)
        headers[UPLOAD_CONTENT_LENGTH_HEADER] = str(content_length)
        return dataclasses.replace(request, headers=headers)

    return hook


def apply_hooks(request: UploadRequest, hooks: Iterable[RequestHook]) -> UploadRequest:
    for hook in hooks:
        request = hook(request)
    return request


class ResumableUploadClient:
    """Opens resumable upload sessions, retrying transient failures.

    Attributes:
        upload_api_root: Base URL of the upload endpoint.
        max_retries: Retries after the first attempt.
        retry_delay: Base delay in seconds; doubled after each retry.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        token: Any,
        *,
        upload_api_root: str = "https://storage.googleapis.com/upload",
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        """Initialize the client.

        Args:
            session: Shared aiohttp session.
            token: Object with an async ``get()`` returning an OAuth2 access
                token (a ``gcloud.aio.auth.Token``).
            upload_api_root: Base URL of the upload endpoint.
            max_retries: Retries after the first attempt.
            retry_delay: Base backoff delay in seconds.
        """
        self._session = session
        self._token = token
        self.upload_api_root = upload_api_root.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def build_request(
        self,
        bucket: str,
        name: str,
        metadata: Mapping[str, Any],
        generation: int | None = None,
    ) -> UploadRequest:
        """Build the base initiation request, before hooks."""
        body = {k: v for k, v in metadata.items() if k != "contentLength"}
        body["name"] = name

        params = {"uploadType": "resumable", "name": name}
        if generation is not None:
            params["ifGenerationMatch"] = str(generation)

        headers = {"Content-Type": "application/json; charset=UTF-8"}
        if metadata.get("contentType"):
            headers[UPLOAD_CONTENT_TYPE_HEADER] = str(metadata["contentType"])

        return UploadRequest(
            method="POST",
            url=f"{self.upload_api_root}/storage/v1/b/{urllib.parse.quote(bucket, safe='')}/o",
            params=params,
            headers=headers,
            json=body,
        )

    async def _send(self, request: UploadRequest) -> UploadResponse:
        """Send one request and return its status, Location and body."""
        token = await self._token.get()
        headers = {"Authorization": f"Bearer {token}", **request.headers}
        async with self._session.request(
            request.method,
            request.url,
            params=request.params,
            headers=headers,
            json=request.json,
        ) as resp:
            body = await resp.text()
            return UploadResponse(
                status=resp.status,
                location=resp.headers.get("Location"),
                body=body,
            )

    async def _backoff(self, attempt: int) -> None:
        delay = self.retry_delay * (2 ** attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    async def create_uri(
        self,
        bucket: str,
        name: str,
        metadata: Mapping[str, Any],
        generation: int | None = None,
        hooks: Iterable[RequestHook] = (),
    ) -> str:
        """Open a resumable upload session and return its URI.

        Args:
            bucket: Target bucket.
            name: Target object name.
            metadata: Object metadata (contentType, md5Hash, ...).
            generation: Only create if the live generation matches.
            hooks: Request hooks applied, in order, on every attempt.

        Returns:
            The session URI.

        Raises:
            ResumableUploadError: On a non-retryable status, a missing
                Location header, or when retries are exhausted.
        """
        hooks = list(hooks)
        attempt = 0
        while True:
            request = apply_hooks(
                self.build_request(bucket, name, metadata, generation), hooks
            )
            try:
                response = await self._send(request)
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                metrics.record_upload_attempt("connection_error")
                if attempt >= self.max_retries:
                    raise ResumableUploadError(
                        f"Could not reach upload endpoint: {e}", attempts=attempt + 1
                    ) from e
                logger.warning(
                    "Upload initiation for %s/%s failed (%s), retrying",
                    bucket,
                    name,
                    e,
                    extra={"bucket": bucket, "object": name, "attempt": attempt + 1},
                )
                await self._backoff(attempt)
                attempt += 1
                continue

            if response.status in RETRYABLE_STATUSES and attempt < self.max_retries:
                metrics.record_upload_attempt("retry")
                logger.warning(
                    "Upload initiation for %s/%s returned %d, retrying",
                    bucket,
                    name,
                    response.status,
                    extra={
                        "bucket": bucket,
                        "object": name,
                        "attempt": attempt + 1,
                        "status": response.status,
                    },
                )
                await self._backoff(attempt)
                attempt += 1
                continue

            if response.status >= 400:
                metrics.record_upload_attempt("error")
                raise ResumableUploadError(
                    f"Upload initiation failed with status {response.status}",
                    status=response.status,
                    body=response.body,
                    attempts=attempt + 1,
                )

            if not response.location:
                metrics.record_upload_attempt("error")
                raise ResumableUploadError(
                    "Upload initiation response has no Location header",
                    status=response.status,
                    body=response.body,
                    attempts=attempt + 1,
                )

            metrics.record_upload_attempt("ok")
            return response.location
