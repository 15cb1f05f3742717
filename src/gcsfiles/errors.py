"""Error definitions for gcsfiles."""

from typing import Any


class GCSFilesError(Exception):
    """Base error with a machine-readable code and message.

    Attributes:
        code: Short error code string (e.g. "SigningError", "TransportError").
        message: Human-readable error description.
        extra_fields: Additional key-value pairs describing the failure.
    """

    code = "GCSFilesError"

    def __init__(
        self,
        message: str,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Error description.
            extra_fields: Optional extra fields copied from the cause.
        """
        super().__init__(message)
        self.message = message
        self.extra_fields = extra_fields or {}


# -- Taxonomy ------------------------------------------------------------------


class ConfigurationError(GCSFilesError):
    """Invalid configuration or arguments. Fatal, never retried."""

    code = "ConfigurationError"


class NotConnectedError(ConfigurationError):
    """An operation needing the active bucket was called before connect()."""

    code = "NotConnected"

    def __init__(self, operation: str = "") -> None:
        message = "Transport is not connected; call connect() first"
        if operation:
            message = f"{message} (before {operation})"
        super().__init__(message)


class SigningError(GCSFilesError):
    """Credential retrieval or cryptographic failure while signing."""

    code = "SigningError"


class SigningConfigurationError(SigningError, ConfigurationError):
    """Credentials are present but lack private_key or client_email."""

    code = "SigningConfigurationError"

    def __init__(self, message: str = "") -> None:
        super().__init__(
            message
            or (
                "Could not find a `private_key` or `client_email`. "
                "Please verify you are authorized with these credentials available."
            )
        )


class TransportError(GCSFilesError):
    """Any failure reported by the underlying storage client.

    Attributes:
        status: HTTP status of the failed call, when known.
    """

    code = "TransportError"

    def __init__(
        self,
        message: str,
        status: int | None = None,
        extra_fields: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, extra_fields=extra_fields)
        self.status = status


class ValidationError(GCSFilesError):
    """Rejected input, detected before any I/O."""

    code = "ValidationError"


# -- Helpers -------------------------------------------------------------------


def normalize_transport_error(exc: BaseException) -> GCSFilesError:
    """Convert an arbitrary client exception into a typed error.

    Errors that already belong to the gcsfiles hierarchy are returned
    unchanged. Anything else becomes a TransportError carrying the original
    message, its HTTP status (if the exception has one) and a copy of its
    public attributes.

    Args:
        exc: The exception raised by the storage client.

    Returns:
        A GCSFilesError instance. The caller is expected to raise it
        ``from exc``.
    """
    if isinstance(exc, GCSFilesError):
        return exc

    fields = {
        key: value
        for key, value in vars(exc).items()
        if not key.startswith("_")
    }
    status = getattr(exc, "status", None)
    if not isinstance(status, int):
        status = None

    # aiohttp.ClientResponseError keeps the reason phrase in .message and
    # leaves str(exc) as "status, message='...', url=..."
    reason = getattr(exc, "message", None)
    if isinstance(reason, str) and reason:
        message = reason
    else:
        message = str(exc) or type(exc).__name__
    return TransportError(message, status=status, extra_fields=fields)


def _is_not_found(exc: BaseException) -> bool:
    """Check if an exception represents a 404 Not Found from GCS.

    Only the HTTP status is consulted.
    """
    # gcloud-aio-storage raises aiohttp.ClientResponseError for HTTP errors,
    # TransportError carries the status of the error it wraps
    return getattr(exc, "status", None) == 404
