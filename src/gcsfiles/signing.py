"""V2 signed URL generation for Google Cloud Storage.

Implements the string-to-sign construction, RSA-SHA256 signing and query
string assembly for V2 signed URLs.

StringToSign layout::

    HTTP_Verb + "\\n" +
    Content_MD5 + "\\n" +
    Content_Type + "\\n" +
    Expiration + "\\n" +
    Canonicalized_Extension_Headers +
    Canonicalized_Resource

References:
    - https://cloud.google.com/storage/docs/access-control/signed-urls-v2
"""

import base64
import logging
import math
import re
import time
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from gcsfiles.credentials import CredentialProvider
from gcsfiles.errors import (
    ConfigurationError,
    SigningConfigurationError,
    SigningError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Constants
ACTIONS = {
    "read": "GET",
    "write": "PUT",
    "delete": "DELETE",
}
DEFAULT_HOST = "https://storage.googleapis.com"

# Characters left unescaped by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"
_FOLDING_WS_RE = re.compile(r"\s*(?:\r\n|\r|\n)\s*")


def encode_uri_component(value: str) -> str:
    """Percent-encode a string with encodeURIComponent semantics (``/`` included)."""
    return urllib.parse.quote(value, safe=_URI_COMPONENT_SAFE)


@dataclass(frozen=True)
class SigningRequest:
    """Everything needed to sign one URL.

    Attributes:
        action: "read", "write" or "delete".
        bucket: The bucket name.
        resource: Object name within the bucket. One leading slash is ignored.
        expires: Expiry as epoch milliseconds, or a datetime (naive means UTC).
        content_md5: Base64 MD5 the client must send, if any.
        content_type: Content-Type the client must send, if any.
        extension_headers: x-goog-* headers the client must send.
        response_type: Value for the response-content-type parameter.
        response_disposition: Value for response-content-disposition.
        prompt_save_as: Filename for an ``attachment`` disposition. Ignored
            when response_disposition is set.
        generation: Object generation to pin the URL to.
    """

    action: str
    bucket: str
    resource: str
    expires: int | float | datetime
    content_md5: str | None = None
    content_type: str | None = None
    extension_headers: Mapping[str, Any] = field(default_factory=dict)
    response_type: str | None = None
    response_disposition: str | None = None
    prompt_save_as: str | None = None
    generation: int | None = None

    @property
    def object_name(self) -> str:
        name = self.resource or ""
        if name.startswith("/"):
            name = name[1:]
        return name


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def expires_to_ms(expires: int | float | datetime) -> float:
    """Normalize an expiry value to epoch milliseconds.

    Raises:
        ValidationError: If the value is neither a number nor a datetime.
    """
    if isinstance(expires, datetime):
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires.timestamp() * 1000
    if isinstance(expires, bool) or not isinstance(expires, (int, float)):
        raise ValidationError(f"Invalid expiration value: {expires!r}")
    return float(expires)


def expires_in_seconds(expires: int | float | datetime) -> int:
    """Return the ``Expires`` value: whole seconds, rounded down."""
    return math.floor(expires_to_ms(expires) / 1000)


def validate_expiry(expires: int | float | datetime, now: float) -> None:
    """Reject expiries that are not strictly in the future.

    Args:
        expires: The requested expiry.
        now: Current time in epoch seconds.

    Raises:
        ValidationError: If the expiry is at or before ``now``.
    """
    if expires_to_ms(expires) <= now * 1000:
        raise ValidationError("An expiration date cannot be in the past.")


# ---------------------------------------------------------------------------
# Canonical request
# ---------------------------------------------------------------------------


def canonicalize_extension_headers(headers: Mapping[str, Any] | None) -> str:
    """Build the Canonicalized_Extension_Headers block.

    Names are lowercased and sorted by code point. Values have folding
    whitespace collapsed to a single space and are trimmed. Names that
    collide after lowercasing are merged into one comma-separated value,
    in the order they were supplied.

    Returns:
        ``name:value\\n`` lines concatenated, or "" when there are no headers.
    """
    if not headers:
        return ""

    merged: dict[str, list[str]] = {}
    for name, value in headers.items():
        key = str(name).strip().lower()
        cleaned = _FOLDING_WS_RE.sub(" ", str(value)).strip()
        merged.setdefault(key, []).append(cleaned)

    return "".join(
        f"{name}:{','.join(merged[name])}\n" for name in sorted(merged)
    )


def canonical_resource(bucket: str, object_name: str) -> str:
    """Build ``/bucket/encoded-object-name``."""
    return f"/{bucket}/{encode_uri_component(object_name)}"


def build_canonical_request(request: SigningRequest) -> str:
    """Build the exact string that must be signed.

    Args:
        request: The signing request.

    Returns:
        The newline-joined string-to-sign.

    Raises:
        ConfigurationError: On an unknown action or a missing bucket/resource.
        ValidationError: If the expiry value is not a number or datetime.
    """
    verb = ACTIONS.get(request.action)
    if verb is None:
        raise ConfigurationError(
            f"Invalid action {request.action!r}; expected one of {', '.join(ACTIONS)}"
        )
    if not request.bucket:
        raise ConfigurationError("A bucket name is required to sign a URL")
    if not request.object_name:
        raise ConfigurationError("A resource path is required to sign a URL")

    return "\n".join([
        verb,
        request.content_md5 or "",
        request.content_type or "",
        str(expires_in_seconds(request.expires)),
        canonicalize_extension_headers(request.extension_headers)
        + canonical_resource(request.bucket, request.object_name),
    ])


# ---------------------------------------------------------------------------
# Signature and URL assembly
# ---------------------------------------------------------------------------


def sign_canonical_request(canonical: str, private_key: str | bytes) -> str:
    """Sign the string-to-sign with RSA PKCS#1 v1.5 / SHA-256.

    Args:
        canonical: The string produced by build_canonical_request().
        private_key: PEM-encoded RSA private key.

    Returns:
        The base64-encoded signature.

    Raises:
        SigningError: If the key cannot be loaded or signing fails.
    """
    if isinstance(private_key, str):
        private_key = private_key.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(private_key, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"Could not load private key: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise SigningError("Signed URLs require an RSA private key")

    try:
        signature = key.sign(
            canonical.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (ValueError, TypeError) as e:
        raise SigningError(f"Failed to sign request: {e}") from e

    return base64.b64encode(signature).decode("ascii")


def build_signed_url(
    request: SigningRequest,
    *,
    client_email: str,
    signature: str,
    cname: str = "",
) -> str:
    """Assemble the final signed URL.

    Parameter order is fixed: GoogleAccessId, Expires, Signature, then the
    optional response-content-type, response-content-disposition and
    generation.

    Args:
        request: The signing request the signature was computed for.
        client_email: Service account email (GoogleAccessId).
        signature: Base64 signature from sign_canonical_request().
        cname: Custom host used verbatim instead of the storage host.

    Returns:
        The signed URL.
    """
    host = cname or f"{DEFAULT_HOST}/{request.bucket}"
    name = encode_uri_component(request.object_name)

    parts = [
        f"{host}/{name}",
        f"?GoogleAccessId={client_email}",
        f"&Expires={expires_in_seconds(request.expires)}",
        f"&Signature={encode_uri_component(signature)}",
    ]

    if isinstance(request.response_type, str):
        parts.append(
            "&response-content-type=" + encode_uri_component(request.response_type)
        )

    disposition = ""
    if isinstance(request.prompt_save_as, str):
        disposition = (
            '&response-content-disposition=attachment; filename="'
            + encode_uri_component(request.prompt_save_as)
            + '"'
        )
    if isinstance(request.response_disposition, str):
        disposition = "&response-content-disposition=" + encode_uri_component(
            request.response_disposition
        )
    parts.append(disposition)

    if request.generation is not None:
        parts.append(f"&generation={request.generation}")

    return "".join(parts)


class Signer:
    """Produces signed URLs from SigningRequests.

    Credentials are fetched from the provider on first use and cached for
    the signer's lifetime once they contain both required fields.

    Attributes:
        cname: Custom URL host, or "" to use the storage host.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        cname: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the signer.

        Args:
            credentials: Source of private_key and client_email.
            cname: Custom URL host (e.g. "https://cdn.example.com").
            clock: Returns the current time in epoch seconds.
        """
        self._provider = credentials
        self.cname = cname
        self._clock = clock
        self._credentials: dict[str, Any] | None = None

    async def _get_credentials(self) -> dict[str, Any]:
        if self._credentials is not None:
            return self._credentials

        try:
            credentials = await self._provider.get_credentials()
        except Exception as e:
            raise SigningError(str(e) or type(e).__name__) from e

        if not credentials.get("private_key") or not credentials.get("client_email"):
            raise SigningConfigurationError()

        self._credentials = credentials
        return credentials

    async def sign(self, request: SigningRequest) -> str:
        """Sign a request and return the URL.

        Expiry and request shape are checked before credentials are
        fetched, so bad input never touches the credential provider.

        Raises:
            ValidationError: If the expiry is not in the future.
            ConfigurationError: On an invalid action or missing resource.
            SigningError: If credentials are unavailable or signing fails.
        """
        validate_expiry(request.expires, self._clock())
        canonical = build_canonical_request(request)

        credentials = await self._get_credentials()
        signature = sign_canonical_request(canonical, credentials["private_key"])

        logger.debug(
            "Signed %s URL for %s/%s",
            request.action,
            request.bucket,
            request.object_name,
            extra={"bucket": request.bucket, "object": request.object_name, "action": request.action},
        )
        return build_signed_url(
            request,
            client_email=credentials["client_email"],
            signature=signature,
            cname=self.cname,
        )
