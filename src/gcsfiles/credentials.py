"""Service account credential providers.

The signer only needs two fields from a Google service account key:
``private_key`` (PEM) and ``client_email``.  Providers return the raw
mapping; validation of the two fields is the signer's job so that a
missing field is reported as a signing configuration error.
"""

import asyncio
import logging
from typing import Any, Protocol

from gcloud.aio.auth.token import get_service_data

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Anything that can produce service account credentials."""

    async def get_credentials(self) -> dict[str, Any]:
        """Return a mapping with at least private_key and client_email."""
        ...


class ServiceAccountFileProvider:
    """Resolves credentials the way gcloud-aio-auth's Token does.

    An explicit ``service_file`` wins, then $GOOGLE_APPLICATION_CREDENTIALS,
    then the gcloud SDK application default credentials file.  The signer
    and the storage client's Token therefore see the same account.

    Attributes:
        service_file: Path to a service account JSON key, or "" for ADC.
    """

    def __init__(self, service_file: str = "") -> None:
        self.service_file = service_file

    async def get_credentials(self) -> dict[str, Any]:
        """Load the service account data.

        Returns an empty mapping when no credentials file is found (the
        metadata-server case, which cannot sign locally).

        Raises:
            FileNotFoundError: If an explicitly configured file is missing.
            ValueError: If the credentials file is not a JSON object.
        """
        data = await asyncio.to_thread(get_service_data, self.service_file or None)
        if not isinstance(data, dict):
            raise ValueError("Service account credentials are not a JSON object")
        logger.debug("Resolved service account credentials (%s)", data.get("type", "unknown"))
        return data


class StaticCredentialProvider:
    """Returns a fixed credentials mapping."""

    def __init__(self, credentials: dict[str, Any]) -> None:
        self._credentials = dict(credentials)

    async def get_credentials(self) -> dict[str, Any]:
        return dict(self._credentials)
