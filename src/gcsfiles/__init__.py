"""gcsfiles - Google Cloud Storage file transport."""

import logging

from gcsfiles.errors import (
    ConfigurationError,
    GCSFilesError,
    NotConnectedError,
    SigningConfigurationError,
    SigningError,
    TransportError,
    ValidationError,
)
from gcsfiles.signing import Signer, SigningRequest
from gcsfiles.transport import BucketDescriptor, FileTransport, GCSTransport

# Silent unless the application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "BucketDescriptor",
    "ConfigurationError",
    "FileTransport",
    "GCSFilesError",
    "GCSTransport",
    "NotConnectedError",
    "Signer",
    "SigningConfigurationError",
    "SigningError",
    "SigningRequest",
    "TransportError",
    "ValidationError",
]
