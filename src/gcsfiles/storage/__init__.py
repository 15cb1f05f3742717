"""Storage clients for gcsfiles."""

from gcsfiles.storage.backend import ReadStream, StorageClient
from gcsfiles.storage.gcp import GCSClient

__all__ = ["GCSClient", "ReadStream", "StorageClient"]
