"""
Object storage gateway for uploaded site media.

Cloud object storage (S3-compatible API) in production, local disk in
development, behind one store/resolve/delete interface.
"""

from .client import (
    CloudStorageClient,
    LocalStorageClient,
    StorageClient,
    StorageConfig,
    StorageError,
    create_storage_client,
)

__all__ = [
    "CloudStorageClient",
    "LocalStorageClient",
    "StorageClient",
    "StorageConfig",
    "StorageError",
    "create_storage_client",
]
