"""Object store clients used for snapshot and directory persistence."""

from shared.blob.local import LocalBlobStore
from shared.blob.remote import HttpBlobStore
from shared.blob.types import (
    DEFAULT_LIST_LIMIT,
    BlobListPage,
    BlobNotFoundError,
    BlobObject,
    BlobStore,
    BlobStoreError,
    list_all,
)

__all__ = [
    "DEFAULT_LIST_LIMIT",
    "BlobListPage",
    "BlobNotFoundError",
    "BlobObject",
    "BlobStore",
    "BlobStoreError",
    "HttpBlobStore",
    "LocalBlobStore",
    "list_all",
]
