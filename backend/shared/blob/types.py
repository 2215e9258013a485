"""Blob store protocol and shared types."""

from dataclasses import dataclass, field
from typing import Protocol

DEFAULT_LIST_LIMIT = 1000


class BlobStoreError(Exception):
    """Transport or protocol failure talking to the blob store."""


class BlobNotFoundError(BlobStoreError):
    """The requested object does not exist."""

    def __init__(self, pathname: str) -> None:
        super().__init__(f"Blob not found: {pathname}")
        self.pathname = pathname


@dataclass(frozen=True)
class BlobObject:
    pathname: str
    url: str
    size: int | None = None


@dataclass(frozen=True)
class BlobListPage:
    blobs: list[BlobObject] = field(default_factory=list)
    cursor: str | None = None  # None when the listing is exhausted


class BlobStore(Protocol):
    """Key/value object store addressable by path.

    ``get`` reads an object by its known path and is cheap. ``list`` walks a
    prefix page by page and is the expensive operation; callers should avoid
    it on hot paths.
    """

    async def put(self, pathname: str, body: bytes, content_type: str = "application/json") -> BlobObject: ...

    async def get(self, pathname: str) -> bytes: ...

    async def list(
        self,
        prefix: str,
        cursor: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> BlobListPage: ...


async def list_all(store: BlobStore, prefix: str) -> list[BlobObject]:
    """Walk every page of a prefix listing."""
    blobs: list[BlobObject] = []
    cursor: str | None = None
    while True:
        page = await store.list(prefix, cursor=cursor)
        blobs.extend(page.blobs)
        if not page.cursor:
            return blobs
        cursor = page.cursor
