"""Filesystem-backed blob store for local development and tests."""

import asyncio
import contextlib
import os
import tempfile
from pathlib import Path

import structlog

from shared.blob.types import DEFAULT_LIST_LIMIT, BlobListPage, BlobNotFoundError, BlobObject, BlobStoreError

logger = structlog.get_logger()


class LocalBlobStore:
    """Stores each blob as a file under a root directory.

    Writes are atomic (temp file then rename), so readers never observe a
    partially written object. Listing is ordered by pathname and paginated
    with an integer offset cursor.
    """

    def __init__(self, root_dir: str | Path) -> None:
        self._root = Path(root_dir).resolve()

    def _resolve(self, pathname: str) -> Path:
        target = (self._root / pathname).resolve()
        if not target.is_relative_to(self._root) or target == self._root:
            raise ValueError(f"Path traversal rejected: '{pathname}' resolves outside blob root")
        return target

    def _to_blob(self, path: Path) -> BlobObject:
        return BlobObject(
            pathname=path.relative_to(self._root).as_posix(),
            url=path.as_uri(),
            size=path.stat().st_size,
        )

    def _write(self, target: Path, body: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=".blob_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            Path(tmp_path).replace(target)
        except BaseException:
            with contextlib.suppress(OSError):
                Path(tmp_path).unlink()
            raise

    async def put(self, pathname: str, body: bytes, content_type: str = "application/json") -> BlobObject:  # noqa: ARG002
        target = self._resolve(pathname)
        try:
            await asyncio.to_thread(self._write, target, body)
        except OSError as e:
            raise BlobStoreError(f"Failed to write {pathname}: {e}") from e
        logger.debug("blob written", pathname=pathname, size=len(body))
        return self._to_blob(target)

    async def get(self, pathname: str) -> bytes:
        target = self._resolve(pathname)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as e:
            raise BlobNotFoundError(pathname) from e
        except OSError as e:
            raise BlobStoreError(f"Failed to read {pathname}: {e}") from e

    def _scan(self, prefix: str) -> list[Path]:
        if not self._root.is_dir():
            return []
        return sorted(
            p
            for p in self._root.rglob("*")
            if p.is_file() and not p.name.startswith(".") and p.relative_to(self._root).as_posix().startswith(prefix)
        )

    async def list(
        self,
        prefix: str,
        cursor: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> BlobListPage:
        try:
            offset = int(cursor) if cursor else 0
        except ValueError as e:
            raise BlobStoreError(f"Invalid list cursor: {cursor!r}") from e
        try:
            paths = await asyncio.to_thread(self._scan, prefix)
        except OSError as e:
            raise BlobStoreError(f"Failed to list {prefix!r}: {e}") from e

        page = paths[offset : offset + limit]
        next_offset = offset + len(page)
        return BlobListPage(
            blobs=[self._to_blob(p) for p in page],
            cursor=str(next_offset) if next_offset < len(paths) else None,
        )
