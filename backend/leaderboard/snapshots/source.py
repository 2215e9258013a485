"""Where the list of stored snapshots comes from.

Reading the index is one cheap object fetch. Listing storage walks every page
of the ``snapshots/`` prefix and, for full entries, reads every snapshot. The
listing path is only taken when the index is empty, and that choice is logged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog

from leaderboard.models import SnapshotIndexEntry

if TYPE_CHECKING:
    from leaderboard.models import SnapshotIndex
    from leaderboard.snapshots.repository import SnapshotRepository

logger = structlog.get_logger()


class SnapshotSource(Protocol):
    name: str

    async def dates(self) -> list[str]:
        """Snapshot dates, newest first."""
        ...

    async def entries(self) -> list[SnapshotIndexEntry]:
        """Index entries, newest first."""
        ...


class IndexBackedSource:
    name = "index"

    def __init__(self, index: SnapshotIndex) -> None:
        self._entries = sorted(index.snapshots, key=lambda entry: entry.date, reverse=True)

    async def dates(self) -> list[str]:
        return [entry.date for entry in self._entries]

    async def entries(self) -> list[SnapshotIndexEntry]:
        return list(self._entries)


class ListingBackedSource:
    """Degraded source built from a storage listing.

    ``entries`` reads every listed snapshot to recover its metadata.
    """

    name = "listing"

    def __init__(self, repository: SnapshotRepository) -> None:
        self._repository = repository

    async def dates(self) -> list[str]:
        return await self._repository.list_available_dates()

    async def entries(self) -> list[SnapshotIndexEntry]:
        entries = []
        for date in await self.dates():
            snapshot = await self._repository.load_snapshot(date)
            if snapshot is not None:
                entries.append(SnapshotIndexEntry.from_snapshot(snapshot))
        return entries


async def select_snapshot_source(repository: SnapshotRepository) -> SnapshotSource:
    index = await repository.load_index()
    if index.snapshots:
        return IndexBackedSource(index)
    logger.warning("snapshot index is empty, falling back to storage listing")
    return ListingBackedSource(repository)
