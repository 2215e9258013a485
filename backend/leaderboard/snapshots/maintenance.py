"""Detection and repair of drift between storage and the snapshot index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from leaderboard.errors import InvalidIndexError, InvalidSnapshotError, RepositoryError
from leaderboard.models import SnapshotIndexEntry
from leaderboard.snapshots.repository import INDEX_PATH, date_from_path

if TYPE_CHECKING:
    from datetime import datetime

    from leaderboard.models import Snapshot
    from leaderboard.snapshots.repository import SnapshotRepository

logger = structlog.get_logger()


@dataclass(frozen=True)
class IndexDiagnosis:
    storage_dates: list[str]
    index_dates: list[str]
    index_exists: bool
    index_valid: bool = True
    index_last_updated: datetime | None = None
    # stored but unreadable, invalid or filed under the wrong date; rebuild skips these
    invalid_in_storage: list[str] = field(default_factory=list)

    @property
    def missing_in_index(self) -> list[str]:
        skipped = set(self.index_dates) | set(self.invalid_in_storage)
        return [date for date in self.storage_dates if date not in skipped]

    @property
    def missing_in_storage(self) -> list[str]:
        stored = set(self.storage_dates)
        return [date for date in self.index_dates if date not in stored]

    @property
    def in_sync(self) -> bool:
        return self.index_valid and not self.missing_in_index and not self.missing_in_storage

    @property
    def recommendation(self) -> str:
        if not self.storage_dates and not self.index_dates:
            return "No snapshots stored yet."
        if not self.index_exists:
            return "Index missing; run rebuild-index to create it."
        if not self.index_valid:
            return "Index is unreadable; run rebuild-index to replace it."
        if not self.in_sync:
            return "Index out of sync with storage; run rebuild-index."
        if self.invalid_in_storage:
            return (
                f"Index is in sync; {len(self.invalid_in_storage)} invalid snapshot object(s) are excluded "
                "and must be repaired or deleted by hand."
            )
        return "Index is in sync with storage."

    def to_report(self) -> dict:
        return {
            "storage": {"count": len(self.storage_dates), "dates": self.storage_dates},
            "index": {
                "exists": self.index_exists,
                "valid": self.index_valid,
                "count": len(self.index_dates),
                "dates": self.index_dates,
                "lastUpdated": self.index_last_updated.isoformat() if self.index_last_updated else None,
            },
            "missingInIndex": self.missing_in_index,
            "missingInStorage": self.missing_in_storage,
            "invalidInStorage": self.invalid_in_storage,
            "inSync": self.in_sync,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class RebuildSummary:
    dates: list[str] = field(default_factory=list)
    error_count: int = 0
    invalid_paths: list[str] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.dates)

    @property
    def date_range(self) -> dict[str, str] | None:
        if not self.dates:
            return None
        return {"newest": self.dates[0], "oldest": self.dates[-1]}

    def to_report(self) -> dict:
        return {
            "success": True,
            "totalSnapshots": self.success_count,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "invalidPaths": self.invalid_paths,
            "dateRange": self.date_range,
            "dates": self.dates,
        }


class IndexMaintenance:
    """Operator tooling over a ``SnapshotRepository``.

    ``diagnose`` only reads. ``rebuild`` rewrites the index from the objects
    actually in storage and never modifies a snapshot, so running it twice in
    a row produces the same index (apart from ``lastUpdated``). Both apply the
    same test of which stored objects are usable, so a diagnose right after a
    rebuild reports the index in sync.
    """

    def __init__(self, repository: SnapshotRepository) -> None:
        self._repository = repository

    async def _read_usable(self, pathname: str) -> Snapshot | None:
        """The snapshot at ``pathname`` if it can be indexed, otherwise None (logged)."""
        try:
            snapshot = await self._repository.read_snapshot_object(pathname)
        except (RepositoryError, InvalidSnapshotError) as e:
            logger.warning("skipping unreadable snapshot", pathname=pathname, error=str(e))
            return None
        if snapshot is None or snapshot.date != date_from_path(pathname):
            logger.warning("skipping snapshot missing or stored under the wrong date", pathname=pathname)
            return None
        return snapshot

    async def diagnose(self) -> IndexDiagnosis:
        blobs = await self._repository.list_snapshot_objects()
        storage_dates = [date_from_path(blob.pathname) for blob in blobs]

        try:
            index = await self._repository.read_index()
        except InvalidIndexError:
            index = None
        indexed = set(index.dates) if index is not None else set()

        # only objects the index lacks are opened; indexed ones were checked when written
        invalid_in_storage: list[str] = []
        for blob in blobs:
            date = date_from_path(blob.pathname)
            if date not in indexed and await self._read_usable(blob.pathname) is None:
                invalid_in_storage.append(date)

        if index is None:
            return IndexDiagnosis(
                storage_dates=storage_dates,
                index_dates=[],
                index_exists=True,
                index_valid=False,
                invalid_in_storage=invalid_in_storage,
            )

        diagnosis = IndexDiagnosis(
            storage_dates=storage_dates,
            index_dates=index.dates,
            index_exists=index.last_updated is not None,
            index_last_updated=index.last_updated,
            invalid_in_storage=invalid_in_storage,
        )
        logger.info(
            "snapshot index diagnosed",
            in_sync=diagnosis.in_sync,
            missing_in_index=len(diagnosis.missing_in_index),
            missing_in_storage=len(diagnosis.missing_in_storage),
            invalid_in_storage=len(invalid_in_storage),
        )
        return diagnosis

    async def rebuild(self) -> RebuildSummary:
        """Rebuild the index from storage.

        Unreadable or invalid snapshots, and snapshots whose content date does
        not match their path, are counted and skipped. The index is written
        even when no valid snapshot remains, which clears stale entries.
        """
        blobs = await self._repository.list_snapshot_objects()
        logger.info("rebuilding snapshot index", objects=len(blobs), index_path=INDEX_PATH)

        entries: list[SnapshotIndexEntry] = []
        invalid_paths: list[str] = []
        for blob in blobs:
            snapshot = await self._read_usable(blob.pathname)
            if snapshot is None:
                invalid_paths.append(blob.pathname)
                continue
            entries.append(SnapshotIndexEntry.from_snapshot(snapshot))

        index = await self._repository.write_index(entries)
        summary = RebuildSummary(dates=index.dates, error_count=len(invalid_paths), invalid_paths=invalid_paths)
        logger.info("snapshot index rebuilt", success_count=summary.success_count, error_count=summary.error_count)
        return summary
