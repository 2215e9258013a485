"""Daily snapshot persistence on top of a blob store.

Layout:
- ``snapshots/{YYYY-MM-DD}.json``: one immutable snapshot per UTC day.
- ``snapshots/index.json``: advisory summary of all snapshots, newest first.

The index is a performance aid. Storage listing is the source of truth and
``IndexMaintenance.rebuild`` repairs any drift between the two.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from leaderboard.errors import InvalidIndexError, InvalidSnapshotError, RepositoryError
from leaderboard.models import Snapshot, SnapshotIndex, SnapshotIndexEntry
from leaderboard.snapshots.source import select_snapshot_source
from shared.blob import BlobNotFoundError, BlobStoreError, list_all
from shared.logging import truncate_payload

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from leaderboard.models import PlayerStats
    from leaderboard.snapshots.source import SnapshotSource
    from shared.blob import BlobObject, BlobStore

logger = structlog.get_logger()

SNAPSHOTS_PREFIX = "snapshots/"
INDEX_PATH = "snapshots/index.json"

_SNAPSHOT_PATH_PATTERN = re.compile(r"snapshots/(\d{4}-\d{2}-\d{2})\.json$")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def snapshot_path(date: str) -> str:
    return f"{SNAPSHOTS_PREFIX}{date}.json"


def date_from_path(pathname: str) -> str | None:
    """Extract the snapshot date from an object path; None for the index and foreign objects."""
    match = _SNAPSHOT_PATH_PATTERN.search(pathname)
    return match.group(1) if match else None


def encode_json(payload: object) -> bytes:
    return json.dumps(payload, indent=2, ensure_ascii=False).encode()


def validate_snapshot(data: object, *, source: str) -> Snapshot:
    """Validate raw snapshot data, logging field errors and a truncated payload on failure."""
    try:
        return Snapshot.model_validate(data)
    except ValidationError as e:
        logger.error(
            "snapshot failed validation",
            source=source,
            errors=e.errors(include_url=False, include_context=False, include_input=False),
            payload=truncate_payload(data),
        )
        raise InvalidSnapshotError(f"Invalid snapshot from {source}") from e


class SnapshotRepository:
    def __init__(self, store: BlobStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def today(self) -> str:
        return self._clock().astimezone(UTC).date().isoformat()

    async def _read_json(self, pathname: str) -> object | None:
        """Read and decode a JSON object; None when it does not exist."""
        try:
            body = await self._store.get(pathname)
        except BlobNotFoundError:
            return None
        except BlobStoreError as e:
            raise RepositoryError(f"Failed to read {pathname}: {e}") from e
        try:
            return json.loads(body)
        except ValueError as e:
            logger.error("stored object is not valid JSON", pathname=pathname, payload=truncate_payload(body[:1000]))
            raise RepositoryError(f"Malformed JSON in {pathname}") from e

    async def read_snapshot_object(self, pathname: str) -> Snapshot | None:
        """Strict read of one snapshot object.

        Returns None when the object is absent, raises RepositoryError on
        transport or decoding failure and InvalidSnapshotError when the
        content does not match the snapshot schema.
        """
        data = await self._read_json(pathname)
        if data is None:
            return None
        return validate_snapshot(data, source=pathname)

    async def load_snapshot(self, date: str) -> Snapshot | None:
        try:
            snapshot = await self.read_snapshot_object(snapshot_path(date))
        except RepositoryError as e:
            logger.warning("snapshot read failed", date=date, error=str(e))
            return None
        except InvalidSnapshotError:
            return None
        if snapshot is None:
            logger.debug("snapshot not found", date=date)
        return snapshot

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        """Validate and write a snapshot, then upsert its index entry.

        The snapshot write itself raises on failure. The index update is best
        effort: a failure is logged and left for ``rebuild`` to repair.
        """
        validated = validate_snapshot(snapshot.model_dump(mode="json", by_alias=True), source=f"save {snapshot.date}")
        try:
            await self._store.put(snapshot_path(validated.date), encode_json(validated.to_wire()))
        except BlobStoreError as e:
            raise RepositoryError(f"Failed to write snapshot {validated.date}: {e}") from e
        logger.info("snapshot saved", date=validated.date, players=len(validated.players))

        try:
            await self._upsert_index_entry(SnapshotIndexEntry.from_snapshot(validated))
        except RepositoryError as e:
            logger.error("snapshot index update failed, rebuild the index to repair", date=validated.date, error=str(e))

    async def ensure_daily_snapshot(self, players: Sequence[PlayerStats], webpage_timestamp: str) -> bool:
        """Create today's snapshot from raw stats unless one already exists.

        Returns True when a snapshot was written. Two concurrent callers may
        both write; the payloads are equivalent and the last write wins. When
        the existence check itself fails the snapshot is written anyway, and
        an invalid object for today is replaced.
        """
        today = self.today()
        try:
            existing = await self.read_snapshot_object(snapshot_path(today))
        except RepositoryError as e:
            logger.warning("could not check for today's snapshot, writing anyway", date=today, error=str(e))
            existing = None
        except InvalidSnapshotError:
            logger.warning("replacing invalid snapshot for today", date=today)
            existing = None
        if existing is not None:
            return False

        snapshot = Snapshot(
            date=today,
            webpage_timestamp=webpage_timestamp,
            captured_at=self._clock(),
            players=[player.raw_stats() for player in players],
        )
        await self.save_snapshot(snapshot)
        logger.info("daily snapshot created", date=today, webpage_timestamp=webpage_timestamp)
        return True

    async def list_snapshot_objects(self) -> list[BlobObject]:
        """List every dated snapshot object, newest first. Raises RepositoryError."""
        try:
            blobs = await list_all(self._store, SNAPSHOTS_PREFIX)
        except BlobStoreError as e:
            raise RepositoryError(f"Failed to list snapshots: {e}") from e
        dated = [blob for blob in blobs if date_from_path(blob.pathname) is not None]
        return sorted(dated, key=lambda blob: date_from_path(blob.pathname), reverse=True)

    async def list_available_dates(self) -> list[str]:
        try:
            blobs = await self.list_snapshot_objects()
        except RepositoryError as e:
            logger.warning("snapshot listing failed", error=str(e))
            return []
        return [date_from_path(blob.pathname) for blob in blobs]

    async def read_index(self) -> SnapshotIndex:
        """Strict index read: an absent index is empty, anything unreadable raises."""
        data = await self._read_json(INDEX_PATH)
        if data is None:
            return SnapshotIndex()
        try:
            return SnapshotIndex.model_validate(data)
        except ValidationError as e:
            logger.error(
                "snapshot index failed validation",
                errors=e.errors(include_url=False, include_context=False, include_input=False),
                payload=truncate_payload(data),
            )
            raise InvalidIndexError("Stored snapshot index is invalid") from e

    async def load_index(self) -> SnapshotIndex:
        try:
            return await self.read_index()
        except RepositoryError as e:
            logger.warning("snapshot index unavailable, treating as empty", error=str(e))
            return SnapshotIndex()

    async def write_index(self, entries: Iterable[SnapshotIndexEntry]) -> SnapshotIndex:
        """Replace the whole index object with ``entries``, sorted newest first."""
        index = SnapshotIndex(
            snapshots=sorted(entries, key=lambda entry: entry.date, reverse=True),
            last_updated=self._clock(),
        )
        try:
            await self._store.put(INDEX_PATH, encode_json(index.model_dump(mode="json", by_alias=True)))
        except BlobStoreError as e:
            raise RepositoryError(f"Failed to write snapshot index: {e}") from e
        logger.info("snapshot index written", count=index.count)
        return index

    async def _upsert_index_entry(self, entry: SnapshotIndexEntry) -> None:
        try:
            index = await self.read_index()
        except InvalidIndexError:
            logger.warning("replacing invalid snapshot index", date=entry.date)
            index = SnapshotIndex()
        entries = [existing for existing in index.snapshots if existing.date != entry.date]
        entries.append(entry)
        await self.write_index(entries)

    async def load_previous_day_snapshot(self, source: SnapshotSource | None = None) -> Snapshot | None:
        """Load the most recent snapshot strictly before today.

        Dates come from ``source`` (selected from the index when omitted).
        Index entries whose object is missing or invalid are skipped.
        """
        if source is None:
            source = await select_snapshot_source(self)
        today = self.today()
        for date in await source.dates():
            if date >= today:
                continue
            snapshot = await self.load_snapshot(date)
            if snapshot is not None:
                return snapshot
            logger.warning("listed snapshot could not be loaded", date=date, source=source.name)
        return None
