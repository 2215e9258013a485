"""Player name to country code directory, stored as ``countries.json``.

The directory maps every player ever seen to an ISO 3166-1 alpha-2 code, or
to null while nobody has assigned one. New names are added automatically as
they appear on the leaderboard; codes are assigned by an operator through the
admin CLI.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from pydantic import TypeAdapter, ValidationError

from leaderboard.errors import InvalidDirectoryError, RepositoryError
from leaderboard.models import CountryCode, PlayerName, PlayerRecord
from shared.blob import BlobNotFoundError, BlobStoreError
from shared.logging import truncate_payload

if TYPE_CHECKING:
    from collections.abc import Iterable

    from leaderboard.models import PlayerStats
    from leaderboard.snapshots.repository import SnapshotRepository
    from shared.blob import BlobStore

logger = structlog.get_logger()

COUNTRIES_PATH = "countries.json"

_REGIONAL_INDICATOR_A = 0x1F1E6
UNKNOWN_FLAG = "❓"

_directory_adapter = TypeAdapter(dict[PlayerName, CountryCode | None])


def country_code_to_flag(code: str | None) -> str:
    """Flag emoji for a country code; a question mark for None, empty for anything invalid."""
    if code is None:
        return UNKNOWN_FLAG
    if len(code) != 2 or not code.isascii() or not code.isalpha():
        return ""
    return "".join(chr(_REGIONAL_INDICATOR_A + ord(char) - ord("A")) for char in code.upper())


def validate_directory(data: object) -> dict[str, str | None]:
    try:
        return _directory_adapter.validate_python(data)
    except ValidationError as e:
        logger.error(
            "country directory failed validation",
            errors=e.errors(include_url=False, include_context=False, include_input=False),
            payload=truncate_payload(data),
        )
        raise InvalidDirectoryError("Invalid country directory") from e


@dataclass(frozen=True)
class DirectoryMerge:
    players: list[PlayerRecord]
    new_names: list[str]
    # full directory including new names; None when nothing needs saving
    updated: dict[str, str | None] | None = None


class CountryDirectory:
    def __init__(self, store: BlobStore) -> None:
        self._store = store

    async def read(self) -> dict[str, str | None]:
        """Strict read: a missing directory is empty, anything unreadable raises."""
        try:
            body = await self._store.get(COUNTRIES_PATH)
        except BlobNotFoundError:
            logger.debug("country directory not found, starting empty")
            return {}
        except BlobStoreError as e:
            raise RepositoryError(f"Failed to read country directory: {e}") from e
        try:
            data = json.loads(body)
        except ValueError as e:
            raise RepositoryError("Country directory is not valid JSON") from e
        try:
            return validate_directory(data)
        except InvalidDirectoryError as e:
            raise RepositoryError(str(e)) from e

    async def save(self, mapping: dict[str, str | None]) -> dict[str, str | None]:
        validated = validate_directory(mapping)
        body = json.dumps(dict(sorted(validated.items())), indent=2, ensure_ascii=False).encode()
        try:
            await self._store.put(COUNTRIES_PATH, body)
        except BlobStoreError as e:
            raise RepositoryError(f"Failed to write country directory: {e}") from e
        logger.info("country directory saved", players=len(validated))
        return validated

    async def merge_country_codes(self, players: Iterable[PlayerStats]) -> DirectoryMerge:
        """Attach country codes to scraped players.

        Names missing from the directory are served with a null code and
        reported back in ``updated`` so the caller can persist them. When the
        directory cannot be read, codes are left unset and nothing is saved,
        so a transient read failure never overwrites assignments.
        """
        players = list(players)
        try:
            mapping = await self.read()
        except RepositoryError as e:
            logger.warning("serving players without country codes", error=str(e))
            return DirectoryMerge(players=[PlayerRecord.from_stats(player) for player in players], new_names=[])

        new_names = [player.name for player in players if player.name not in mapping]
        records = [PlayerRecord.from_stats(player, country_code=mapping.get(player.name)) for player in players]
        if not new_names:
            return DirectoryMerge(players=records, new_names=[])

        logger.info("new players added to country directory", count=len(new_names), names=new_names[:20])
        return DirectoryMerge(players=records, new_names=new_names, updated={**mapping, **dict.fromkeys(new_names)})

    async def set_code(self, name: str, code: str | None) -> str | None:
        """Assign or clear one player's code; returns the code as stored."""
        mapping = await self.read()
        mapping[name] = code
        saved = await self.save(mapping)
        return saved.get(name.strip())

    async def sync_from_snapshots(self, repository: SnapshotRepository) -> list[str]:
        """Add every player found in any stored snapshot. Returns the names added."""
        mapping = await self.read()
        added: list[str] = []
        for date in await repository.list_available_dates():
            snapshot = await repository.load_snapshot(date)
            if snapshot is None:
                continue
            for player in snapshot.players:
                if player.name not in mapping:
                    mapping[player.name] = None
                    added.append(player.name)
        if added:
            await self.save(mapping)
        return added
