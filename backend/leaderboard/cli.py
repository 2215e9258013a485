"""Operator commands for snapshot storage and the country directory.

Usage:
    leaderboard-admin rebuild-index
    leaderboard-admin diagnose
    leaderboard-admin countries sync|list|update
    leaderboard-admin countries set NAME CODE   (CODE "none" clears it)
    leaderboard-admin migrate DIR

Storage is selected by the same LEADERBOARD_* environment variables the
server reads.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from leaderboard.countries import CountryDirectory, country_code_to_flag
from leaderboard.errors import InvalidDirectoryError, InvalidSnapshotError, RepositoryError
from leaderboard.server.app import create_store
from leaderboard.server.settings import LeaderboardSettings
from leaderboard.snapshots.maintenance import IndexMaintenance
from leaderboard.snapshots.repository import SnapshotRepository, encode_json, snapshot_path, validate_snapshot
from shared.blob import BlobStoreError
from shared.logging import setup_logging
from shared.validators import parse_iso_date

if TYPE_CHECKING:
    from shared.blob import BlobStore

CLEAR_CODE = "none"


async def _rebuild_index(store: BlobStore) -> int:
    summary = await IndexMaintenance(SnapshotRepository(store)).rebuild()
    print(f"Rebuilt index with {summary.success_count} snapshot(s)")
    if summary.date_range:
        print(f"Date range: {summary.date_range['oldest']} to {summary.date_range['newest']}")
    for path in summary.invalid_paths:
        print(f"Skipped invalid snapshot: {path}")
    return 0


async def _diagnose(store: BlobStore) -> int:
    diagnosis = await IndexMaintenance(SnapshotRepository(store)).diagnose()
    print(json.dumps(diagnosis.to_report(), indent=2))
    return 0 if diagnosis.in_sync else 1


def _print_directory_totals(mapping: dict[str, str | None]) -> None:
    assigned = sum(1 for code in mapping.values() if code is not None)
    print(f"Total players: {len(mapping)}")
    print(f"  With countries: {assigned}")
    print(f"  Without countries: {len(mapping) - assigned}")


async def _countries_sync(store: BlobStore) -> int:
    directory = CountryDirectory(store)
    added = await directory.sync_from_snapshots(SnapshotRepository(store))
    for name in added:
        print(f"Added new player: {name}")
    print(f"Added {len(added)} new player(s)" if added else "All players already in the directory")
    _print_directory_totals(await directory.read())
    return 0


async def _countries_list(store: BlobStore) -> int:
    mapping = await CountryDirectory(store).read()
    if not mapping:
        print('No players found. Run "countries sync" first.')
        return 0
    for name, code in sorted(mapping.items(), key=lambda item: item[0].casefold()):
        print(f"{country_code_to_flag(code)}  {name:<25} -> {code or 'null'}")
    _print_directory_totals(mapping)
    return 0


async def _countries_set(store: BlobStore, name: str, code: str) -> int:
    stored = await CountryDirectory(store).set_code(name, None if code.lower() == CLEAR_CODE else code)
    print(f"{name} -> {stored or 'null'}")
    return 0


async def _countries_update(store: BlobStore) -> int:
    directory = CountryDirectory(store)
    mapping = await directory.read()
    if not mapping:
        print('No players found. Run "countries sync" first.')
        return 0

    print('Enter 2-letter ISO country codes ("skip" or empty to skip, "none" to clear, "done" to finish)')
    updates = 0
    for name in sorted(mapping, key=str.casefold):
        current = mapping[name]
        answer = input(f"{country_code_to_flag(current)}  {name} [{current or 'none'}]: ").strip()
        if answer.lower() == "done":
            break
        if answer.lower() in {"", "skip"}:
            continue
        if answer.lower() == CLEAR_CODE:
            mapping[name] = None
        elif len(answer) == 2 and answer.isascii() and answer.isalpha():
            mapping[name] = answer.upper()
        else:
            print("  Invalid code (must be 2 letters)")
            continue
        updates += 1

    if updates:
        await directory.save(mapping)
    print(f"Updated {updates} player(s)")
    return 0


async def _migrate(store: BlobStore, source_dir: Path) -> int:
    """Upload local ``YYYY-MM-DD.json`` snapshot files missing from the store, then rebuild the index."""
    if not source_dir.is_dir():
        print(f"Snapshot directory not found: {source_dir}")
        return 1

    repository = SnapshotRepository(store)
    existing = set(await repository.list_available_dates())
    uploaded = skipped = failed = 0

    for path in sorted(source_dir.glob("*.json")):
        date = path.stem
        if parse_iso_date(date) is None:
            continue
        if date in existing:
            print(f"Skipping {date} (already stored)")
            skipped += 1
            continue
        try:
            snapshot = validate_snapshot(json.loads(path.read_text(encoding="utf-8")), source=str(path))
            if snapshot.date != date:
                raise InvalidSnapshotError(f"{path} contains a snapshot for {snapshot.date}")
            await store.put(snapshot_path(date), encode_json(snapshot.to_wire()))
        except (OSError, ValueError, BlobStoreError) as e:
            print(f"Failed to upload {date}: {e}")
            failed += 1
            continue
        print(f"Uploaded {date}")
        uploaded += 1

    print(f"Uploaded: {uploaded}, skipped: {skipped}, failed: {failed}")
    await _rebuild_index(store)
    return 1 if failed else 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="leaderboard-admin", description="Leaderboard storage maintenance.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("rebuild-index", help="Rebuild snapshots/index.json from the stored snapshots.")
    commands.add_parser("diagnose", help="Compare the snapshot index against storage (exit 1 when out of sync).")

    countries = commands.add_parser("countries", help="Manage player country codes.")
    country_commands = countries.add_subparsers(dest="countries_command", required=True)
    country_commands.add_parser("sync", help="Add every player found in stored snapshots.")
    country_commands.add_parser("list", help="List players and their country codes.")
    country_commands.add_parser("update", help="Assign country codes interactively.")
    set_parser = country_commands.add_parser("set", help="Assign one player's country code.")
    set_parser.add_argument("name")
    set_parser.add_argument("code", help='ISO 3166-1 alpha-2 code, or "none" to clear')

    migrate = commands.add_parser("migrate", help="Upload local snapshot files, then rebuild the index.")
    migrate.add_argument("directory", type=Path)

    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, store: BlobStore) -> int:
    if args.command == "rebuild-index":
        return await _rebuild_index(store)
    if args.command == "diagnose":
        return await _diagnose(store)
    if args.command == "migrate":
        return await _migrate(store, args.directory)
    if args.countries_command == "sync":
        return await _countries_sync(store)
    if args.countries_command == "list":
        return await _countries_list(store)
    if args.countries_command == "set":
        return await _countries_set(store, args.name, args.code)
    return await _countries_update(store)


def main(argv: list[str] | None = None, store: BlobStore | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging()
    if store is None:
        store = create_store(LeaderboardSettings())
    try:
        return asyncio.run(_run(args, store))
    except (RepositoryError, InvalidDirectoryError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
