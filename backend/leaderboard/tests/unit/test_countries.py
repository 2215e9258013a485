import json
import logging

import pytest

from leaderboard.countries import COUNTRIES_PATH, UNKNOWN_FLAG, CountryDirectory, country_code_to_flag
from leaderboard.errors import InvalidDirectoryError, RepositoryError
from leaderboard.tests.conftest import create_player, create_snapshot, put_raw_snapshot
from shared.blob import BlobStoreError


class UnreadableStore:
    def __init__(self):
        self.writes = []

    async def get(self, pathname):
        raise BlobStoreError("connection reset")

    async def put(self, pathname, body, content_type="application/json"):
        self.writes.append(pathname)


async def _stored(store) -> dict:
    return json.loads(await store.get(COUNTRIES_PATH))


@pytest.fixture
def countries(blob_store) -> CountryDirectory:
    return CountryDirectory(blob_store)


class TestCountryCodeToFlag:
    @pytest.mark.parametrize(("code", "flag"), [("US", "🇺🇸"), ("de", "🇩🇪"), (None, UNKNOWN_FLAG), ("USA", ""), ("1A", "")])
    def test_flag(self, code, flag):
        assert country_code_to_flag(code) == flag


class TestRead:
    async def test_missing_directory_is_empty(self, countries):
        assert await countries.read() == {}

    async def test_invalid_directory_raises(self, countries, blob_store):
        await blob_store.put(COUNTRIES_PATH, json.dumps({"Alice": "USA"}).encode())

        with pytest.raises(RepositoryError):
            await countries.read()

    async def test_malformed_json_raises(self, countries, blob_store):
        await blob_store.put(COUNTRIES_PATH, b"{nope")

        with pytest.raises(RepositoryError, match="not valid JSON"):
            await countries.read()


class TestSave:
    async def test_writes_sorted_and_upper_cased(self, countries, blob_store):
        saved = await countries.save({"Zed": "de", "Alice": None})

        assert saved == {"Zed": "DE", "Alice": None}
        assert list(await _stored(blob_store)) == ["Alice", "Zed"]

    async def test_rejects_invalid_codes(self, countries):
        with pytest.raises(InvalidDirectoryError):
            await countries.save({"Alice": "United States"})


class TestMergeCountryCodes:
    async def test_known_and_new_players(self, countries, blob_store):
        await blob_store.put(COUNTRIES_PATH, json.dumps({"Alice": "US", "Carol": None}).encode())

        merge = await countries.merge_country_codes([create_player(1, "Alice"), create_player(2, "Bob")])

        assert [p.country_code for p in merge.players] == ["US", None]
        assert merge.players[1].to_wire()["countryCode"] is None
        assert merge.new_names == ["Bob"]
        assert merge.updated == {"Alice": "US", "Carol": None, "Bob": None}

    async def test_nothing_to_save_when_all_known(self, countries, blob_store):
        await blob_store.put(COUNTRIES_PATH, json.dumps({"Alice": "US"}).encode())

        merge = await countries.merge_country_codes([create_player(1, "Alice")])

        assert merge.new_names == []
        assert merge.updated is None

    async def test_first_run_adds_everyone(self, countries):
        merge = await countries.merge_country_codes([create_player(1, "Alice")])

        assert merge.updated == {"Alice": None}

    async def test_unreadable_directory_leaves_codes_unset(self, caplog):
        store = UnreadableStore()

        with caplog.at_level(logging.WARNING):
            merge = await CountryDirectory(store).merge_country_codes([create_player(1, "Alice")])

        assert "countryCode" not in merge.players[0].to_wire()
        assert merge.updated is None
        assert store.writes == []
        assert "serving players without country codes" in caplog.text


class TestSetCode:
    async def test_assigns_and_clears(self, countries, blob_store):
        assert await countries.set_code("Alice", "gb") == "GB"
        assert await countries.set_code("Alice", None) is None
        assert await _stored(blob_store) == {"Alice": None}

    async def test_invalid_code_leaves_directory_untouched(self, countries, blob_store):
        await countries.set_code("Alice", "FR")

        with pytest.raises(InvalidDirectoryError):
            await countries.set_code("Alice", "XYZ")
        assert await _stored(blob_store) == {"Alice": "FR"}


class TestSyncFromSnapshots:
    async def test_adds_players_from_every_snapshot(self, countries, repository, blob_store):
        await countries.save({"Alice": "US"})
        await put_raw_snapshot(blob_store, create_snapshot("2025-01-13"))
        await put_raw_snapshot(blob_store, create_snapshot("2025-01-14", [create_player(1, "Carol")]))

        added = await countries.sync_from_snapshots(repository)

        assert sorted(added) == ["Bob", "Carol"]
        assert await _stored(blob_store) == {"Alice": "US", "Bob": None, "Carol": None}

    async def test_no_snapshots_writes_nothing(self, countries, repository):
        assert await countries.sync_from_snapshots(repository) == []
        assert await countries.read() == {}
