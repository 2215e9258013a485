import json

import httpx
import pytest

from leaderboard.cache import REASON_TIME_FALLBACK, REASON_WEBPAGE_UNCHANGED, STALE_WARNING
from leaderboard.models import MAX_PLAYERS
from leaderboard.scraper import ScrapeError, ScrapeResult
from leaderboard.server.app import create_app
from leaderboard.server.settings import LeaderboardSettings
from leaderboard.snapshots.repository import INDEX_PATH
from leaderboard.tests.conftest import (
    PAGE_TIMESTAMP,
    TODAY,
    YESTERDAY,
    create_player,
    create_snapshot,
    put_raw_snapshot,
)
from leaderboard.tests.mocks import MockScraper

SOURCE_URL = "http://leaderboard.test/"


@pytest.fixture
def scraper() -> MockScraper:
    players = [create_player(1, "Alice", ev_won=115.0, hands=1050), create_player(2, "Bob")]
    return MockScraper(ScrapeResult(players=players, webpage_timestamp=PAGE_TIMESTAMP), fingerprint=PAGE_TIMESTAMP)


@pytest.fixture
def app(tmp_path, blob_store, scraper, clock):
    settings = LeaderboardSettings(
        source_url=SOURCE_URL,
        storage_dir=str(tmp_path / "unused"),
        log_dir=None,
        cors_origins=["http://frontend.test"],
    )
    return create_app(settings=settings, store=blob_store, scraper=scraper, clock=clock)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c
    await app.state.background.drain()


class TestLeaderboardEndpoint:
    async def test_first_request_end_to_end(self, app, client, blob_store):
        response = await client.get("/leaderboard")
        await app.state.background.drain()

        assert response.status_code == 200
        body = response.json()
        assert body["isHistorical"] is False
        assert body["hasPreviousDayData"] is False
        assert body["previousDayDate"] is None
        assert body["webpageTimestamp"] == PAGE_TIMESTAMP
        assert "warning" not in body
        assert [p["countryCode"] for p in body["players"]] == [None, None]
        assert "rankChange" not in body["players"][0]
        assert body["players"][0]["evBB100"] == 5.0

        assert response.headers["x-cache"] == "MISS"
        assert "x-cache-reason" not in response.headers
        assert response.headers["cache-control"] == "public, s-maxage=300, stale-while-revalidate=600"
        assert response.headers["x-ratelimit-limit"] == "10"
        assert response.headers["x-ratelimit-remaining"] == "9"

        assert await app.state.repository.list_available_dates() == [TODAY]
        stored = json.loads(await blob_store.get(f"snapshots/{TODAY}.json"))
        assert set(stored["players"][0]) == {"rank", "name", "evWon", "evBB100", "won", "hands"}
        assert json.loads(await blob_store.get("countries.json")) == {"Alice": None, "Bob": None}

    async def test_unchanged_source_served_from_cache(self, client, scraper):
        await client.get("/leaderboard")
        response = await client.get("/leaderboard")

        assert response.headers["x-cache"] == "HIT"
        assert response.headers["x-cache-reason"] == REASON_WEBPAGE_UNCHANGED
        assert scraper.fetch_calls == 1

    async def test_changed_source_recomputes_once(self, client, scraper):
        await client.get("/leaderboard")
        scraper.fingerprint = "January 15, 11:00 UTC"
        scraper.result = ScrapeResult(players=[create_player(1, "Alice")], webpage_timestamp=scraper.fingerprint)

        changed = await client.get("/leaderboard")
        again = await client.get("/leaderboard")

        assert changed.headers["x-cache"] == "MISS"
        assert changed.json()["webpageTimestamp"] == "January 15, 11:00 UTC"
        assert again.headers["x-cache"] == "HIT"
        assert scraper.fetch_calls == 2

    async def test_failed_probe_uses_time_fallback(self, client, scraper):
        await client.get("/leaderboard")
        scraper.fingerprint = None

        response = await client.get("/leaderboard")

        assert response.headers["x-cache"] == "HIT"
        assert response.headers["x-cache-reason"] == REASON_TIME_FALLBACK

    async def test_refresh_failure_serves_stale_with_warning(self, client, scraper):
        await client.get("/leaderboard")
        scraper.fingerprint = "moved on"
        scraper.error = ScrapeError("source down")

        response = await client.get("/leaderboard")

        assert response.status_code == 200
        assert response.headers["x-cache"] == "STALE"
        assert response.json()["warning"] == STALE_WARNING
        assert len(response.json()["players"]) == 2

    async def test_oversized_page_serves_stale(self, app, client, scraper):
        await client.get("/leaderboard")
        await app.state.background.drain()
        scraper.fingerprint = "January 15, 11:00 UTC"
        scraper.result = ScrapeResult(
            players=[create_player(rank, f"Player {rank}") for rank in range(1, MAX_PLAYERS + 2)],
            webpage_timestamp=scraper.fingerprint,
        )

        response = await client.get("/leaderboard")

        assert response.status_code == 200
        assert response.headers["x-cache"] == "STALE"
        assert response.json()["warning"] == STALE_WARNING
        assert [p["name"] for p in response.json()["players"]] == ["Alice", "Bob"]

    async def test_failure_without_cache_is_500(self, client, scraper):
        scraper.error = ScrapeError("source down")

        response = await client.get("/leaderboard")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch leaderboard data"}

    async def test_empty_page_is_500(self, app, client, scraper):
        scraper.result = ScrapeResult(players=[], webpage_timestamp=PAGE_TIMESTAMP)

        response = await client.get("/leaderboard")
        await app.state.background.drain()

        assert response.status_code == 500
        assert await app.state.repository.list_available_dates() == []

    async def test_previous_day_changes(self, app, client):
        await app.state.repository.save_snapshot(create_snapshot(YESTERDAY))

        body = (await client.get("/leaderboard")).json()

        assert body["hasPreviousDayData"] is True
        assert body["previousDayDate"] == YESTERDAY
        alice = body["players"][0]
        assert alice["evWonChange"] == 15.0
        assert alice["handsChange"] == 50
        assert alice["rankChange"] == 0

    async def test_rate_limited_after_ten_requests(self, client):
        for _ in range(10):
            assert (await client.get("/leaderboard")).status_code == 200

        limited = await client.get("/leaderboard")
        other_client = await client.get("/leaderboard", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

        assert limited.status_code == 429
        assert limited.json() == {"error": "Rate limit exceeded. Please try again later."}
        assert limited.headers["retry-after"] == "60"
        assert limited.headers["x-ratelimit-remaining"] == "0"
        assert other_client.status_code == 200

    async def test_revalidate_forces_recompute(self, client, scraper):
        await client.get("/leaderboard")

        response = await client.post("/revalidate-cache")
        after = await client.get("/leaderboard")

        assert response.json()["success"] is True
        assert response.headers["cache-control"] == "no-store, must-revalidate"
        assert after.headers["x-cache"] == "MISS"
        assert scraper.fetch_calls == 2


class TestHistoryEndpoints:
    async def test_empty_history(self, client):
        response = await client.get("/history")

        assert response.status_code == 200
        assert response.json() == {"snapshots": [], "count": 0}

    async def test_lists_snapshots_newest_first(self, app, client):
        await app.state.repository.save_snapshot(create_snapshot("2025-01-13"))
        await app.state.repository.save_snapshot(create_snapshot(YESTERDAY))

        body = (await client.get("/history/")).json()

        assert body["count"] == 2
        assert body["snapshots"][0] == {
            "date": YESTERDAY,
            "webpageTimestamp": "January 14, 10:00 UTC",
            "capturedAt": "2025-01-14T12:00:00Z",
        }

    async def test_history_list_falls_back_to_listing(self, client, blob_store):
        await put_raw_snapshot(blob_store, create_snapshot("2025-01-13"))

        body = (await client.get("/history")).json()

        assert [s["date"] for s in body["snapshots"]] == ["2025-01-13"]

    async def test_snapshot_for_date(self, app, client):
        await app.state.repository.save_snapshot(create_snapshot(YESTERDAY))

        response = await client.get(f"/history/{YESTERDAY}")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=86400"
        body = response.json()
        assert body["isHistorical"] is True
        assert body["hasPreviousDayData"] is False
        assert body["previousDayDate"] is None
        assert [p["name"] for p in body["players"]] == ["Alice", "Bob"]

    @pytest.mark.parametrize("date", ["2025-13-40", "20250114", "latest", "2025-1-14"])
    async def test_invalid_date_is_400(self, client, date):
        response = await client.get(f"/history/{date}")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid date format. Expected YYYY-MM-DD"}

    async def test_missing_date_is_404(self, client):
        response = await client.get("/history/2024-12-31")

        assert response.status_code == 404
        assert response.json() == {"error": "Snapshot not found for this date"}


class TestMaintenanceEndpoints:
    async def test_rebuild_index_refreshes_history(self, client, blob_store):
        assert (await client.get("/history")).json()["count"] == 0
        await put_raw_snapshot(blob_store, create_snapshot("2025-01-13"))
        assert (await client.get("/history")).json()["count"] == 0

        response = await client.post("/rebuild-index")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store, must-revalidate"
        body = response.json()
        assert body["success"] is True
        assert body["successCount"] == 1
        assert body["dateRange"] == {"newest": "2025-01-13", "oldest": "2025-01-13"}
        assert (await client.get("/history")).json()["count"] == 1

    async def test_rebuild_accepts_get(self, client):
        response = await client.get("/rebuild-index")

        assert response.status_code == 200
        assert response.json()["totalSnapshots"] == 0

    async def test_debug_snapshots_reports_drift(self, client, blob_store):
        await put_raw_snapshot(blob_store, create_snapshot("2025-01-13"))
        await blob_store.put(INDEX_PATH, b'{"snapshots": [], "lastUpdated": "2025-01-10T00:00:00Z"}')

        body = (await client.get("/debug-snapshots")).json()

        assert body["inSync"] is False
        assert body["missingInIndex"] == ["2025-01-13"]
        assert body["index"]["exists"] is True


class TestPagesAndHeaders:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.json() == {"status": "ok"}

    async def test_index_page(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert SOURCE_URL in response.text
        assert "/static/app.js" in response.text

    async def test_static_assets(self, client):
        assert (await client.get("/static/app.js")).status_code == 200
        assert (await client.get("/static/styles.css")).status_code == 200

    async def test_security_headers_on_every_response(self, client):
        for path in ("/", "/health", "/history/nope"):
            response = await client.get(path)
            assert response.headers["x-content-type-options"] == "nosniff"
            assert response.headers["x-frame-options"] == "DENY"
            assert "frame-ancestors 'none'" in response.headers["content-security-policy"]

    async def test_cors_allows_configured_origin(self, client):
        allowed = await client.get("/health", headers={"Origin": "http://frontend.test"})
        other = await client.get("/health", headers={"Origin": "http://elsewhere.test"})

        assert allowed.headers["access-control-allow-origin"] == "http://frontend.test"
        assert "access-control-allow-origin" not in other.headers
