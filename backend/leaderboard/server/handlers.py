"""HTTP handlers for the leaderboard API, maintenance endpoints and browser UI."""

from __future__ import annotations

from datetime import UTC, datetime
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError
from starlette.responses import JSONResponse
from starlette.templating import Jinja2Templates

from leaderboard.errors import RepositoryError
from leaderboard.scraper import ScrapeError
from leaderboard.server.types import (
    HistoricalSnapshotResponse,
    HistoryListItem,
    HistoryListResponse,
    build_leaderboard_response,
)
from leaderboard.snapshots.source import select_snapshot_source
from shared.validators import parse_iso_date

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from leaderboard.cache import LeaderboardCache, TimedValueCache
    from leaderboard.rate_limit import FixedWindowRateLimiter
    from leaderboard.snapshots.maintenance import IndexMaintenance
    from leaderboard.snapshots.repository import SnapshotRepository

logger = structlog.get_logger()

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
STATIC_DIR = Path(__file__).resolve().parent / "static"

LEADERBOARD_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"
HISTORY_LIST_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"
HISTORY_SNAPSHOT_CACHE_CONTROL = "public, max-age=86400"
NO_STORE = {"Cache-Control": "no-store, must-revalidate"}


def create_templates() -> Jinja2Templates:
    return Jinja2Templates(directory=str(TEMPLATES_DIR))


def client_address(request: Request) -> str:
    """Best-effort client address: first X-Forwarded-For hop, then X-Real-IP, then the peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


def _log_request(ip: str, status: str, details: str) -> None:
    log = logger.info if status != "error" else logger.warning
    log("leaderboard request", endpoint="/leaderboard", ip=ip, status=status, details=details)


async def leaderboard(request: Request) -> Response:
    """GET /leaderboard - current standings with day-over-day changes."""
    limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
    cache: LeaderboardCache = request.app.state.leaderboard_cache
    ip = client_address(request)

    if not limiter.consume(ip):
        _log_request(ip, "rate-limited", "Rate limit exceeded")
        return JSONResponse(
            {"error": "Rate limit exceeded. Please try again later."},
            status_code=HTTPStatus.TOO_MANY_REQUESTS,
            headers={
                "Retry-After": str(round(limiter.window_seconds)),
                "X-RateLimit-Limit": str(limiter.max_requests),
                "X-RateLimit-Remaining": "0",
            },
        )

    try:
        result = await cache.get()
    except ScrapeError as e:
        _log_request(ip, "error", str(e))
        return JSONResponse({"error": "Failed to fetch leaderboard data"}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    try:
        response = build_leaderboard_response(result.view, warning=result.warning)
    except ValidationError:
        logger.exception("leaderboard response failed validation")
        _log_request(ip, "error", "Response validation failed")
        return JSONResponse({"error": "Internal server error"}, status_code=HTTPStatus.INTERNAL_SERVER_ERROR)

    headers = {
        "Cache-Control": LEADERBOARD_CACHE_CONTROL,
        "X-Cache": result.status,
        "X-RateLimit-Limit": str(limiter.max_requests),
        "X-RateLimit-Remaining": str(limiter.remaining(ip)),
    }
    if result.reason:
        headers["X-Cache-Reason"] = result.reason
    _log_request(ip, "success", f"{len(response.players)} players, cache {result.status}")
    return JSONResponse(response.to_wire(), headers=headers)


async def history_list(request: Request) -> Response:
    """GET /history - dates with a stored snapshot, newest first."""
    repository: SnapshotRepository = request.app.state.repository
    history_cache: TimedValueCache[HistoryListResponse] = request.app.state.history_cache

    async def load() -> HistoryListResponse:
        source = await select_snapshot_source(repository)
        items = [HistoryListItem.from_entry(entry) for entry in await source.entries()]
        return HistoryListResponse(snapshots=items, count=len(items))

    response = await history_cache.get_or_load(load)
    return JSONResponse(response.to_wire(), headers={"Cache-Control": HISTORY_LIST_CACHE_CONTROL})


async def history_snapshot(request: Request) -> Response:
    """GET /history/{date} - the raw snapshot stored for one day."""
    repository: SnapshotRepository = request.app.state.repository
    date = request.path_params["date"]

    if parse_iso_date(date) is None:
        return JSONResponse(
            {"error": "Invalid date format. Expected YYYY-MM-DD"},
            status_code=HTTPStatus.BAD_REQUEST,
        )

    snapshot = await repository.load_snapshot(date)
    if snapshot is None:
        return JSONResponse({"error": "Snapshot not found for this date"}, status_code=HTTPStatus.NOT_FOUND)

    response = HistoricalSnapshotResponse(
        date=snapshot.date,
        players=snapshot.players,
        captured_at=snapshot.captured_at,
        webpage_timestamp=snapshot.webpage_timestamp,
    )
    return JSONResponse(response.to_wire(), headers={"Cache-Control": HISTORY_SNAPSHOT_CACHE_CONTROL})


async def rebuild_index(request: Request) -> Response:
    """GET|POST /rebuild-index - regenerate the snapshot index from storage."""
    maintenance: IndexMaintenance = request.app.state.maintenance
    history_cache: TimedValueCache[HistoryListResponse] = request.app.state.history_cache

    try:
        summary = await maintenance.rebuild()
    except RepositoryError as e:
        logger.error("snapshot index rebuild failed", error=str(e))
        return JSONResponse(
            {"success": False, "error": str(e)},
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            headers=NO_STORE,
        )

    history_cache.reset()
    return JSONResponse(
        {**summary.to_report(), "message": f"Rebuilt index with {summary.success_count} snapshot(s)"},
        headers=NO_STORE,
    )


async def debug_snapshots(request: Request) -> Response:
    """GET|POST /debug-snapshots - compare the index against storage without changing either."""
    maintenance: IndexMaintenance = request.app.state.maintenance

    try:
        diagnosis = await maintenance.diagnose()
    except RepositoryError as e:
        logger.error("snapshot diagnosis failed", error=str(e))
        return JSONResponse(
            {"success": False, "error": str(e)},
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            headers=NO_STORE,
        )
    return JSONResponse(diagnosis.to_report(), headers=NO_STORE)


async def revalidate_cache(request: Request) -> Response:
    """GET|POST /revalidate-cache - drop the in-process leaderboard and history caches."""
    request.app.state.leaderboard_cache.reset()
    request.app.state.history_cache.reset()
    logger.info("caches revalidated")
    return JSONResponse(
        {
            "success": True,
            "message": "Cache revalidated successfully",
            "revalidated": ["leaderboard", "snapshot-list"],
            "timestamp": datetime.now(tz=UTC).isoformat(),
        },
        headers=NO_STORE,
    )


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def index_page(request: Request) -> Response:
    """GET / - browser UI; data is loaded client-side from the JSON API."""
    templates: Jinja2Templates = request.app.state.templates
    return templates.TemplateResponse(request, "index.html", {"source_url": request.app.state.settings.source_url})
