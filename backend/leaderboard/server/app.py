from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from leaderboard.assembler import LeaderboardAssembler
from leaderboard.background import BackgroundTasks
from leaderboard.cache import LeaderboardCache, TimedValueCache
from leaderboard.countries import CountryDirectory
from leaderboard.rate_limit import FixedWindowRateLimiter
from leaderboard.scraper import LeaderboardScraper
from leaderboard.server.handlers import (
    STATIC_DIR,
    create_templates,
    debug_snapshots,
    health,
    history_list,
    history_snapshot,
    index_page,
    leaderboard,
    rebuild_index,
    revalidate_cache,
)
from leaderboard.server.middleware import SecurityHeadersMiddleware, SlashNormalizationMiddleware
from leaderboard.server.settings import LeaderboardSettings, StorageBackend
from leaderboard.snapshots.maintenance import IndexMaintenance
from leaderboard.snapshots.repository import SnapshotRepository, utc_now
from shared.blob import HttpBlobStore, LocalBlobStore
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from datetime import datetime

    from leaderboard.assembler import Scraper
    from shared.blob import BlobStore


def create_store(settings: LeaderboardSettings) -> BlobStore:
    if settings.storage_backend == StorageBackend.HTTP:
        return HttpBlobStore(
            api_url=settings.blob_api_url,
            public_url=settings.blob_public_url,
            token=settings.blob_token,
            timeout=settings.fetch_timeout_seconds,
        )
    return LocalBlobStore(settings.storage_dir)


def create_app(
    settings: LeaderboardSettings | None = None,
    store: BlobStore | None = None,
    scraper: Scraper | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = LeaderboardSettings()
    if store is None:
        store = create_store(settings)
    if scraper is None:
        scraper = LeaderboardScraper(
            source_url=settings.source_url,
            user_agent=settings.user_agent,
            fetch_timeout=settings.fetch_timeout_seconds,
            probe_timeout=settings.probe_timeout_seconds,
        )

    background = BackgroundTasks()
    repository = SnapshotRepository(store, clock=clock)
    countries = CountryDirectory(store)
    assembler = LeaderboardAssembler(scraper, repository, countries, background, clock=clock)

    maintenance_methods = ["GET", "POST"]
    routes = [
        Route("/", index_page, methods=["GET"], name="index_page"),
        Route("/health", health, methods=["GET"], name="health"),
        Route("/leaderboard", leaderboard, methods=["GET"], name="leaderboard"),
        Route("/history", history_list, methods=["GET"], name="history_list"),
        Route("/history/{date}", history_snapshot, methods=["GET"], name="history_snapshot"),
        Route("/rebuild-index", rebuild_index, methods=maintenance_methods, name="rebuild_index"),
        Route("/debug-snapshots", debug_snapshots, methods=maintenance_methods, name="debug_snapshots"),
        Route("/revalidate-cache", revalidate_cache, methods=maintenance_methods, name="revalidate_cache"),
        Mount("/static", app=StaticFiles(directory=str(STATIC_DIR)), name="static"),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        yield
        await background.drain()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(SlashNormalizationMiddleware)  # type: ignore[arg-type]
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(SecurityHeadersMiddleware)  # type: ignore[arg-type]

    app.state.settings = settings
    app.state.background = background
    app.state.repository = repository
    app.state.countries = countries
    app.state.maintenance = IndexMaintenance(repository)
    app.state.leaderboard_cache = LeaderboardCache(
        compute=assembler.build,
        probe=scraper.probe_timestamp,
        ttl_seconds=settings.cache_ttl_seconds,
        max_age_seconds=settings.cache_max_age_seconds,
    )
    app.state.history_cache = TimedValueCache(settings.history_cache_ttl_seconds)
    app.state.rate_limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.state.templates = create_templates()

    logger.info("leaderboard server ready", storage_backend=settings.storage_backend, source_url=settings.source_url)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory function for uvicorn --factory leaderboard.server.app:get_app."""
    settings = LeaderboardSettings()
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings)
