"""
Process context wiring the scraper components together.

Each process builds one context and hands it to whichever drivers it runs;
nothing here is a module-level singleton.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from .activity_log import ActivityLog
from .api_client import EMSClient
from .config import ScraperConfig
from .continuous_scraper import ContinuousScraper
from .database import EMSDatabase
from .fetcher import DayFetcher
from .historical_scraper import HistoricalScraper
from .rate_limit import RequestPacer
from .upcoming_scraper import UpcomingScraper

logger = logging.getLogger(__name__)


@dataclass
class ScraperContext:
    """Open client, database and shared helpers for one process."""
    config: ScraperConfig
    db: EMSDatabase
    client: EMSClient
    fetcher: DayFetcher
    pacer: RequestPacer
    activity: ActivityLog
    today: Callable[[], date] = date.today

    def historical(self) -> HistoricalScraper:
        return HistoricalScraper(
            self.fetcher, self.db, self.pacer, self.activity, self.config, self.today
        )

    def upcoming(self) -> UpcomingScraper:
        return UpcomingScraper(
            self.fetcher, self.db, self.pacer, self.activity, self.config, self.today
        )

    def continuous(self, dry_run: bool = False) -> ContinuousScraper:
        return ContinuousScraper(
            self.fetcher,
            self.db,
            self.pacer,
            self.activity,
            self.config,
            self.today,
            dry_run=dry_run,
        )


@asynccontextmanager
async def open_context(
    config: ScraperConfig,
    db_path: str = "data/ems_events.db",
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    activity: Optional[ActivityLog] = None,
    today: Callable[[], date] = date.today,
    db: Optional[EMSDatabase] = None,
) -> AsyncIterator[ScraperContext]:
    """
    Open a client session and database for the lifetime of the block.

    Args:
        config: Settings for the client, pacer and drivers
        db_path: SQLite file, ignored when db is given
        transport: Optional httpx transport (tests pass a MockTransport)
        sleep: Coroutine used for backoff and pacing pauses
        activity: Shared activity feed (default: a new one)
        today: Returns the current local date
        db: Already-open database to use instead of db_path

    Example:
        async with open_context(CONTINUOUS_CONFIG) as ctx:
            await ctx.continuous().start()
    """
    if db is None:
        db = EMSDatabase(db_path)
    pacer = RequestPacer(
        config.request_interval,
        config.min_request_interval,
        sleep=sleep,
    )

    async with EMSClient(config, transport=transport, sleep=sleep) as client:
        logger.debug(f"Opened EMS session against {config.base_url}")
        yield ScraperContext(
            config=config,
            db=db,
            client=client,
            fetcher=DayFetcher(client, db),
            pacer=pacer,
            activity=activity if activity is not None else ActivityLog(),
            today=today,
        )
