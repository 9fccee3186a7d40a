"""
Historical backfill for EMS events.

Walks a fixed, closed date range one day at a time and inserts every event
found. The backfill must only ever create events: finding one that already
exists means the range overlaps data the live scrapers are versioning, and
continuing would write misleading history. That case raises
HistoricalOverlapError, which is never swallowed by the per-day handler.
"""

import logging
from datetime import date
from typing import Awaitable, Callable, Iterable, Optional

from .activity_log import ActivityLog
from .config import HISTORICAL_CONFIG, ScraperConfig
from .database import EMSDatabase
from .dates import add_months, iter_days
from .fetcher import DayFetcher
from .models import ScrapeStats
from .rate_limit import RequestPacer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[date, ScrapeStats], Awaitable[None]]


class HistoricalOverlapError(RuntimeError):
    """The backfill range reached events that are already stored."""

    def __init__(self, day: date, event_ids: Iterable[int]):
        self.day = day
        self.event_ids = sorted(event_ids)
        super().__init__(
            f"Historical scrape found {len(self.event_ids)} existing event(s) on "
            f"{day.isoformat()} (first: {self.event_ids[0]}). The backfill range "
            "overlaps existing data; move historical_start_date past it."
        )


class HistoricalScraper:
    """
    Insert-only backfill over a closed date range.

    Features:
    - Per-day failures are logged and skipped (not retried within the run)
    - Pacing between days accounts for request latency
    - Halts on the first already-known event

    Example:
        scraper = HistoricalScraper(fetcher, db, pacer)
        stats = await scraper.scrape_date_range(date(2001, 10, 8), date(2001, 12, 31))
    """

    def __init__(
        self,
        fetcher: DayFetcher,
        db: EMSDatabase,
        pacer: RequestPacer,
        activity: Optional[ActivityLog] = None,
        config: ScraperConfig = HISTORICAL_CONFIG,
        today: Callable[[], date] = date.today,
    ):
        self.fetcher = fetcher
        self.db = db
        self.pacer = pacer
        self.activity = activity if activity is not None else ActivityLog()
        self.config = config
        self._today = today

    def default_range(self) -> tuple[date, date]:
        """Configured start date through today plus the lookahead months."""
        end = add_months(self._today(), self.config.historical_lookahead_months)
        return self.config.historical_start_date, end

    async def scrape_date_range(
        self,
        start_date: date,
        end_date: date,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScrapeStats:
        """
        Backfill every day from start_date through end_date.

        Args:
            start_date: First day (inclusive)
            end_date: Last day (inclusive)
            progress_callback: Async callback after each processed day

        Returns:
            Totals for the run

        Raises:
            HistoricalOverlapError: If any fetched event is already stored
        """
        stats = ScrapeStats()

        for day in iter_days(start_date, end_date):
            try:
                result = await self.fetcher.fetch_day(day)
                stats.total_events += len(result.events)
                stats.violations.extend(result.violations)

                existing = self.db.get_existing_ids(result.event_ids)
                if existing:
                    raise HistoricalOverlapError(day, existing)

                for event in result.events:
                    upsert = self.db.upsert_event(event)
                    if upsert.action == "updated":
                        raise HistoricalOverlapError(day, [upsert.event_id])
                    stats.record(upsert)
                self.db.touch_last_checked(result.event_ids)

                stats.total_days += 1
                self.activity.log(
                    f"Historical {day.isoformat()}: {len(result.events)} events "
                    f"({stats.inserted} inserted so far)",
                    "success",
                )

            except HistoricalOverlapError as e:
                self.activity.log(str(e), "error")
                raise

            except Exception as e:
                logger.exception(f"Failed to scrape {day.isoformat()}: {e}")
                stats.failed_days.append(day)
                self.activity.log(f"Historical {day.isoformat()} failed: {e}", "error")
                continue

            if progress_callback:
                await progress_callback(day, stats)

            # No pause after the final day
            if day < end_date:
                await self.pacer.wait(result.request_started_at)

        return stats

    async def scrape_historical(
        self,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScrapeStats:
        """Backfill the configured historical range."""
        start_date, end_date = self.default_range()
        logger.info(
            f"Starting historical scrape: {start_date.isoformat()} to {end_date.isoformat()}"
        )

        stats = await self.scrape_date_range(start_date, end_date, progress_callback)

        logger.info(
            f"Historical scrape complete: {stats.total_days} days, "
            f"{stats.total_events} events, {stats.inserted} new, "
            f"{len(stats.failed_days)} failed days, "
            f"{len(stats.violations)} field violations"
        )
        return stats
