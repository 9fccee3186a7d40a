"""
Upcoming refresh for EMS events.

One pass from today through the rolling horizon (today + 6 months). The
window overlaps what the continuous loop tracks, so updates are expected
and simply versioned. Scheduling repeated passes is left to the caller.
"""

import logging
from datetime import date
from typing import Callable, Optional

from .activity_log import ActivityLog
from .config import UPCOMING_CONFIG, ScraperConfig
from .database import EMSDatabase
from .dates import horizon_end, iter_days
from .fetcher import DayFetcher
from .historical_scraper import ProgressCallback
from .models import ScrapeStats
from .rate_limit import RequestPacer

logger = logging.getLogger(__name__)


class UpcomingScraper:
    """
    Best-effort refresh of the upcoming window.

    Example:
        scraper = UpcomingScraper(fetcher, db, pacer)
        stats = await scraper.scrape_upcoming()
        print(f"{stats.inserted} new, {stats.updated} updated")
    """

    def __init__(
        self,
        fetcher: DayFetcher,
        db: EMSDatabase,
        pacer: RequestPacer,
        activity: Optional[ActivityLog] = None,
        config: ScraperConfig = UPCOMING_CONFIG,
        today: Callable[[], date] = date.today,
    ):
        self.fetcher = fetcher
        self.db = db
        self.pacer = pacer
        self.activity = activity if activity is not None else ActivityLog()
        self.config = config
        self._today = today

    def default_range(self) -> tuple[date, date]:
        """Today through the rolling horizon."""
        today = self._today()
        return today, horizon_end(today, self.config.horizon_months)

    async def scrape_date_range(
        self,
        start_date: date,
        end_date: date,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScrapeStats:
        """
        Fetch and upsert every day from start_date through end_date.

        A failed day is logged and skipped; the run always completes.
        """
        stats = ScrapeStats()

        for day in iter_days(start_date, end_date):
            try:
                result = await self.fetcher.fetch_day(day)
                stats.total_events += len(result.events)
                stats.violations.extend(result.violations)

                day_stats = ScrapeStats()
                for event in result.events:
                    day_stats.record(self.db.upsert_event(event))
                self.db.touch_last_checked(result.event_ids)

                stats.inserted += day_stats.inserted
                stats.updated += day_stats.updated
                stats.unchanged += day_stats.unchanged
                stats.total_changes += day_stats.total_changes
                stats.total_days += 1

                self.activity.log(
                    f"Upcoming {day.isoformat()}: {len(result.events)} events "
                    f"({day_stats.inserted} new, {day_stats.updated} updated, "
                    f"{day_stats.total_changes} changes)",
                    "success",
                )

            except Exception as e:
                logger.exception(f"Failed to scrape {day.isoformat()}: {e}")
                stats.failed_days.append(day)
                self.activity.log(f"Upcoming {day.isoformat()} failed: {e}", "error")
                continue

            if progress_callback:
                await progress_callback(day, stats)

            if day < end_date:
                await self.pacer.wait(result.request_started_at)

        return stats

    async def scrape_upcoming(
        self,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScrapeStats:
        """Refresh today through the rolling horizon, inclusive."""
        start_date, end_date = self.default_range()
        logger.info(
            f"Starting upcoming scrape: {start_date.isoformat()} to {end_date.isoformat()}"
        )

        stats = await self.scrape_date_range(start_date, end_date, progress_callback)

        logger.info(
            f"Upcoming scrape complete: {stats.total_days} days, "
            f"{stats.total_events} events, {stats.inserted} new, "
            f"{stats.updated} updated, {stats.total_changes} changes, "
            f"{len(stats.violations)} field violations"
        )
        return stats
