"""
Continuous rolling-window scraper.

Scrapes one day per iteration from the persisted cursor forward, wrapping
back to today once it passes the horizon (today + 6 months), forever. Each
iteration also reconciles presence: events stored for the day but missing
from the fetch are flagged no-longer-found, and flagged events that show up
again (under any date) are cleared.

State machine: STOPPED -> start() -> RUNNING -> stop() -> STOPPED.
Stopping is cooperative; the iteration in flight always completes. Pauses
between iterations (pacing and error cooldown) wake early on stop.

Only one process may drive the loop against a database at a time; the
cursor is last-writer-wins.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from .activity_log import ActivityLog
from .config import CONTINUOUS_CONFIG, ScraperConfig
from .database import EMSDatabase
from .dates import next_rolling_date
from .fetcher import DayFetcher
from .models import ScrapeStats
from .rate_limit import RequestPacer

logger = logging.getLogger(__name__)

SCRAPER_TYPE = "continuous"


@dataclass
class ScraperStatus:
    """Snapshot for the control surface."""
    is_running: bool
    is_enabled: bool
    current_date: Optional[date]
    last_update: Optional[datetime]


@dataclass
class IterationSummary:
    """Counts from one loop iteration."""
    day: date
    request_started_at: float
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    total_changes: int = 0
    reappeared: int = 0
    marked_absent: int = 0
    violations: int = 0

    def describe(self) -> str:
        return (
            f"{self.day.isoformat()}: {self.fetched} events "
            f"({self.inserted} new, {self.updated} updated, "
            f"{self.reappeared} reappeared, {self.marked_absent} marked absent)"
        )


class ContinuousScraper:
    """
    Perpetual scraper over the rolling window.

    Example:
        scraper = ContinuousScraper(fetcher, db, pacer, activity)
        task = asyncio.create_task(scraper.start())
        ...
        scraper.stop()
        await task
    """

    def __init__(
        self,
        fetcher: DayFetcher,
        db: EMSDatabase,
        pacer: RequestPacer,
        activity: Optional[ActivityLog] = None,
        config: ScraperConfig = CONTINUOUS_CONFIG,
        today: Callable[[], date] = date.today,
        dry_run: bool = False,
    ):
        """
        Initialize the continuous scraper.

        Args:
            fetcher: Day fetch capability (session + retry + filter)
            db: Event storage and cursor
            pacer: Computes the pause between iterations
            activity: Ring buffer receiving one entry per iteration
            config: Horizon and error cooldown settings
            today: Returns the current local date
            dry_run: Fetch and log only; no event, marker or cursor writes
        """
        self.fetcher = fetcher
        self.db = db
        self.pacer = pacer
        self.activity = activity if activity is not None else ActivityLog()
        self.config = config
        self.dry_run = dry_run
        self._today = today
        self._running = False
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def next_date(self, current: date) -> date:
        """Day after current, or today once past the rolling horizon."""
        next_day = next_rolling_date(current, self._today(), self.config.horizon_months)
        if next_day <= current:
            logger.info("Reached end of rolling window, looping back to today")
        return next_day

    def _resume_date(self) -> date:
        """Date to scrape next according to the persisted cursor."""
        cursor = self.db.get_cursor(SCRAPER_TYPE)
        if cursor is None:
            today = self._today()
            logger.info(f"First run detected, starting from today: {today.isoformat()}")
            if not self.dry_run:
                self.db.initialize_cursor(SCRAPER_TYPE, today)
            return today

        logger.info(f"Resuming after last position: {cursor.current_date.isoformat()}")
        return self.next_date(cursor.current_date)

    async def _pause(self, seconds: float) -> None:
        """Sleep, waking early if stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass  # Expected - the full pause elapsed

    async def scrape_date(self, day: date) -> IterationSummary:
        """
        Run one iteration for a date.

        Fetches the day, flags vanished events, clears reappeared ones,
        upserts every fetched event and persists the cursor.
        """
        result = await self.fetcher.fetch_day(day)
        fetched_ids = result.event_ids
        summary = IterationSummary(
            day=day,
            request_started_at=result.request_started_at,
            fetched=len(result.events),
            violations=len(result.violations),
        )

        if self.dry_run:
            self.activity.log(f"DRY RUN {summary.describe()}; no changes written")
            return summary

        # A record that failed to parse was still returned, so it has not vanished
        vanished = (
            self.db.get_event_ids_for_date(day) - fetched_ids - result.unparsed_ids
        )
        # Events can resurface filed under a different date than they vanished from
        reappeared = self.db.get_no_longer_found_ids(fetched_ids)

        summary.marked_absent = self.db.mark_no_longer_found(vanished)
        summary.reappeared = self.db.clear_no_longer_found(reappeared)

        day_stats = ScrapeStats()
        for event in result.events:
            day_stats.record(self.db.upsert_event(event))
        self.db.touch_last_checked(fetched_ids)

        summary.inserted = day_stats.inserted
        summary.updated = day_stats.updated
        summary.unchanged = day_stats.unchanged
        summary.total_changes = day_stats.total_changes

        self.db.update_cursor(SCRAPER_TYPE, day)
        self.activity.log(summary.describe(), "success")
        return summary

    async def start(self) -> None:
        """
        Run the loop until stop() is called.

        No-op if the loop is already running. Resumes the day after the
        persisted cursor, or starts at today on first run. Errors inside an
        iteration are logged, followed by a cooldown and a fresh read of the
        cursor; they never end the loop.
        """
        if self._running:
            logger.warning("Continuous scraper is already running")
            return

        self._running = True
        self._stop_event.clear()
        logger.info(
            f"Starting continuous scraper{' (DRY RUN)' if self.dry_run else ''}: "
            f"{self.config.horizon_months}-month rolling window"
        )

        current: Optional[date] = None
        try:
            while not self._stop_event.is_set():
                try:
                    if current is None:
                        current = self._resume_date()
                        if not self.dry_run:
                            self.db.set_cursor_enabled(SCRAPER_TYPE, True, self._today())

                    summary = await self.scrape_date(current)
                    current = self.next_date(current)

                    if not self._stop_event.is_set():
                        await self._pause(self.pacer.delay_after(summary.request_started_at))

                except Exception as e:
                    logger.exception(f"Error in continuous scraping loop: {e}")
                    self.activity.log(
                        f"{current.isoformat() if current else 'startup'} failed: {e}",
                        "error",
                    )
                    logger.info(f"Waiting {self.config.error_cooldown:.0f}s before retrying...")
                    await self._pause(self.config.error_cooldown)
                    # Re-read the cursor on the next pass
                    current = None
        finally:
            self._running = False
            logger.info("Continuous scraper stopped")

    def stop(self) -> None:
        """
        Request a cooperative stop and mark the cursor disabled.

        The iteration in flight finishes first; start() returns afterwards.
        """
        if not self._running:
            logger.warning("Continuous scraper is not running")
            return

        logger.info("Stopping continuous scraper...")
        self._stop_event.set()
        if not self.dry_run:
            self.db.set_cursor_enabled(SCRAPER_TYPE, False, self._today())

    def get_status(self) -> ScraperStatus:
        """Running flag plus the persisted cursor."""
        cursor = self.db.get_cursor(SCRAPER_TYPE)
        return ScraperStatus(
            is_running=self._running,
            is_enabled=cursor.enabled if cursor else False,
            current_date=cursor.current_date if cursor else None,
            last_update=cursor.updated_at if cursor else None,
        )
