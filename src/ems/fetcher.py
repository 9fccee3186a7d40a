"""
Day fetcher: one bulk query per calendar date.

The BrowseEvents query for a day also returns bookings from neighboring
dates, so results are filtered to events whose local start falls on the
requested date before anything is stored.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from .api_client import EMSClient
from .database import EMSDatabase
from .models import RawEvent

logger = logging.getLogger(__name__)


@dataclass
class DayResult:
    """Events for one date plus the data the drivers need afterwards."""
    day: date
    events: list[RawEvent]
    request_started_at: float
    total_returned: int = 0
    violations: list[str] = field(default_factory=list)
    # Unparsed records have no trusted date, so these are not filtered
    unparsed_ids: set[int] = field(default_factory=set)

    @property
    def event_ids(self) -> set[int]:
        return {event.Id for event in self.events}


class DayFetcher:
    """
    Session-aware fetch of a single day's events.

    This is the capability shared by every scrape driver: it makes sure a
    session token exists, runs the (retried) bulk query, filters to the
    target date and records constant-field drift.

    Example:
        fetcher = DayFetcher(client, db)
        result = await fetcher.fetch_day(date(2025, 3, 1))
        print(len(result.events), result.violations)
    """

    def __init__(
        self,
        client: EMSClient,
        db: EMSDatabase,
        constant_fields: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize the day fetcher.

        Args:
            client: Open EMSClient
            db: Database used to record constant-field violations
            constant_fields: Expected values by API field name
                (default: the client's configured map)
        """
        self.client = client
        self.db = db
        self.constant_fields = (
            constant_fields
            if constant_fields is not None
            else client.config.constant_fields
        )

    async def ensure_session(self) -> None:
        await self.client.ensure_session()

    async def fetch_day(self, day: date) -> DayResult:
        """
        Fetch, filter and drift-check the events starting on a date.

        Args:
            day: Calendar date to scrape

        Returns:
            DayResult with events in API order

        Raises:
            RetryExhaustedError: If the session or fetch could not be completed
        """
        await self.ensure_session()

        fetched = await self.client.fetch_events(day)
        events = [event for event in fetched.events if event.start_date == day]

        logger.info(
            f"Filtered events: {len(fetched.events)} total -> "
            f"{len(events)} on target date ({day.isoformat()})"
        )

        violations: list[str] = []
        for event in events:
            violations.extend(self.db.check_constant_fields(event, self.constant_fields))

        if violations:
            logger.warning(
                f"{len(violations)} constant field violations on {day.isoformat()}"
            )

        return DayResult(
            day=day,
            events=events,
            request_started_at=fetched.request_started_at,
            total_returned=len(fetched.events),
            violations=violations,
            unparsed_ids=fetched.unparsed_ids,
        )
