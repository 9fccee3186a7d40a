"""
EMS Event Tracker - versioned scraper for the EMS room reservation system

This package pulls the public BrowseEvents feed one day at a time and keeps
a versioned SQLite copy of every event, with full change history.

Features:
- Session token management with automatic re-acquisition
- Bounded retries with exponential backoff
- Latency-aware request pacing
- Field-level change detection and version history
- No-longer-found tracking for cancelled or moved events
- Historical backfill, upcoming refresh and a continuous rolling loop
- Constant-field drift reporting
"""

from .activity_log import ActivityEntry, ActivityLog
from .api_client import EMSAPIError, EMSAuthError, EMSClient, RetryExhaustedError
from .config import CONTINUOUS_CONFIG, HISTORICAL_CONFIG, UPCOMING_CONFIG, ScraperConfig
from .context import ScraperContext, open_context
from .continuous_scraper import ContinuousScraper, ScraperStatus
from .database import EMSDatabase, EventNotFoundError, ScraperCursor
from .fetcher import DayFetcher, DayResult
from .historical_scraper import HistoricalOverlapError, HistoricalScraper
from .models import COMPARABLE_FIELDS, FieldChange, RawEvent, ScrapeStats, UpsertResult
from .rate_limit import RequestPacer
from .upcoming_scraper import UpcomingScraper

__all__ = [
    # Configuration
    "ScraperConfig",
    "CONTINUOUS_CONFIG",
    "HISTORICAL_CONFIG",
    "UPCOMING_CONFIG",
    # Models
    "RawEvent",
    "FieldChange",
    "UpsertResult",
    "ScrapeStats",
    "COMPARABLE_FIELDS",
    # API client
    "EMSClient",
    "EMSAPIError",
    "EMSAuthError",
    "RetryExhaustedError",
    # Storage
    "EMSDatabase",
    "EventNotFoundError",
    "ScraperCursor",
    # Scraping
    "DayFetcher",
    "DayResult",
    "RequestPacer",
    "HistoricalScraper",
    "HistoricalOverlapError",
    "UpcomingScraper",
    "ContinuousScraper",
    "ScraperStatus",
    # Wiring
    "ScraperContext",
    "open_context",
    "ActivityLog",
    "ActivityEntry",
]
__version__ = "1.0.0"
