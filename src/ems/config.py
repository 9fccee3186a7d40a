"""
Scraper configuration.

Each driver (continuous, historical, upcoming) gets its own preset so that
pacing and retry behavior can be tuned independently. All durations are
in seconds.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, model_validator

DEFAULT_BASE_URL = "https://reservations.ucsd.edu/EmsWebApp"

# Raw API fields that have held the same value across every observed event.
# A mismatch is recorded as an advisory violation, never an error.
DEFAULT_CONSTANT_FIELDS: dict[str, Any] = {
    "EventCount": 1,
    "IsHoliday": False,
    "ShowFloorMap": False,
    "VideoConferenceHost": False,
    "ChangeHost": False,
}


class ScraperConfig(BaseModel):
    """
    Tunable settings shared by all scrape drivers.

    Example:
        config = CONTINUOUS_CONFIG.with_overrides(request_interval=10.0)
    """

    base_url: str = DEFAULT_BASE_URL

    # Rate limiting
    request_interval: float = Field(default=2.0, ge=0)
    min_request_interval: float = Field(default=1.0, ge=0)

    # Retry with exponential backoff
    max_retries: int = Field(default=8, ge=1)
    backoff_base: float = Field(default=1.5, ge=1.0)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)

    request_timeout: float = Field(default=30.0, gt=0)
    token_ttl: float = Field(default=60 * 60, gt=0)

    # Continuous loop
    error_cooldown: float = Field(default=30.0, ge=0)
    horizon_months: int = Field(default=6, ge=1)

    # Historical backfill
    historical_start_date: date = date(2001, 10, 8)
    historical_lookahead_months: int = Field(default=1, ge=0)

    constant_fields: dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_CONSTANT_FIELDS)
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScraperConfig":
        if self.min_request_interval > self.request_interval:
            raise ValueError("min_request_interval cannot exceed request_interval")
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay cannot exceed max_delay")
        return self

    def with_overrides(self, **overrides: Any) -> "ScraperConfig":
        """Return a validated copy with the given (non-None) fields replaced."""
        values = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ScraperConfig.model_validate(values)


CONTINUOUS_CONFIG = ScraperConfig(request_interval=5.0)
HISTORICAL_CONFIG = ScraperConfig(request_interval=2.0)
UPCOMING_CONFIG = ScraperConfig(request_interval=2.0)
