"""
Async HTTP client for the EMS Web App BrowseEvents API.

Provides:
- Session (anti-forgery token) acquisition with lazy expiry checks
- Generic retry with exponential backoff, resetting the session on auth errors
- The per-day bulk event query and its double-encoded JSON envelope
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import ScraperConfig
from .models import RawEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EMSAPIError(Exception):
    """Base exception for EMS API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EMSAuthError(EMSAPIError):
    """Raised on 401/403; the cached session token is no longer accepted."""
    pass


class RetryExhaustedError(EMSAPIError):
    """Raised when an operation still fails after the final retry attempt."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        super().__init__(
            f"Failed to {operation.lower()} after {attempts} attempts: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


def is_session_error(error: BaseException) -> bool:
    """True for errors that mean the session token must be re-acquired."""
    return isinstance(error, EMSAuthError)


@dataclass
class FetchResult:
    """Events returned by one bulk query, plus when the request began."""
    events: list[RawEvent]
    request_started_at: float
    # Ids of records that came back but failed validation
    unparsed_ids: set[int] = field(default_factory=set)


class EMSClient:
    """
    Async client for the EMS BrowseEvents endpoint.

    The remote API expects browser-like headers, a session cookie and the
    anti-forgery token scraped from the BrowseEvents page. The token is
    refreshed lazily once it is older than `config.token_ttl`.

    Example:
        async with EMSClient(config) as client:
            await client.ensure_session()
            result = await client.fetch_events(date(2025, 3, 1))
    """

    BROWSE_PAGE = "/BrowseEvents.aspx"
    BROWSE_API = "/ServerApi.aspx/BrowseEvents"
    TOKEN_PATTERN = re.compile(r'name="deaCSRFToken"[^>]*value="([^"]+)"')
    TIMEZONE_ID = "69"

    USER_AGENT = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
    )
    API_HEADERS = {
        "Accept": "application/json, text/javascript, */*; q=0.01",
        "Accept-Language": "en-US,en;q=0.9",
        "Content-Type": "application/json; charset=UTF-8",
        "sec-ch-ua": '"Not)A;Brand";v="8", "Chromium";v="138", "Google Chrome";v="138"',
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"macOS"',
        "sec-fetch-dest": "empty",
        "sec-fetch-mode": "cors",
        "sec-fetch-site": "same-origin",
        "X-Requested-With": "XMLHttpRequest",
    }

    def __init__(
        self,
        config: ScraperConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the EMS API client.

        Args:
            config: Scraper configuration (retry, timeout and token settings)
            transport: Optional httpx transport (tests pass a MockTransport)
            sleep: Coroutine used for backoff pauses
            clock: Monotonic clock used for token age and request timing
        """
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None
        self._token = ""
        self._token_acquired_at = 0.0

    async def __aenter__(self) -> "EMSClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"User-Agent": self.USER_AGENT},
            timeout=self.config.request_timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def token(self) -> str:
        """Currently cached anti-forgery token (empty if none)."""
        return self._token

    def is_token_expired(self) -> bool:
        """True if no token is cached or it has outlived the configured TTL."""
        if not self._token:
            return True
        return self._clock() - self._token_acquired_at > self.config.token_ttl

    def reset_session(self) -> None:
        """Drop the cached token and session cookies."""
        self._token = ""
        self._token_acquired_at = 0.0
        if self._client:
            self._client.cookies.clear()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(
            self.config.base_delay * self.config.backoff_base ** (attempt - 1),
            self.config.max_delay,
        )

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        should_reset_session: Optional[Callable[[BaseException], bool]] = None,
    ) -> T:
        """
        Run an async operation with bounded retries and exponential backoff.

        Args:
            operation: Zero-argument coroutine function to run
            name: Human readable operation name used in logs and errors
            should_reset_session: Predicate; when it returns True for a
                failure, the cached session is cleared before the next try

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: If every attempt failed
        """

        def after_attempt(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                f"{name} attempt {retry_state.attempt_number}/"
                f"{self.config.max_retries} failed: {error}"
            )
            if should_reset_session and should_reset_session(error):
                logger.info("Resetting session after auth failure")
                self.reset_session()

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.info(f"Retrying {name.lower()} in {retry_state.next_action.sleep:.1f}s...")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(
                multiplier=self.config.base_delay,
                exp_base=self.config.backoff_base,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception_type(Exception),
            after=after_attempt,
            before_sleep=before_sleep,
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await operation()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise RetryExhaustedError(
                name, e.last_attempt.attempt_number, last_error
            ) from last_error

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        return self._client

    def _handle_response(self, response: httpx.Response) -> None:
        """
        Raise the appropriate exception for an error response.

        Raises:
            EMSAuthError: On 401/403
            EMSAPIError: For any other HTTP error
        """
        if response.status_code in (401, 403):
            raise EMSAuthError(
                f"HTTP {response.status_code}: session rejected",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise EMSAPIError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

    async def _request_token(self) -> str:
        client = self._require_client()
        response = await client.get(self.BROWSE_PAGE)
        self._handle_response(response)

        match = self.TOKEN_PATTERN.search(response.text)
        if match:
            self._token = match.group(1)
        else:
            logger.warning("No anti-forgery token found on BrowseEvents page")

        self._token_acquired_at = self._clock()
        logger.info("Session established successfully")
        return self._token

    async def acquire_token(self) -> str:
        """Fetch a fresh anti-forgery token (with retry)."""
        return await self.with_retry(self._request_token, "Get session token")

    async def ensure_session(self) -> None:
        """Acquire a token if none is cached or the cached one expired."""
        if self.is_token_expired():
            await self.acquire_token()

    @classmethod
    def build_request_body(cls, day: date) -> dict:
        """Filter payload for the BrowseEvents query covering one day."""
        end_day = day + timedelta(days=1)
        return {
            "filterData": {
                "filters": [
                    {
                        "filterName": "StartDate",
                        "value": f"{day.isoformat()} 00:00:00",
                        "displayValue": "",
                        "filterType": 3,
                    },
                    {
                        "filterName": "EndDate",
                        "value": f"{end_day.isoformat()} 00:00:00",
                        "displayValue": "",
                        "filterType": 3,
                    },
                    {
                        "filterName": "TimeZone",
                        "value": cls.TIMEZONE_ID,
                        "displayValue": "",
                        "filterType": 2,
                    },
                    {
                        "filterName": "RollupEventsToReservation",
                        "value": "false",
                        "displayValue": "",
                    },
                    {
                        "filterName": "ResultType",
                        "value": "Daily",
                        "displayValue": "",
                    },
                ]
            }
        }

    @staticmethod
    def parse_envelope(data: dict) -> list[dict]:
        """
        Unwrap the API envelope.

        The body looks like {"d": "<JSON string>"}; the inner string holds
        DailyBookingResults (or MonthlyBookingResults).
        """
        if not isinstance(data, dict) or not isinstance(data.get("d"), str):
            raise EMSAPIError("Malformed response envelope: missing 'd' payload")

        payload = json.loads(data["d"])
        return (
            payload.get("DailyBookingResults")
            or payload.get("MonthlyBookingResults")
            or []
        )

    async def fetch_events(self, day: date) -> FetchResult:
        """
        Fetch every event the API returns for a one-day window.

        The result can include events from neighboring dates; callers filter.

        Args:
            day: Calendar date to query

        Returns:
            FetchResult with parsed events and the request start time
        """
        client = self._require_client()

        async def do_fetch() -> FetchResult:
            # A previous attempt may have dropped a rejected token
            if self.is_token_expired():
                await self._request_token()

            logger.debug(f"Fetching events for {day.isoformat()}")
            request_started_at = self._clock()

            headers = {
                **self.API_HEADERS,
                "Referer": f"{self.config.base_url}{self.BROWSE_PAGE}",
                "dea-csrftoken": self._token,
            }
            response = await client.post(
                self.BROWSE_API,
                headers=headers,
                json=self.build_request_body(day),
            )
            self._handle_response(response)

            result = FetchResult(events=[], request_started_at=request_started_at)
            for raw in self.parse_envelope(response.json()):
                try:
                    result.events.append(RawEvent.model_validate(raw))
                except ValidationError as e:
                    logger.warning(f"Failed to parse event {raw.get('Id')}: {e}")
                    if isinstance(raw.get("Id"), int):
                        result.unparsed_ids.add(raw["Id"])
                    continue

            logger.debug(f"Fetched {len(result.events)} events for {day.isoformat()}")
            return result

        return await self.with_retry(do_fetch, "Fetch events", is_session_error)
