"""
In-memory activity feed for the scrape drivers.

Keeps the most recent entries (one per completed day or loop iteration)
for a status view. Nothing here is persisted; a restart starts empty.
"""

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

logger = logging.getLogger(__name__)

Severity = Literal["info", "success", "error"]

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class ActivityEntry:
    """One line of scraper activity."""
    message: str
    severity: Severity = "info"
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])


class ActivityLog:
    """
    Bounded ring buffer of recent activity, newest first.

    Example:
        activity = ActivityLog(max_entries=100)
        activity.log("2025-03-01: 12 events (2 new)", "success")
        for entry in activity.recent(20):
            print(entry.timestamp, entry.message)
    """

    def __init__(self, max_entries: int = 100):
        """
        Initialize the activity log.

        Args:
            max_entries: Oldest entries are dropped beyond this many
        """
        self.max_entries = max_entries
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)

    def log(self, message: str, severity: Severity = "info") -> ActivityEntry:
        """Append an entry and mirror it to the module logger."""
        entry = ActivityEntry(message=message, severity=severity)
        self._entries.appendleft(entry)
        logger.log(_LOG_LEVELS[severity], message)
        return entry

    def recent(self, limit: int = 20) -> list[ActivityEntry]:
        """Most recent entries, newest first."""
        return list(self._entries)[:limit]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
