"""
SQLite database manager for EMS event data.

Provides persistent storage with:
- Versioned event snapshots keyed by the external event id
- Append-only history of every pre-update state
- Presence tracking (no-longer-found markers) for vanished events
- Per-scraper resume cursors
- An advisory log of constant-field violations
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional

from .models import COMPARABLE_FIELDS, RawEvent, UpsertResult, detect_changes

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement; stay well below it
MAX_IDS_PER_QUERY = 500

_BUSINESS_COLUMNS_SQL = """
    event_name TEXT,
    event_start TEXT NOT NULL,
    event_end TEXT,
    gmt_start TEXT,
    gmt_end TEXT,
    time_booking_start TEXT,
    time_booking_end TEXT,
    is_all_day_event INTEGER,
    timezone_abbreviation TEXT,
    building TEXT,
    building_id INTEGER,
    room TEXT,
    room_id INTEGER,
    room_code TEXT,
    room_type TEXT,
    room_type_id INTEGER,
    location TEXT,
    location_link TEXT,
    group_name TEXT,
    reservation_id INTEGER,
    reservation_summary_url TEXT,
    status_id INTEGER,
    status_type_id INTEGER,
    web_user_is_owner INTEGER,
"""

# SQL schema definitions
SCHEMA_SQL = f"""
-- Current state of each event, keyed by the external EMS id
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY,
    {_BUSINESS_COLUMNS_SQL}
    version_number INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    last_checked TIMESTAMP NOT NULL,
    no_longer_found_at TIMESTAMP
);

-- Snapshot of an event immediately before each detected change.
-- version_number is the version that was replaced.
CREATE TABLE IF NOT EXISTS event_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    version_number INTEGER NOT NULL,
    {_BUSINESS_COLUMNS_SQL}
    change_count INTEGER NOT NULL,
    last_checked TIMESTAMP,
    archived_at TIMESTAMP NOT NULL,
    UNIQUE(event_id, version_number),
    FOREIGN KEY (event_id) REFERENCES events(id)
);

-- Resume position per scraper type
CREATE TABLE IF NOT EXISTS scraper_cursors (
    scraper_type TEXT PRIMARY KEY,
    cursor_date DATE NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMP NOT NULL
);

-- Advisory log: fields presumed constant that held another value
CREATE TABLE IF NOT EXISTS constant_violations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    field_name TEXT NOT NULL,
    expected_value TEXT,
    actual_value TEXT,
    violation_time TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_start ON events(event_start);
CREATE INDEX IF NOT EXISTS idx_events_no_longer_found ON events(no_longer_found_at);
CREATE INDEX IF NOT EXISTS idx_events_last_checked ON events(last_checked);
CREATE INDEX IF NOT EXISTS idx_history_event ON event_history(event_id, version_number);
CREATE INDEX IF NOT EXISTS idx_violations_event ON constant_violations(event_id);
"""


class EventNotFoundError(LookupError):
    """Raised when updating an event id that has never been stored."""

    def __init__(self, event_id: int):
        super().__init__(f"Event with ID {event_id} not found")
        self.event_id = event_id


@dataclass
class ScraperCursor:
    """Persisted resume point for one scraper type."""
    scraper_type: str
    current_date: date
    enabled: bool
    updated_at: datetime


def _chunks(ids: list[int], size: int = MAX_IDS_PER_QUERY) -> Iterator[list[int]]:
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class EMSDatabase:
    """
    SQLite database manager for event data.

    Handles schema creation, versioned upserts with history archiving,
    presence markers, cursors and violation logging.

    Example:
        db = EMSDatabase("data/ems_events.db")
        result = db.upsert_event(event)
        if result.action == "updated":
            print(result.changes)
    """

    def __init__(
        self,
        db_path: str = "data/ems_events.db",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
            clock: Source of "now" for every timestamp written
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._ensure_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Create tables and indexes."""
        with self._connection() as conn:
            conn.executescript(SCHEMA_SQL)
        logger.debug(f"Database schema ensured at {self.db_path}")

    def _now(self) -> str:
        return self._clock().isoformat()

    # Versioning

    def upsert_event(self, event: RawEvent) -> UpsertResult:
        """
        Insert or reconcile an event.

        New events are stored at version 1. For known events the comparable
        fields are diffed; any difference archives the stored state to
        event_history and bumps the version. An identical observation leaves
        the row untouched (last_checked is refreshed separately in batch).

        Args:
            event: Freshly fetched event

        Returns:
            UpsertResult with action 'inserted', 'updated' or 'unchanged'
        """
        event_data = event.to_flat_dict()
        now = self._now()

        with self._connection() as conn:
            existing = conn.execute(
                "SELECT * FROM events WHERE id = ?", (event.Id,)
            ).fetchone()

            if existing is None:
                self._insert_event(conn, event_data, now)
                logger.debug(f"Inserted new event: {event.Id}")
                return UpsertResult(event_id=event.Id, action="inserted", version_number=1)

            return self._reconcile(conn, dict(existing), event_data, now)

    def update_event(self, event: RawEvent) -> UpsertResult:
        """
        Reconcile an event that must already exist.

        Raises:
            EventNotFoundError: If the id has never been stored
        """
        event_data = event.to_flat_dict()
        now = self._now()

        with self._connection() as conn:
            existing = conn.execute(
                "SELECT * FROM events WHERE id = ?", (event.Id,)
            ).fetchone()
            if existing is None:
                raise EventNotFoundError(event.Id)

            return self._reconcile(conn, dict(existing), event_data, now)

    def _reconcile(
        self,
        conn: sqlite3.Connection,
        stored: dict,
        event_data: dict,
        timestamp: str,
    ) -> UpsertResult:
        event_id = stored["id"]
        changes = detect_changes(event_data, stored)

        if not changes:
            return UpsertResult(
                event_id=event_id,
                action="unchanged",
                version_number=stored["version_number"],
            )

        self._archive_event(conn, stored, len(changes), timestamp)
        new_version = stored["version_number"] + 1
        self._update_event(conn, event_data, new_version, timestamp)

        logger.debug(
            f"Updated event {event_id} to v{new_version}: "
            f"{', '.join(c.field for c in changes)}"
        )
        return UpsertResult(
            event_id=event_id,
            action="updated",
            version_number=new_version,
            changes=changes,
        )

    def _insert_event(self, conn: sqlite3.Connection, event_data: dict, timestamp: str) -> None:
        """Insert a new event at version 1."""
        columns = ("id",) + COMPARABLE_FIELDS
        row = {name: event_data.get(name) for name in columns}
        row.update(
            version_number=1,
            created_at=timestamp,
            updated_at=timestamp,
            last_checked=timestamp,
        )
        names = list(row)
        conn.execute(
            f"INSERT INTO events ({', '.join(names)}) "
            f"VALUES ({', '.join(':' + n for n in names)})",
            row,
        )

    def _update_event(
        self,
        conn: sqlite3.Connection,
        event_data: dict,
        version_number: int,
        timestamp: str,
    ) -> None:
        """Overwrite the live row with fresh values and the next version."""
        row = {name: event_data.get(name) for name in COMPARABLE_FIELDS}
        row.update(
            id=event_data["id"],
            version_number=version_number,
            updated_at=timestamp,
            last_checked=timestamp,
        )
        assignments = ", ".join(
            f"{name} = :{name}" for name in row if name != "id"
        )
        conn.execute(f"UPDATE events SET {assignments} WHERE id = :id", row)

    def _archive_event(
        self,
        conn: sqlite3.Connection,
        stored: dict,
        change_count: int,
        timestamp: str,
    ) -> None:
        """Save the stored (pre-update) state to event_history."""
        row = {name: stored.get(name) for name in COMPARABLE_FIELDS}
        row.update(
            event_id=stored["id"],
            version_number=stored["version_number"],
            change_count=change_count,
            last_checked=stored.get("last_checked"),
            archived_at=timestamp,
        )
        names = list(row)
        conn.execute(
            f"INSERT INTO event_history ({', '.join(names)}) "
            f"VALUES ({', '.join(':' + n for n in names)})",
            row,
        )

    # Presence tracking

    def mark_no_longer_found(self, event_ids: Iterable[int]) -> int:
        """
        Flag events as missing from their expected scrape.

        Only events not already flagged are touched, so repeated calls keep
        the original timestamp.

        Returns:
            Number of events newly flagged
        """
        ids = sorted(set(event_ids))
        if not ids:
            return 0

        now = self._now()
        changed = 0
        with self._connection() as conn:
            for chunk in _chunks(ids):
                cursor = conn.execute(
                    f"""
                    UPDATE events SET no_longer_found_at = ?
                    WHERE id IN ({_placeholders(len(chunk))})
                    AND no_longer_found_at IS NULL
                    """,
                    [now, *chunk],
                )
                changed += cursor.rowcount
        return changed

    def clear_no_longer_found(self, event_ids: Iterable[int]) -> int:
        """
        Clear the missing flag and refresh last_checked for seen events.

        Returns:
            Number of rows updated
        """
        ids = sorted(set(event_ids))
        if not ids:
            return 0

        now = self._now()
        changed = 0
        with self._connection() as conn:
            for chunk in _chunks(ids):
                cursor = conn.execute(
                    f"""
                    UPDATE events SET no_longer_found_at = NULL, last_checked = ?
                    WHERE id IN ({_placeholders(len(chunk))})
                    """,
                    [now, *chunk],
                )
                changed += cursor.rowcount
        return changed

    def touch_last_checked(self, event_ids: Iterable[int]) -> int:
        """Record that the given events were just observed."""
        ids = sorted(set(event_ids))
        if not ids:
            return 0

        now = self._now()
        changed = 0
        with self._connection() as conn:
            for chunk in _chunks(ids):
                cursor = conn.execute(
                    f"UPDATE events SET last_checked = ? "
                    f"WHERE id IN ({_placeholders(len(chunk))})",
                    [now, *chunk],
                )
                changed += cursor.rowcount
        return changed

    def _select_ids(self, sql: str, event_ids: Iterable[int]) -> set[int]:
        ids = sorted(set(event_ids))
        found: set[int] = set()
        with self._connection() as conn:
            for chunk in _chunks(ids):
                rows = conn.execute(
                    sql.format(placeholders=_placeholders(len(chunk))), chunk
                ).fetchall()
                found.update(row[0] for row in rows)
        return found

    def get_no_longer_found_ids(self, event_ids: Iterable[int]) -> set[int]:
        """Subset of the given ids currently flagged as missing."""
        return self._select_ids(
            "SELECT id FROM events WHERE id IN ({placeholders}) "
            "AND no_longer_found_at IS NOT NULL",
            event_ids,
        )

    def get_existing_ids(self, event_ids: Iterable[int]) -> set[int]:
        """Subset of the given ids already stored."""
        return self._select_ids(
            "SELECT id FROM events WHERE id IN ({placeholders})", event_ids
        )

    def get_event_ids_for_date(self, day: date) -> set[int]:
        """Ids of stored events whose local start falls on the given date."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id FROM events WHERE event_start >= ? AND event_start < ?",
                (day.isoformat(), (day + timedelta(days=1)).isoformat()),
            ).fetchall()
            return {row[0] for row in rows}

    # Queries

    def get_event(self, event_id: int) -> Optional[dict]:
        """
        Get an event by id.

        Returns:
            Event row as dict, or None if not found
        """
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM events WHERE id = ?", (event_id,)
            ).fetchone()
            return dict(row) if row else None

    def get_event_history(self, event_id: int) -> list[dict]:
        """
        Get archived snapshots for an event.

        Returns:
            History rows, oldest version first
        """
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM event_history
                WHERE event_id = ?
                ORDER BY version_number ASC
                """,
                (event_id,),
            ).fetchall()
            return [dict(row) for row in rows]

    def get_no_longer_found_events(self, limit: int = 100) -> list[dict]:
        """Events currently flagged as missing, most recently flagged first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE no_longer_found_at IS NOT NULL
                ORDER BY no_longer_found_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [dict(row) for row in rows]

    def count_events(self) -> int:
        """Get total number of events in database."""
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dict with event, history, presence and violation counts
        """
        with self._connection() as conn:
            stats = {}

            stats["total_events"] = conn.execute(
                "SELECT COUNT(*) FROM events"
            ).fetchone()[0]

            stats["history_records"] = conn.execute(
                "SELECT COUNT(*) FROM event_history"
            ).fetchone()[0]

            stats["events_with_history"] = conn.execute(
                "SELECT COUNT(DISTINCT event_id) FROM event_history"
            ).fetchone()[0]

            stats["no_longer_found"] = conn.execute(
                "SELECT COUNT(*) FROM events WHERE no_longer_found_at IS NOT NULL"
            ).fetchone()[0]

            stats["max_version"] = conn.execute(
                "SELECT COALESCE(MAX(version_number), 0) FROM events"
            ).fetchone()[0]

            stats["checked_today"] = conn.execute(
                "SELECT COUNT(*) FROM events WHERE last_checked >= ?",
                (self._clock().date().isoformat(),),
            ).fetchone()[0]

            stats["constant_violations"] = conn.execute(
                "SELECT COUNT(*) FROM constant_violations"
            ).fetchone()[0]

            return stats

    # Constant-field monitoring

    def check_constant_fields(self, event: RawEvent, expected: dict[str, Any]) -> list[str]:
        """
        Compare presumed-constant fields against the observed event.

        Each mismatch is logged to constant_violations. This never raises
        for a mismatch; it is purely advisory.

        Args:
            event: Event as returned by the API
            expected: Map of API field name to expected value

        Returns:
            Human-readable description per mismatch
        """
        violations: list[str] = []
        rows = []
        now = self._now()

        for field_name, expected_value in expected.items():
            actual_value = event.raw_value(field_name)
            if actual_value != expected_value:
                violations.append(
                    f"Event {event.Id} {field_name}: "
                    f"expected {expected_value!r}, got {actual_value!r}"
                )
                rows.append((
                    event.Id,
                    field_name,
                    json.dumps(expected_value, default=str),
                    json.dumps(actual_value, default=str),
                    now,
                ))

        if rows:
            with self._connection() as conn:
                conn.executemany(
                    """
                    INSERT INTO constant_violations (
                        event_id, field_name, expected_value, actual_value, violation_time
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    rows,
                )

        return violations

    def get_violations(self, event_id: Optional[int] = None, limit: int = 100) -> list[dict]:
        """Recent constant-field violations, newest first."""
        conditions = ""
        params: list[Any] = []
        if event_id is not None:
            conditions = "WHERE event_id = ?"
            params.append(event_id)

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM constant_violations
                {conditions}
                ORDER BY id DESC
                LIMIT ?
                """,
                params + [limit],
            ).fetchall()
            return [dict(row) for row in rows]

    # Scraper cursors

    def get_cursor(self, scraper_type: str) -> Optional[ScraperCursor]:
        """Get the persisted cursor for a scraper type, if any."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM scraper_cursors WHERE scraper_type = ?",
                (scraper_type,),
            ).fetchone()

        if row is None:
            return None
        return ScraperCursor(
            scraper_type=row["scraper_type"],
            current_date=date.fromisoformat(row["cursor_date"]),
            enabled=bool(row["enabled"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def update_cursor(self, scraper_type: str, current_date: date) -> None:
        """Persist a new cursor date (creating the row disabled if missing)."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO scraper_cursors (scraper_type, cursor_date, enabled, updated_at)
                VALUES (?, ?, 0, ?)
                ON CONFLICT(scraper_type) DO UPDATE SET
                    cursor_date = excluded.cursor_date,
                    updated_at = excluded.updated_at
                """,
                (scraper_type, current_date.isoformat(), self._now()),
            )

    def initialize_cursor(self, scraper_type: str, start_date: date) -> ScraperCursor:
        """Create the cursor at start_date unless one already exists."""
        existing = self.get_cursor(scraper_type)
        if existing:
            return existing

        self.update_cursor(scraper_type, start_date)
        return self.get_cursor(scraper_type)

    def set_cursor_enabled(
        self,
        scraper_type: str,
        enabled: bool,
        default_date: Optional[date] = None,
    ) -> None:
        """
        Flip the enabled flag, creating the cursor if needed.

        Args:
            scraper_type: Cursor to update
            enabled: New flag value
            default_date: Cursor date for a newly created row (default: today)
        """
        start = (default_date or self._clock().date()).isoformat()
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO scraper_cursors (scraper_type, cursor_date, enabled, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scraper_type) DO UPDATE SET
                    enabled = excluded.enabled,
                    updated_at = excluded.updated_at
                """,
                (scraper_type, start, int(enabled), self._now()),
            )
