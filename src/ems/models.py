"""
Pydantic models for EMS BrowseEvents API responses.

The raw model keeps the API's field names; `to_flat_dict()` produces the
snake_case row stored in the events table. `COMPARABLE_FIELDS` is the single
list of business fields used for change detection and history snapshots.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict


# Business fields compared between a fresh observation and the stored row.
# Identity (id) and metadata (version_number, timestamps, markers) are excluded.
COMPARABLE_FIELDS: tuple[str, ...] = (
    "event_name",
    "event_start",
    "event_end",
    "gmt_start",
    "gmt_end",
    "time_booking_start",
    "time_booking_end",
    "is_all_day_event",
    "timezone_abbreviation",
    "building",
    "building_id",
    "room",
    "room_id",
    "room_code",
    "room_type",
    "room_type_id",
    "location",
    "location_link",
    "group_name",
    "reservation_id",
    "reservation_summary_url",
    "status_id",
    "status_type_id",
    "web_user_is_owner",
)


class RawEvent(BaseModel):
    """
    One booking record from the BrowseEvents endpoint.

    Only the fields we persist are declared; the API sends many more
    (ImageHeight, AllowCancel, ...). Those are kept as extras so the
    constant-field monitor can inspect them.
    """

    model_config = ConfigDict(extra="allow")

    Id: int
    EventName: str = ""
    EventStart: datetime
    EventEnd: Optional[datetime] = None
    GmtStart: Optional[datetime] = None
    GmtEnd: Optional[datetime] = None
    TimeBookingStart: Optional[datetime] = None
    TimeBookingEnd: Optional[datetime] = None
    IsAllDayEvent: bool = False
    TimezoneAbbreviation: Optional[str] = None
    Building: Optional[str] = None
    BuildingId: Optional[int] = None
    Room: Optional[str] = None
    RoomId: Optional[int] = None
    RoomCode: Optional[str] = None
    RoomType: Optional[str] = None
    RoomTypeId: Optional[int] = None
    Location: Optional[str] = None
    LocationLink: Optional[str] = None
    GroupName: Optional[str] = None
    ReservationId: Optional[int] = None
    ReservationSummaryUrl: Optional[str] = None
    StatusId: Optional[int] = None
    StatusTypeId: Optional[int] = None
    WebUserIsOwner: bool = False

    @property
    def start_date(self) -> date:
        """Local calendar date the event starts on."""
        return self.EventStart.date()

    def raw_value(self, name: str) -> Any:
        """Look up a field by its API name, including undeclared extras."""
        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)

    def to_flat_dict(self) -> dict:
        """Convert to the flat row shape of the events table."""
        return {
            "id": self.Id,
            "event_name": self.EventName,
            "event_start": _iso(self.EventStart),
            "event_end": _iso(self.EventEnd),
            "gmt_start": _iso(self.GmtStart),
            "gmt_end": _iso(self.GmtEnd),
            "time_booking_start": _iso(self.TimeBookingStart),
            "time_booking_end": _iso(self.TimeBookingEnd),
            "is_all_day_event": self.IsAllDayEvent,
            "timezone_abbreviation": self.TimezoneAbbreviation,
            "building": self.Building,
            "building_id": self.BuildingId,
            "room": self.Room,
            "room_id": self.RoomId,
            "room_code": self.RoomCode,
            "room_type": self.RoomType,
            "room_type_id": self.RoomTypeId,
            "location": self.Location,
            "location_link": self.LocationLink,
            "group_name": self.GroupName,
            "reservation_id": self.ReservationId,
            "reservation_summary_url": self.ReservationSummaryUrl,
            "status_id": self.StatusId,
            "status_type_id": self.StatusTypeId,
            "web_user_is_owner": self.WebUserIsOwner,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _normalize(value: Any) -> Any:
    # SQLite hands booleans back as 0/1
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class FieldChange:
    """A single differing field between stored and fresh state."""
    field: str
    old_value: Any
    new_value: Any


def detect_changes(fresh: dict, stored: dict) -> Optional[list[FieldChange]]:
    """
    Compare a fresh flat row against the stored row.

    Args:
        fresh: Flat dict from RawEvent.to_flat_dict()
        stored: Current row from the events table

    Returns:
        None if nothing changed, otherwise one FieldChange per differing field
    """
    changes = []
    for name in COMPARABLE_FIELDS:
        old_val = stored.get(name)
        new_val = fresh.get(name)
        if _normalize(old_val) != _normalize(new_val):
            changes.append(FieldChange(field=name, old_value=old_val, new_value=new_val))

    return changes or None


UpsertAction = Literal["inserted", "updated", "unchanged"]


@dataclass
class UpsertResult:
    """Outcome of reconciling one fetched event with storage."""
    event_id: int
    action: UpsertAction
    version_number: int
    changes: list[FieldChange] = field(default_factory=list)

    @property
    def change_count(self) -> int:
        return len(self.changes)


@dataclass
class ScrapeStats:
    """Running totals for a bounded date-range scrape."""
    total_days: int = 0
    total_events: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    total_changes: int = 0
    failed_days: list[date] = field(default_factory=list)
    violations: list[str] = field(default_factory=list)

    def record(self, result: UpsertResult) -> None:
        if result.action == "inserted":
            self.inserted += 1
        elif result.action == "updated":
            self.updated += 1
            self.total_changes += result.change_count
        else:
            self.unchanged += 1
