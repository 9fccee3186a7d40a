"""
Test data factories for generating realistic EMS event data.

These factories build dicts shaped like BrowseEvents API records (PascalCase
keys, ISO datetimes) and the matching RawEvent models, so tests exercise
the same parsing path as production.
"""

import itertools
import json
import random
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from src.ems.models import RawEvent


# =============================================================================
# Sample Data Pools
# =============================================================================

EVENT_NAMES = [
    "CSE 101 Discussion",
    "Chemistry Review Session",
    "Student Org General Meeting",
    "Faculty Senate",
    "Career Fair Setup",
    "Math Tutoring",
    "Dance Rehearsal",
    "Graduate Seminar",
    "Orientation Check-in",
    "Film Screening",
]

ROOMS = [
    # (building, building_id, room, room_id, room_code, room_type)
    ("Price Center", 12, "Forum", 301, "PC FORUM", "Meeting Room"),
    ("Price Center", 12, "Ballroom East", 302, "PC BRE", "Ballroom"),
    ("Geisel Library", 20, "Seuss Room", 410, "GL SEUSS", "Classroom"),
    ("Center Hall", 31, "Room 105", 512, "CENTR 105", "Lecture Hall"),
    ("Warren Lecture Hall", 44, "Room 2005", 620, "WLH 2005", "Lecture Hall"),
]

GROUPS = [
    "Associated Students",
    "Department of Chemistry",
    "Computer Science and Engineering",
    "University Centers",
    "Graduate Division",
]

_ids = itertools.count(100_000)


# =============================================================================
# Factory Functions
# =============================================================================


def generate_event_id() -> int:
    """Next unique event id."""
    return next(_ids)


def generate_raw_event(
    event_id: Optional[int] = None,
    start: Optional[datetime] = None,
    duration: timedelta = timedelta(hours=1),
    name: Optional[str] = None,
    room_index: Optional[int] = None,
    **overrides: Any,
) -> dict:
    """
    Generate one BrowseEvents API record.

    Args:
        event_id: Event id (default: next unique id)
        start: Local start (default: 2025-03-01 at a random hour)
        duration: Event length
        name: Event name (default: random from pool)
        room_index: Index into ROOMS (default: random)
        **overrides: Raw PascalCase fields to replace or add
    """
    if event_id is None:
        event_id = generate_event_id()
    if start is None:
        start = datetime.combine(date(2025, 3, 1), time(random.randint(8, 20)))
    if name is None:
        name = random.choice(EVENT_NAMES)
    if room_index is None:
        room_index = random.randrange(len(ROOMS))

    building, building_id, room, room_id, room_code, room_type = ROOMS[room_index]
    end = start + duration
    gmt_offset = timedelta(hours=8)

    record = {
        "Id": event_id,
        "EventName": name,
        "EventStart": start.isoformat(),
        "EventEnd": end.isoformat(),
        "GmtStart": (start + gmt_offset).isoformat(),
        "GmtEnd": (end + gmt_offset).isoformat(),
        "TimeBookingStart": start.isoformat(),
        "TimeBookingEnd": end.isoformat(),
        "IsAllDayEvent": False,
        "TimezoneAbbreviation": "PT",
        "Building": building,
        "BuildingId": building_id,
        "Room": room,
        "RoomId": room_id,
        "RoomCode": room_code,
        "RoomType": room_type,
        "RoomTypeId": room_id // 100,
        "Location": f"{building} {room}",
        "LocationLink": f"/BrowseForSpace.aspx?room={room_id}",
        "GroupName": random.choice(GROUPS),
        "ReservationId": event_id + 5_000_000,
        "ReservationSummaryUrl": f"/ReservationSummary.aspx?id={event_id + 5_000_000}",
        "StatusId": 1,
        "StatusTypeId": -14,
        "WebUserIsOwner": False,
        # Presumed constants
        "EventCount": 1,
        "IsHoliday": False,
        "ShowFloorMap": False,
        "VideoConferenceHost": False,
        "ChangeHost": False,
        # Fields we never store
        "ImageHeight": 0,
        "AllowCancel": False,
    }
    record.update(overrides)
    return record


def generate_event(**kwargs: Any) -> RawEvent:
    """Generate a parsed RawEvent (accepts generate_raw_event arguments)."""
    return RawEvent.model_validate(generate_raw_event(**kwargs))


def generate_day_events(day: date, n: int = 3, **kwargs: Any) -> list[dict]:
    """Generate n raw records starting on the given day, one hour apart."""
    return [
        generate_raw_event(start=datetime.combine(day, time(9 + i)), **kwargs)
        for i in range(n)
    ]


def envelope(records: list[dict], key: str = "DailyBookingResults") -> dict:
    """Wrap records in the API's double-encoded {"d": "<json>"} body."""
    return {"d": json.dumps({key: records})}


def token_page(token: Optional[str] = "test-csrf-token") -> str:
    """BrowseEvents page HTML, with the anti-forgery token input if given."""
    hidden = (
        f'<input type="hidden" name="deaCSRFToken" id="deaCSRFToken" value="{token}" />'
        if token
        else ""
    )
    return f"<html><body><form>{hidden}</form></body></html>"
