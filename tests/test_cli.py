"""
Tests for the CLI commands.

Scrape commands run against FakeEMSServer by swapping the CLI's
open_context for one wired to the mock transport.
"""

from datetime import date, datetime
from pathlib import Path

import pytest
from typer.testing import CliRunner

from src.cli import app
from src.ems.context import open_context
from src.ems.continuous_scraper import SCRAPER_TYPE
from src.ems.database import EMSDatabase
from src.ems.models import RawEvent

from .conftest import FakeEMSServer
from .factories import generate_day_events, generate_event, generate_raw_event

runner = CliRunner()

TODAY = date(2025, 3, 1)


@pytest.fixture
def offline_cli(monkeypatch, fake_server: FakeEMSServer, sleeps) -> FakeEMSServer:
    """Route scrape commands to the fake server with a fixed today."""

    def open_offline(config, db_path):
        config = config.with_overrides(
            base_url="https://ems.test/EmsWebApp",
            request_interval=0.0,
            min_request_interval=0.0,
            horizon_months=1,
            historical_start_date=date(2025, 2, 27),
            historical_lookahead_months=0,
        )
        return open_context(
            config, db_path, transport=fake_server.transport, sleep=sleeps, today=lambda: TODAY
        )

    monkeypatch.setattr("src.cli.open_context", open_offline)
    return fake_server


@pytest.fixture
def populated_db_path(temp_db_path: Path) -> Path:
    db = EMSDatabase(str(temp_db_path))
    event = generate_event(event_id=500, name="Seminar A")
    db.upsert_event(event)
    raw = event.model_dump(mode="json")
    raw["EventName"] = "Seminar B"
    db.upsert_event(RawEvent.model_validate(raw))
    db.upsert_event(generate_event(event_id=501, name="Gone Event"))
    db.mark_no_longer_found([501])
    db.check_constant_fields(generate_event(event_id=502, EventCount=4), {"EventCount": 1})
    db.update_cursor(SCRAPER_TYPE, date(2025, 3, 1))
    return temp_db_path


def test_stats(populated_db_path: Path):
    result = runner.invoke(app, ["stats", "--db", str(populated_db_path)])

    assert result.exit_code == 0
    assert "Total events" in result.output
    assert "Highest version" in result.output


def test_status(populated_db_path: Path):
    result = runner.invoke(app, ["status", "--db", str(populated_db_path)])

    assert result.exit_code == 0
    assert "2025-03-01" in result.output
    assert "Disabled" in result.output


def test_event_and_history(populated_db_path: Path):
    result = runner.invoke(app, ["event", "500", "--db", str(populated_db_path)])
    assert result.exit_code == 0
    assert "Seminar B" in result.output

    result = runner.invoke(app, ["history", "500", "--db", str(populated_db_path)])
    assert result.exit_code == 0
    assert "History (1 archived versions)" in result.output


def test_unknown_event_exits_nonzero(populated_db_path: Path):
    result = runner.invoke(app, ["event", "999", "--db", str(populated_db_path)])

    assert result.exit_code == 1
    assert "Event not found" in result.output


def test_missing_and_violations(populated_db_path: Path):
    result = runner.invoke(app, ["missing", "--db", str(populated_db_path)])
    assert result.exit_code == 0
    assert "No Longer Found (1 shown)" in result.output

    result = runner.invoke(app, ["violations", "--db", str(populated_db_path)])
    assert result.exit_code == 0
    assert "Constant Field Violations" in result.output


def test_upcoming_covers_rolling_window(offline_cli: FakeEMSServer, temp_db_path: Path):
    offline_cli.set_events(TODAY, generate_day_events(TODAY, n=2))

    result = runner.invoke(app, ["upcoming", "--db", str(temp_db_path)])

    assert result.exit_code == 0, result.output
    assert "Upcoming Scrape Complete" in result.output
    assert offline_cli.requested_days[0] == TODAY
    assert offline_cli.requested_days[-1] == date(2025, 4, 1)
    assert len(offline_cli.requested_days) == 32
    assert EMSDatabase(str(temp_db_path)).get_stats()["total_events"] == 2


def test_historical_defaults_to_configured_range(offline_cli: FakeEMSServer, temp_db_path: Path):
    result = runner.invoke(app, ["historical", "--db", str(temp_db_path)])

    assert result.exit_code == 0, result.output
    assert offline_cli.requested_days == [date(2025, 2, 27), date(2025, 2, 28), TODAY]


def test_historical_explicit_range(offline_cli: FakeEMSServer, temp_db_path: Path):
    result = runner.invoke(
        app, ["historical", "--start", "2025-01-10", "--end", "2025-01-11", "--db", str(temp_db_path)]
    )

    assert result.exit_code == 0, result.output
    assert offline_cli.requested_days == [date(2025, 1, 10), date(2025, 1, 11)]


def test_historical_overlap_exits_nonzero(offline_cli: FakeEMSServer, temp_db_path: Path):
    day = date(2025, 2, 28)
    record = generate_raw_event(event_id=700, start=datetime(2025, 2, 28, 9))
    EMSDatabase(str(temp_db_path)).upsert_event(RawEvent.model_validate(record))
    offline_cli.set_events(day, [record])

    result = runner.invoke(app, ["historical", "--db", str(temp_db_path)])

    assert result.exit_code == 1
    assert "Halted" in result.output
    assert offline_cli.requested_days == [date(2025, 2, 27), day]
