"""Clock and calendar helpers."""

from datetime import date, datetime

import pytest

from scoopdesk.time_utils import business_date, days_after, parse_iso_datetime, start_of_day, to_utc_z


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2026-10-19T12:30:00Z", datetime(2026, 10, 19, 12, 30)),
        ("2026-10-19T09:30:00-03:00", datetime(2026, 10, 19, 12, 30)),
        ("2026-10-19T12:30", datetime(2026, 10, 19, 12, 30)),
        ("2026-10-19", datetime(2026, 10, 19)),
    ],
)
def test_parse_normalizes_to_naive_utc(text, expected):
    assert parse_iso_datetime(text) == expected


def test_parse_blank_is_none():
    assert parse_iso_datetime(None) is None
    assert parse_iso_datetime("  ") is None


def test_inclusive_end_covers_whole_day():
    assert parse_iso_datetime("2026-10-19", inclusive_end=True) == datetime(2026, 10, 20)
    # Only bare dates move; an explicit time is already precise
    assert parse_iso_datetime("2026-10-19T18:00:00Z", inclusive_end=True) == datetime(2026, 10, 19, 18)


def test_to_utc_z():
    assert to_utc_z(datetime(2026, 10, 19, 12, 30, 5, 999)) == "2026-10-19T12:30:05Z"
    assert to_utc_z(None) is None


def test_calendar_helpers():
    moment = datetime(2026, 10, 19, 23, 59)
    assert business_date(moment) == date(2026, 10, 19)
    assert start_of_day(moment) == datetime(2026, 10, 19)
    assert start_of_day(date(2026, 10, 19)) == datetime(2026, 10, 19)
    assert days_after(30, moment) == datetime(2026, 11, 18, 23, 59)
    assert days_after(None, moment) is None
    assert days_after(0, moment) is None
