"""
Clock and calendar helpers.

All timestamps are stored as naive UTC. Business dates (comanda numbering,
ledger transaction dates, overdue cutoffs) are UTC calendar days.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_date(moment: datetime | None = None) -> date:
    """Calendar day a moment belongs to (today when omitted)."""
    return (moment or utcnow()).date()


def start_of_day(value: datetime | date) -> datetime:
    """Midnight of the value's day, naive UTC."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def days_after(days: int | None, moment: datetime | None = None) -> datetime | None:
    """moment + days; None when days is unset or zero (never expires)."""
    if not days:
        return None
    return (moment or utcnow()) + timedelta(days=days)


def _is_date_only(text: str) -> bool:
    return len(text) == 10 and text[4] == "-" and text[7] == "-"


def parse_iso_datetime(value: Optional[str], *, inclusive_end: bool = False) -> Optional[datetime]:
    """
    ISO-8601 string -> naive UTC datetime.

    Offsets and a trailing Z are converted to UTC; naive input is taken as
    UTC. A bare date is midnight of that day, or with inclusive_end the
    following midnight, so "end=2026-10-19" covers the whole day as an
    exclusive upper bound.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if inclusive_end and _is_date_only(text):
        parsed += timedelta(days=1)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a trailing Z; naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
