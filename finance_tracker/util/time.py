from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC with Z."""
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(utcnow())


def iso_hours_ago(hours: int) -> str:
    return to_iso(utcnow() - timedelta(hours=int(hours)))


def local_midnight_iso() -> str:
    """Start of the current local day, expressed in UTC (ISO-8601 with Z).

    "Logins today" follows the server's local calendar day, not the UTC day.
    """
    local_now = datetime.now().astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_iso(midnight)


def iso_date(dt: datetime) -> str:
    return dt.date().isoformat()


def month_bounds(year: int, month: int) -> tuple[str, str]:
    """First and last day (inclusive) of a calendar month as YYYY-MM-DD."""
    start = date(int(year), int(month), 1)
    if start.month == 12:
        nxt = date(start.year + 1, 1, 1)
    else:
        nxt = date(start.year, start.month + 1, 1)
    return start.isoformat(), (nxt - timedelta(days=1)).isoformat()


def year_bounds(year: int) -> tuple[str, str]:
    return date(int(year), 1, 1).isoformat(), date(int(year), 12, 31).isoformat()
