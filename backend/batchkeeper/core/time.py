"""Clock helpers shared by models and services."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_local(moment: datetime, tz_name: str) -> str:
    """Human-readable timestamp in the given timezone, e.g. '19 Oct 2026, 07:05:09 PM'."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name)).strftime("%d %b %Y, %I:%M:%S %p")
