"""Clock and membership-year calculations."""
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from .settings import settings

LONDON = ZoneInfo(settings.app_timezone)

SELLING_YEAR_START_MONTH = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_local() -> datetime:
    """Return the current time in the society's timezone."""
    return _utcnow().astimezone(LONDON)


def membership_year(now: datetime) -> int:
    """Return the membership year on sale at ``now``.

    Sales for year N+1 open on 1 October of year N.
    """
    local = now.astimezone(LONDON) if now.tzinfo else now.replace(tzinfo=LONDON)
    start_of_selling = datetime(local.year, SELLING_YEAR_START_MONTH, 1, tzinfo=LONDON)
    if local < start_of_selling:
        return local.year
    return local.year + 1


def entitlement_deadline(year: int) -> datetime:
    """Last instant of membership year ``year``: 31 March, London time."""
    return datetime(year, 3, 31, 23, 59, 59, 999999, tzinfo=LONDON)


def member_end_wire(year: int) -> str:
    """End-date string written to ``mem_end`` on every sale."""
    return f"{year:04d}-12-31 23:59:59 999999 +00"


def parse_member_end(value: object) -> datetime | None:
    """Parse a stored ``mem_end`` value into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if hasattr(value, "year") and hasattr(value, "month"):
        return datetime(value.year, value.month, value.day, 23, 59, 59, 999999, tzinfo=LONDON)
    raw = str(value).strip()
    if not raw:
        return None
    if len(raw) == 10:
        parsed = datetime.strptime(raw, "%Y-%m-%d")
        return parsed.replace(hour=23, minute=59, second=59, microsecond=999999, tzinfo=LONDON)
    parsed = datetime.strptime(raw[:19], "%Y-%m-%d %H:%M:%S")
    parts = raw[19:].split()
    if parts and parts[0].lstrip(".").isdigit():
        parsed = parsed.replace(microsecond=int(parts[0].lstrip(".")[:6].ljust(6, "0")))
    return parsed.replace(tzinfo=timezone.utc)


__all__ = [
    "LONDON",
    "entitlement_deadline",
    "member_end_wire",
    "membership_year",
    "now_local",
    "parse_member_end",
]
