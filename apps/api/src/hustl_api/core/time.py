"""Timezone helpers shared by ledger services."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values (sqlite drops tzinfo on round trip)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_window(moment: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Return the UTC bounds of the local calendar day containing ``moment``."""

    local = ensure_utc(moment).astimezone(ZoneInfo(tz_name))
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def month_window(moment: datetime, tz_name: str) -> tuple[datetime, datetime]:
    local = ensure_utc(moment).astimezone(ZoneInfo(tz_name))
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


__all__ = ["day_window", "ensure_utc", "month_window", "utcnow"]
