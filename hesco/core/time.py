from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta, weekday


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_today(now: datetime | None = None) -> date:
    """Calendar day on the server's UTC clock."""
    return ensure_tz(now or utcnow()).astimezone(timezone.utc).date()


def next_weekday(day: date, wd: int) -> date:
    """First date on or after `day` falling on weekday `wd` (Monday=0)."""
    return day + relativedelta(weekday=weekday(wd))


def fmt_dt(dt: datetime | None) -> str:
    if not dt:
        return "—"
    return ensure_tz(dt).astimezone(timezone.utc).strftime("%d.%m.%Y %H:%M UTC")
