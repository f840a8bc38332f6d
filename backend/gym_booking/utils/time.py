from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def facility_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def today_in(tz: ZoneInfo) -> date:
    """Calendar day at the facility, independent of the server's local zone."""
    return datetime.now(timezone.utc).astimezone(tz).date()


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_valid_hhmm(value: int) -> bool:
    if value == 2400:
        return True
    hours, minutes = divmod(value, 100)
    return value >= 0 and hours < 24 and minutes < 60


def format_hhmm(value: int) -> str:
    hours, minutes = divmod(value, 100)
    return f"{hours:02d}:{minutes:02d}"
