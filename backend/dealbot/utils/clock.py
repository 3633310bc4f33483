import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from dealbot.config.settings import settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


def now_s() -> int:
    return int(time.time())


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_zone() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def local_now() -> datetime:
    return datetime.now(local_zone())


def format_local(value: datetime, with_time: bool = True) -> str:
    """e.g. '17 Oct 2026, 09:30 PM' in the deployment time zone."""
    local = as_utc(value).astimezone(local_zone())
    if with_time:
        return local.strftime("%d %b %Y, %I:%M %p")
    return local.strftime("%d %b %Y")


def hour_label(value: datetime) -> str:
    """12-hour label used by the hourly forecast: 12AM, 9AM, 12PM, 3PM."""
    hour = as_utc(value).astimezone(local_zone()).hour
    if hour == 0:
        return "12AM"
    if hour < 12:
        return f"{hour}AM"
    if hour == 12:
        return "12PM"
    return f"{hour - 12}PM"
