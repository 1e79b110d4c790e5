from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from doosr.settings import get_settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def to_utc_iso(value) -> str | None:
    """Normalize a datetime (or ISO string) to naive UTC ISO text, the stored format."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat()


def today() -> date:
    settings = get_settings()
    try:
        tzinfo = ZoneInfo(settings.app_timezone)
    except Exception:
        tzinfo = timezone.utc
    return datetime.now(tzinfo).date()


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except Exception as exc:
        raise ValueError("Invalid date format") from exc
