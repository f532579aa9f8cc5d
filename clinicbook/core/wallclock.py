"""Wall-clock time handling.

Instants are stored as naive UTC (TIMESTAMP WITHOUT TIME ZONE). A value a user
picked as "15:00" is a wall-clock value in the clinic's zone: it is localized
in that zone on the way in and read back with local extraction in the same
zone on the way out, so display(store(t)) == t.
"""
import re
from datetime import UTC, date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from clinicbook.core.config import settings
from clinicbook.core.errors import ValidationError

HHMM_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")
_OFFSET_RE = re.compile(r"^([+-])([01][0-9]|2[0-3]):([0-5][0-9])$")


def get_zone(name: str | None = None) -> ZoneInfo:
    key = name or settings.default_timezone
    try:
        return ZoneInfo(key)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {key}")


def utc_naive_now() -> datetime:
    """Naive UTC for comparison with TIMESTAMP WITHOUT TIME ZONE."""
    return datetime.now(UTC).replace(tzinfo=None)


def _localize(naive: datetime, zone: ZoneInfo, strict: bool = True) -> datetime:
    aware = naive.replace(tzinfo=zone)
    if strict and aware.astimezone(UTC).astimezone(zone).replace(tzinfo=None) != naive:
        # Skipped by a DST transition; it could never be displayed back as entered.
        raise ValidationError(f"{naive.isoformat(timespec='minutes')} does not exist in {zone.key}")
    return aware


def to_naive_utc(dt: datetime, zone: ZoneInfo) -> datetime:
    """Convert to naive UTC. Naive input is a wall-clock value in `zone`."""
    if dt.tzinfo is None:
        dt = _localize(dt, zone)
    return dt.astimezone(UTC).replace(tzinfo=None)


def as_utc(stored: datetime) -> datetime:
    """Attach UTC to a stored naive value for serialization."""
    if stored.tzinfo is not None:
        return stored.astimezone(UTC)
    return stored.replace(tzinfo=UTC)


def to_wall_clock(stored: datetime, zone: ZoneInfo) -> datetime:
    """Local wall-clock reading of a stored instant, as naive local time."""
    return as_utc(stored).astimezone(zone).replace(tzinfo=None)


def format_wall_clock(stored: datetime, zone: ZoneInfo, fmt: str = "%Y-%m-%d %H:%M") -> str:
    return to_wall_clock(stored, zone).strftime(fmt)


def parse_hhmm(value: str) -> time:
    if not isinstance(value, str) or not HHMM_RE.match(value):
        raise ValidationError(f"Invalid time format: {value!r}. Expected HH:mm")
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def wall_clock_to_utc(day: date, at: time | str, zone: ZoneInfo) -> datetime:
    if isinstance(at, str):
        at = parse_hhmm(at)
    return to_naive_utc(datetime.combine(day, at), zone)


def local_day_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """[local midnight, next local midnight) of `day` as naive UTC."""
    start = _localize(datetime.combine(day, time.min), zone, strict=False)
    end = _localize(datetime.combine(day + timedelta(days=1), time.min), zone, strict=False)
    return (
        start.astimezone(UTC).replace(tzinfo=None),
        end.astimezone(UTC).replace(tzinfo=None),
    )


def local_today(zone: ZoneInfo, now: datetime | None = None) -> date:
    now = now or utc_naive_now()
    return to_wall_clock(now, zone).date()


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def format_offset(offset: timedelta) -> str:
    total = int(offset.total_seconds()) // 60
    sign = "+" if total >= 0 else "-"
    hours, minutes = divmod(abs(total), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


def parse_offset(value: str) -> timezone:
    m = _OFFSET_RE.match(value)
    if not m:
        raise ValidationError(f"Invalid UTC offset: {value!r}. Expected +HH:MM")
    sign, hours, minutes = m.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def split_client_timestamp(value: datetime, zone: ZoneInfo) -> tuple[datetime, str]:
    """Split a client-observed timestamp into (naive UTC instant, original offset).

    Naive values are taken as the clinic's wall clock at that moment.
    """
    if value.tzinfo is None:
        value = _localize(value, zone, strict=False)
    offset = value.utcoffset() or timedelta(0)
    return value.astimezone(UTC).replace(tzinfo=None), format_offset(offset)


def restore_client_timestamp(stored: datetime, offset: str | None) -> datetime:
    """Re-render a stored instant in the offset the client originally observed."""
    if not offset:
        return as_utc(stored)
    return as_utc(stored).astimezone(parse_offset(offset))
