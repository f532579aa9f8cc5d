from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import NamedTuple
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.config import settings
from clinicbook.core.errors import ValidationError
from clinicbook.core.wallclock import (
    day_of_week,
    format_hhmm,
    local_day_bounds,
    local_today,
    utc_naive_now,
    wall_clock_to_utc,
)
from clinicbook.models.appointment import Appointment, AppointmentStatus
from clinicbook.services.schedule_service import (
    get_clinic_zone,
    get_schedule_for_day,
    require_doctor,
    working_window,
)


class BusyInterval(NamedTuple):
    """Half-open [start, end) in naive UTC, held by a non-cancelled appointment."""

    start: datetime
    end: datetime
    appointment_id: int


@dataclass
class Slot:
    time: str  # HH:mm, clinic-local
    start: datetime  # naive UTC
    is_busy: bool
    is_past: bool

    @property
    def is_available(self) -> bool:
        return not self.is_busy and not self.is_past


@dataclass
class DayAvailability:
    date: date
    timezone: str
    duration: int
    is_working: bool
    window_start: str | None = None
    window_end: str | None = None
    busy: list[BusyInterval] = field(default_factory=list)
    slots: list[Slot] = field(default_factory=list)


def resolve_duration(duration: int | None) -> int:
    if duration is None:
        return settings.default_duration_minutes
    if not settings.min_duration_minutes <= duration <= settings.max_duration_minutes:
        raise ValidationError(
            f"Duration must be between {settings.min_duration_minutes} and "
            f"{settings.max_duration_minutes} minutes"
        )
    return duration


def overlaps(start: datetime, end: datetime, busy_start: datetime, busy_end: datetime) -> bool:
    # Boundaries are exclusive: a slot ending exactly when another starts is free
    return start < busy_end and end > busy_start


def is_interval_free(
    busy: list[BusyInterval], start: datetime, end: datetime, exclude_appointment_id: int | None = None
) -> bool:
    return not find_conflicts(busy, start, end, exclude_appointment_id)


def find_conflicts(
    busy: list[BusyInterval], start: datetime, end: datetime, exclude_appointment_id: int | None = None
) -> list[BusyInterval]:
    return [
        b
        for b in busy
        if b.appointment_id != exclude_appointment_id and overlaps(start, end, b.start, b.end)
    ]


def _slot_times_for_window(window_start: time, window_end: time) -> list[time]:
    """Slot start times on a fixed stride from the window start, kept inside both the
    working window and [slot_start_hour, slot_end_hour)."""
    lower = settings.slot_start_hour * 60
    upper = settings.slot_end_hour * 60
    current = window_start.hour * 60 + window_start.minute
    end = window_end.hour * 60 + window_end.minute
    out: list[time] = []
    while current < end:
        if lower <= current < upper:
            out.append(time(current // 60, current % 60))
        current += settings.slot_interval_minutes
    return out


def build_slots(
    d: date,
    zone: ZoneInfo,
    window: tuple[time, time],
    busy: list[BusyInterval],
    duration: int,
    now: datetime,
) -> list[Slot]:
    """Mark each grid slot busy/past. The grid is fixed; only the busy test uses `duration`."""
    is_today = d == local_today(zone, now)
    length = timedelta(minutes=duration)
    slots: list[Slot] = []
    for t in _slot_times_for_window(*window):
        try:
            start = wall_clock_to_utc(d, t, zone)
        except ValidationError:
            continue  # skipped by a DST change
        slots.append(
            Slot(
                time=format_hhmm(t),
                start=start,
                is_busy=not is_interval_free(busy, start, start + length),
                is_past=is_today and start <= now,
            )
        )
    return slots


async def get_busy_intervals(
    session: AsyncSession,
    doctor_id: int,
    range_start: datetime,
    range_end: datetime,
    exclude_appointment_id: int | None = None,
) -> list[BusyInterval]:
    """Busy intervals of the doctor intersecting [range_start, range_end), ordered by start."""
    active = (
        Appointment.doctor_id == doctor_id,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    )
    # Look back by the longest stored booking, which may predate a lower max_duration_minutes
    longest = (await session.execute(select(func.max(Appointment.duration)).where(*active))).scalar_one_or_none()
    if not longest:
        return []
    lookback = range_start - timedelta(minutes=longest)
    q = (
        select(Appointment)
        .where(
            *active,
            Appointment.appointment_date >= lookback,
            Appointment.appointment_date < range_end,
        )
        .order_by(Appointment.appointment_date)
    )
    if exclude_appointment_id is not None:
        q = q.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(q)
    out: list[BusyInterval] = []
    for a in result.scalars().all():
        end = a.appointment_date + timedelta(minutes=a.duration)
        if overlaps(a.appointment_date, end, range_start, range_end):
            out.append(BusyInterval(a.appointment_date, end, a.id))
    return out


async def get_day_availability(
    session: AsyncSession,
    doctor_id: int,
    d: date,
    duration: int | None = None,
    now: datetime | None = None,
) -> DayAvailability:
    """Busy intervals and slot grid of one clinic-local day.

    Busy intervals are always reported; slots only exist on working days.
    """
    duration = resolve_duration(duration)
    doctor = await require_doctor(session, doctor_id)
    zone = await get_clinic_zone(session, doctor.clinic_id)
    day_start, day_end = local_day_bounds(d, zone)
    busy = await get_busy_intervals(session, doctor_id, day_start, day_end)
    window = working_window(await get_schedule_for_day(session, doctor_id, day_of_week(d)))
    availability = DayAvailability(date=d, timezone=zone.key, duration=duration, is_working=window is not None, busy=busy)
    if window is None:
        return availability
    availability.window_start, availability.window_end = format_hhmm(window[0]), format_hhmm(window[1])
    availability.slots = build_slots(d, zone, window, busy, duration, now or utc_naive_now())
    return availability
