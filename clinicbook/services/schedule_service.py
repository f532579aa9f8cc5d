import logging
from datetime import time
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.errors import NotADoctorError, NotFoundError, ValidationError
from clinicbook.core.wallclock import HHMM_RE, get_zone, parse_hhmm, utc_naive_now
from clinicbook.models.clinic import Clinic
from clinicbook.models.schedule import DayScheduleIn, DoctorSchedule
from clinicbook.models.user import User, UserRole

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = range(7)


async def require_doctor(session: AsyncSession, doctor_id: int, for_update: bool = False) -> User:
    """Load a user and make sure it is a doctor. `for_update` takes a row lock
    (PostgreSQL) so writes to this doctor's calendar serialize across processes."""
    q = select(User).where(User.id == doctor_id)
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    doctor = result.scalar_one_or_none()
    if not doctor:
        raise NotFoundError("Doctor not found")
    if doctor.role != UserRole.DOCTOR.value:
        raise NotADoctorError("User is not a doctor")
    return doctor


async def get_clinic_zone(session: AsyncSession, clinic_id: int | None) -> ZoneInfo:
    if clinic_id is None:
        return get_zone()
    clinic = await session.get(Clinic, clinic_id)
    return get_zone(clinic.timezone if clinic else None)


async def get_schedule(session: AsyncSession, doctor_id: int) -> list[DoctorSchedule]:
    await require_doctor(session, doctor_id)
    result = await session.execute(
        select(DoctorSchedule).where(DoctorSchedule.doctor_id == doctor_id).order_by(DoctorSchedule.day_of_week)
    )
    return list(result.scalars().all())


async def get_schedule_for_day(session: AsyncSession, doctor_id: int, day_of_week: int) -> DoctorSchedule | None:
    result = await session.execute(
        select(DoctorSchedule).where(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.day_of_week == day_of_week,
        )
    )
    return result.scalar_one_or_none()


def working_window(entry: DoctorSchedule | None) -> tuple[time, time] | None:
    """(start, end) of a working day, None when the doctor does not work."""
    if entry is None or not entry.is_working or not entry.start_time or not entry.end_time:
        return None
    return parse_hhmm(entry.start_time), parse_hhmm(entry.end_time)


def _entry_problems(entry: DayScheduleIn) -> list[str]:
    problems: list[str] = []
    if entry.day_of_week not in DAYS_OF_WEEK:
        problems.append(f"Invalid dayOfWeek: {entry.day_of_week}. Must be between 0 (Sunday) and 6 (Saturday)")
    malformed = False
    for field in ("start_time", "end_time"):
        value = getattr(entry, field)
        if value and not HHMM_RE.match(value):
            problems.append(f"Invalid {field}: {value!r}. Expected HH:mm")
            malformed = True
    if entry.is_working:
        if not entry.start_time or not entry.end_time:
            problems.append("start_time and end_time are required when is_working is true")
        elif not malformed and entry.start_time >= entry.end_time:
            problems.append("start_time must be before end_time")
    return problems


def validate_schedule_entries(entries: list[DayScheduleIn]) -> list[DayScheduleIn]:
    """Check a week submission; every malformed entry is reported, none is written."""
    if not 1 <= len(entries) <= 7:
        raise ValidationError("schedule must contain between 1 and 7 days")
    errors = []
    seen: set[int] = set()
    for index, entry in enumerate(entries):
        problems = _entry_problems(entry)
        if entry.day_of_week in seen:
            problems.append("Each dayOfWeek must be unique in the schedule")
        seen.add(entry.day_of_week)
        if problems:
            errors.append({"index": index, "day_of_week": entry.day_of_week, "messages": problems})
    if errors:
        raise ValidationError("Invalid schedule", errors=errors)
    # Non-working days carry no times
    return [
        entry if entry.is_working else DayScheduleIn(day_of_week=entry.day_of_week, is_working=False)
        for entry in entries
    ]


async def replace_schedule(session: AsyncSession, doctor_id: int, entries: list[DayScheduleIn]) -> list[DoctorSchedule]:
    """Overwrite the doctor's whole week. Days missing from `entries` become non-working."""
    await require_doctor(session, doctor_id, for_update=True)
    submitted = {e.day_of_week: e for e in validate_schedule_entries(entries)}
    result = await session.execute(select(DoctorSchedule).where(DoctorSchedule.doctor_id == doctor_id))
    existing = {row.day_of_week: row for row in result.scalars().all()}
    now = utc_naive_now()
    week: list[DoctorSchedule] = []
    for day in DAYS_OF_WEEK:
        entry = submitted.get(day) or DayScheduleIn(day_of_week=day, is_working=False)
        row = existing.get(day) or DoctorSchedule(doctor_id=doctor_id, day_of_week=day)
        row.is_working = entry.is_working
        row.start_time = entry.start_time
        row.end_time = entry.end_time
        row.updated_at = now
        session.add(row)
        week.append(row)
    await session.flush()
    logger.info("Schedule replaced for doctor %s (%d working days)", doctor_id, sum(r.is_working for r in week))
    return week


async def delete_schedule(session: AsyncSession, doctor_id: int) -> int:
    result = await session.execute(delete(DoctorSchedule).where(DoctorSchedule.doctor_id == doctor_id))
    await session.flush()
    logger.info("Schedule deleted for doctor %s", doctor_id)
    return result.rowcount or 0
