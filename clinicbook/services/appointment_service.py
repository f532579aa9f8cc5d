import logging
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicbook.core.config import settings
from clinicbook.core.errors import (
    NotFoundError,
    PastDateError,
    SlotConflictError,
    ValidationError,
)
from clinicbook.core.wallclock import (
    as_utc,
    day_of_week,
    local_day_bounds,
    split_client_timestamp,
    to_naive_utc,
    to_wall_clock,
)
from clinicbook.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
    StatusChange,
)
from clinicbook.models.clinic import Patient
from clinicbook.models.user import STAFF_ROLES, User
from clinicbook.services.appointment_state import SCHEDULING_FIELDS, plan_status_change, split_update
from clinicbook.services.schedule_service import (
    get_clinic_zone,
    get_schedule_for_day,
    require_doctor,
    working_window,
)
from clinicbook.services.slot_service import get_busy_intervals, resolve_duration

logger = logging.getLogger(__name__)


def _require_future(start: datetime, now: datetime) -> None:
    if start <= now:
        raise PastDateError("Appointment date must be in the future")


def _check_working_hours(doctor_id: int, start: datetime, duration: int, zone: ZoneInfo, window: tuple | None) -> None:
    local_start = to_wall_clock(start, zone)
    local_end = to_wall_clock(start + timedelta(minutes=duration), zone)
    if (
        window is None
        or local_end.date() != local_start.date()
        or local_start.time() < window[0]
        or local_end.time() > window[1]
    ):
        logger.warning("Doctor %s does not work at %s (local)", doctor_id, local_start)
        raise ValidationError("Requested time is outside the doctor's working hours")


async def ensure_slot_free(
    session: AsyncSession,
    doctor: User,
    zone: ZoneInfo,
    start: datetime,
    duration: int,
    exclude_appointment_id: int | None = None,
) -> None:
    """Authoritative overlap check; run it in the same transaction as the write."""
    if settings.enforce_working_hours:
        local_day = to_wall_clock(start, zone).date()
        entry = await get_schedule_for_day(session, doctor.id, day_of_week(local_day))
        _check_working_hours(doctor.id, start, duration, zone, working_window(entry))
    end = start + timedelta(minutes=duration)
    conflicts = await get_busy_intervals(session, doctor.id, start, end, exclude_appointment_id=exclude_appointment_id)
    if conflicts:
        logger.warning("Slot conflict for doctor %s at %s (+%d min)", doctor.id, start, duration)
        raise SlotConflictError(
            "Time slot is not available",
            errors=[
                {"appointment_id": c.appointment_id, "start": as_utc(c.start).isoformat(), "end": as_utc(c.end).isoformat()}
                for c in conflicts
            ],
        )


async def get_appointment(session: AsyncSession, appointment_id: int, for_update: bool = False) -> Appointment:
    q = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFoundError("Appointment not found")
    return appointment


async def _save(session: AsyncSession, appointment: Appointment, values: dict[str, Any], now: datetime) -> Appointment:
    for key, value in values.items():
        setattr(appointment, key, value)
    appointment.updated_at = now
    session.add(appointment)
    await session.flush()
    await session.refresh(appointment)
    return appointment


async def create_appointment(
    session: AsyncSession, data: AppointmentCreate, caller_role: str | None, now: datetime
) -> Appointment:
    duration = resolve_duration(data.duration)
    doctor = await require_doctor(session, data.doctor_id, for_update=True)
    if doctor.clinic_id is None:
        raise ValidationError("Doctor is not attached to a clinic")
    zone = await get_clinic_zone(session, doctor.clinic_id)
    start = to_naive_utc(data.appointment_date, zone)
    _require_future(start, now)
    patient = await session.get(Patient, data.patient_id)
    if not patient:
        raise NotFoundError("Patient not found")
    if patient.clinic_id != doctor.clinic_id:
        raise ValidationError("Patient and doctor belong to different clinics")
    await ensure_slot_free(session, doctor, zone, start, duration)

    registered_at, registered_offset = split_client_timestamp(data.registered_at or as_utc(now).astimezone(zone), zone)
    status = AppointmentStatus.CONFIRMED if caller_role in STAFF_ROLES else AppointmentStatus.PENDING
    appointment = Appointment(
        clinic_id=doctor.clinic_id,
        doctor_id=doctor.id,
        patient_id=patient.id,
        appointment_date=start,
        duration=duration,
        status=status.value,
        reason=data.reason,
        notes=data.notes,
        registered_at=registered_at,
        registered_at_offset=registered_offset,
        created_at=now,
        updated_at=now,
    )
    session.add(appointment)
    await session.flush()
    await session.refresh(appointment)
    logger.info(
        "Appointment %s created for doctor %s at %s UTC (%d min, %s)",
        appointment.id, doctor.id, start, duration, status.value,
    )
    return appointment


async def change_status(
    session: AsyncSession, appointment: Appointment, change: StatusChange, now: datetime
) -> Appointment:
    current = AppointmentStatus(appointment.status)
    values = plan_status_change(current, change)
    if not values:
        return appointment
    if values.get("suggested_new_date") is not None:
        zone = await get_clinic_zone(session, appointment.clinic_id)
        values["suggested_new_date"] = to_naive_utc(values["suggested_new_date"], zone)
    appointment = await _save(session, appointment, values, now)
    logger.info("Appointment %s status %s -> %s", appointment.id, current.value, appointment.status)
    return appointment


async def update_appointment(
    session: AsyncSession, appointment: Appointment, update: AppointmentUpdate, now: datetime
) -> Appointment:
    """Apply a combined edit: status change first, then the field edits it allows."""
    current = AppointmentStatus(appointment.status)
    values, edits = split_update(current, update)
    zone = await get_clinic_zone(session, appointment.clinic_id)
    if values.get("suggested_new_date") is not None:
        values["suggested_new_date"] = to_naive_utc(values["suggested_new_date"], zone)

    if SCHEDULING_FIELDS & edits.keys():
        doctor = await require_doctor(session, edits.get("doctor_id", appointment.doctor_id), for_update=True)
        if doctor.clinic_id != appointment.clinic_id:
            raise ValidationError("Doctor belongs to another clinic")
        start = appointment.appointment_date
        if "appointment_date" in edits:
            start = to_naive_utc(edits["appointment_date"], zone)
            _require_future(start, now)
        duration = resolve_duration(edits.get("duration", appointment.duration))
        await ensure_slot_free(session, doctor, zone, start, duration, exclude_appointment_id=appointment.id)
        edits.update(doctor_id=doctor.id, appointment_date=start, duration=duration)

    values.update(edits)
    if not values:
        return appointment
    appointment = await _save(session, appointment, values, now)
    logger.info("Appointment %s updated (%s)", appointment.id, ", ".join(sorted(values)))
    return appointment


async def list_appointments(session: AsyncSession, filters: AppointmentFilter) -> list[Appointment]:
    q = select(Appointment).order_by(Appointment.appointment_date)
    if filters.clinic_id is not None:
        q = q.where(Appointment.clinic_id == filters.clinic_id)
    if filters.doctor_id is not None:
        q = q.where(Appointment.doctor_id == filters.doctor_id)
    if filters.patient_id is not None:
        q = q.where(Appointment.patient_id == filters.patient_id)
    if filters.status is not None:
        q = q.where(Appointment.status == filters.status.value)
    if filters.from_date or filters.to_date:
        clinic_id = filters.clinic_id
        if clinic_id is None and filters.doctor_id is not None:
            doctor = await session.get(User, filters.doctor_id)
            clinic_id = doctor.clinic_id if doctor else None
        zone = await get_clinic_zone(session, clinic_id)
        if filters.from_date:
            q = q.where(Appointment.appointment_date >= local_day_bounds(filters.from_date, zone)[0])
        if filters.to_date:
            q = q.where(Appointment.appointment_date < local_day_bounds(filters.to_date, zone)[1])
    result = await session.execute(q)
    return list(result.scalars().all())
