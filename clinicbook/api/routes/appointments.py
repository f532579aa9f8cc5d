from datetime import date
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query, status

from clinicbook.api.deps import get_caller, get_scheduler
from clinicbook.api.schemas.appointment import RescheduleRequest
from clinicbook.core.security import Caller
from clinicbook.core.wallclock import as_utc, format_wall_clock, restore_client_timestamp
from clinicbook.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
    StatusChange,
)
from clinicbook.services.scheduler import AppointmentScheduler

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _to_public(a: Appointment, zone: ZoneInfo) -> AppointmentPublic:
    """Public shape: instants in UTC plus the clinic-local wall clock for display."""
    return AppointmentPublic(
        id=a.id,
        clinic_id=a.clinic_id,
        doctor_id=a.doctor_id,
        patient_id=a.patient_id,
        appointment_date=as_utc(a.appointment_date),
        local_date=format_wall_clock(a.appointment_date, zone, "%Y-%m-%d"),
        local_time=format_wall_clock(a.appointment_date, zone, "%H:%M"),
        timezone=zone.key,
        duration=a.duration,
        status=AppointmentStatus(a.status),
        amount=a.amount,
        reason=a.reason,
        notes=a.notes,
        cancellation_reason=a.cancellation_reason,
        suggested_new_date=as_utc(a.suggested_new_date) if a.suggested_new_date else None,
        registered_at=(
            restore_client_timestamp(a.registered_at, a.registered_at_offset) if a.registered_at else None
        ),
        created_at=as_utc(a.created_at),
        updated_at=as_utc(a.updated_at),
    )


async def _public(scheduler: AppointmentScheduler, a: Appointment) -> AppointmentPublic:
    return _to_public(a, await scheduler.clinic_zone(a.clinic_id))


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    caller: Caller = Depends(get_caller),
) -> AppointmentPublic:
    appointment = await scheduler.create_appointment(body, caller_role=caller.role)
    return await _public(scheduler, appointment)


@router.get("", response_model=list[AppointmentPublic])
async def list_appointments(
    clinic_id: int | None = Query(None),
    doctor_id: int | None = Query(None),
    patient_id: int | None = Query(None),
    status_param: AppointmentStatus | None = Query(None, alias="status"),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> list[AppointmentPublic]:
    filters = AppointmentFilter(
        clinic_id=clinic_id,
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status_param,
        from_date=from_date,
        to_date=to_date,
    )
    appointments = await scheduler.list_appointments(filters)
    zones: dict[int, ZoneInfo] = {}
    out = []
    for a in appointments:
        if a.clinic_id not in zones:
            zones[a.clinic_id] = await scheduler.clinic_zone(a.clinic_id)
        out.append(_to_public(a, zones[a.clinic_id]))
    return out


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: int,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentPublic:
    return await _public(scheduler, await scheduler.get_appointment(appointment_id))


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def update_appointment(
    appointment_id: int,
    body: AppointmentUpdate,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentPublic:
    appointment = await scheduler.update_appointment(appointment_id, body)
    return await _public(scheduler, appointment)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentPublic)
async def reschedule_appointment(
    appointment_id: int,
    body: RescheduleRequest,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentPublic:
    appointment = await scheduler.reschedule_appointment(appointment_id, body.appointment_date, body.duration)
    return await _public(scheduler, appointment)


@router.patch("/{appointment_id}/status", response_model=AppointmentPublic)
async def change_appointment_status(
    appointment_id: int,
    body: StatusChange,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> AppointmentPublic:
    appointment = await scheduler.change_appointment_status(appointment_id, body)
    return await _public(scheduler, appointment)
