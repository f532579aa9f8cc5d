from fastapi import APIRouter, Depends, status

from clinicbook.api.deps import ensure_can_edit_schedule, get_caller, get_scheduler
from clinicbook.api.schemas.schedule import ScheduleResponse, ScheduleUpdateRequest
from clinicbook.core.security import Caller
from clinicbook.models.schedule import DaySchedulePublic, DoctorSchedule
from clinicbook.services.scheduler import AppointmentScheduler

router = APIRouter(prefix="/doctors", tags=["schedules"])


def _to_response(doctor_id: int, rows: list[DoctorSchedule]) -> ScheduleResponse:
    return ScheduleResponse(
        doctor_id=doctor_id,
        schedule=[
            DaySchedulePublic(
                day_of_week=r.day_of_week,
                is_working=r.is_working,
                start_time=r.start_time,
                end_time=r.end_time,
            )
            for r in rows
        ],
    )


@router.get("/{doctor_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    doctor_id: int,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> ScheduleResponse:
    return _to_response(doctor_id, await scheduler.get_doctor_schedule(doctor_id))


@router.put("/{doctor_id}/schedule", response_model=ScheduleResponse)
async def set_schedule(
    doctor_id: int,
    body: ScheduleUpdateRequest,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    caller: Caller = Depends(get_caller),
) -> ScheduleResponse:
    """Replace the whole week in one go. Days left out are stored as non-working."""
    ensure_can_edit_schedule(caller, doctor_id)
    return _to_response(doctor_id, await scheduler.set_doctor_schedule(doctor_id, body.schedule))


@router.delete("/{doctor_id}/schedule", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    doctor_id: int,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    caller: Caller = Depends(get_caller),
) -> None:
    ensure_can_edit_schedule(caller, doctor_id)
    await scheduler.delete_doctor_schedule(doctor_id)
