from datetime import date

from fastapi import APIRouter, Depends, Query

from clinicbook.api.deps import get_scheduler
from clinicbook.api.schemas.appointment import BusyInterval, BusySlotsResponse, SlotInfo
from clinicbook.core.wallclock import as_utc
from clinicbook.services.scheduler import AppointmentScheduler

router = APIRouter(prefix="/doctors", tags=["slots"])


@router.get("/{doctor_id}/busy-slots", response_model=BusySlotsResponse)
async def busy_slots(
    doctor_id: int,
    date_param: date = Query(..., alias="date"),
    duration: int | None = Query(None),
    scheduler: AppointmentScheduler = Depends(get_scheduler),
) -> BusySlotsResponse:
    """Slot grid of a clinic-local day. A slot is offerable when it is neither busy nor past.
    Busy intervals are listed even on days the doctor does not work."""
    day = await scheduler.get_busy_slots(doctor_id, date_param, duration)
    return BusySlotsResponse(
        date=day.date.isoformat(),
        timezone=day.timezone,
        duration=day.duration,
        is_working=day.is_working,
        working_start=day.window_start,
        working_end=day.window_end,
        busy=[
            BusyInterval(appointment_id=b.appointment_id, start=as_utc(b.start), end=as_utc(b.end))
            for b in day.busy
        ],
        slots=[
            SlotInfo(
                time=s.time,
                start_utc=as_utc(s.start),
                is_busy=s.is_busy,
                is_past=s.is_past,
                available=s.is_available,
            )
            for s in day.slots
        ],
    )
