from pydantic import BaseModel

from clinicbook.models.schedule import DayScheduleIn, DaySchedulePublic


class ScheduleUpdateRequest(BaseModel):
    schedule: list[DayScheduleIn]


class ScheduleResponse(BaseModel):
    doctor_id: int
    schedule: list[DaySchedulePublic]
