from datetime import datetime

from pydantic import BaseModel


class SlotInfo(BaseModel):
    time: str  # HH:mm, clinic-local
    start_utc: datetime
    is_busy: bool
    is_past: bool
    available: bool


class BusyInterval(BaseModel):
    appointment_id: int
    start: datetime
    end: datetime


class BusySlotsResponse(BaseModel):
    date: str  # YYYY-MM-DD
    timezone: str
    duration: int
    is_working: bool
    working_start: str | None = None
    working_end: str | None = None
    busy: list[BusyInterval]
    slots: list[SlotInfo]


class RescheduleRequest(BaseModel):
    appointment_date: datetime
    duration: int | None = None
