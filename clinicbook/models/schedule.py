from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from clinicbook.core.wallclock import utc_naive_now


class DoctorSchedule(SQLModel, table=True):
    """Recurring working window of a doctor for one day of the week."""

    __tablename__ = "doctor_schedules"
    __table_args__ = (UniqueConstraint("doctor_id", "day_of_week", name="uq_doctor_schedules_doctor_day"),)

    id: int | None = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    day_of_week: int = Field(index=True)  # 0 = Sunday ... 6 = Saturday
    is_working: bool = True
    start_time: str | None = Field(default=None, max_length=5)  # HH:mm, clinic-local
    end_time: str | None = Field(default=None, max_length=5)
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime)


class DayScheduleIn(SQLModel):
    day_of_week: int
    is_working: bool = True
    start_time: str | None = None
    end_time: str | None = None


class DaySchedulePublic(SQLModel):
    day_of_week: int
    is_working: bool
    start_time: str | None = None
    end_time: str | None = None
