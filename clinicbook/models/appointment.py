from datetime import date, datetime
from enum import Enum

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel

from clinicbook.core.wallclock import utc_naive_now


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_doctor_id_appointment_date", "doctor_id", "appointment_date"),)

    id: int | None = Field(default=None, primary_key=True)
    clinic_id: int = Field(foreign_key="clinics.id", index=True)
    doctor_id: int = Field(foreign_key="users.id", index=True)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    appointment_date: datetime = Field(index=True, sa_type=DateTime)  # naive UTC
    duration: int = 30  # minutes
    status: str = Field(default=AppointmentStatus.PENDING.value, max_length=16, index=True)
    amount: float | None = None
    reason: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)
    cancellation_reason: str | None = None
    suggested_new_date: datetime | None = Field(default=None, sa_type=DateTime)
    registered_at: datetime | None = Field(default=None, sa_type=DateTime)
    registered_at_offset: str | None = Field(default=None, max_length=6)  # e.g. "+04:00"
    created_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utc_naive_now, sa_type=DateTime)


class AppointmentCreate(SQLModel):
    doctor_id: int
    patient_id: int
    appointment_date: datetime
    duration: int | None = None
    reason: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)
    registered_at: datetime | None = None


class AppointmentUpdate(SQLModel):
    """Partial edit. Unset fields are left alone."""

    doctor_id: int | None = None
    appointment_date: datetime | None = None
    duration: int | None = None
    reason: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)
    amount: float | None = Field(default=None, ge=0)
    status: AppointmentStatus | None = None
    cancellation_reason: str | None = None
    suggested_new_date: datetime | None = None


class StatusChange(SQLModel):
    status: AppointmentStatus
    amount: float | None = Field(default=None, ge=0)
    cancellation_reason: str | None = None
    suggested_new_date: datetime | None = None


class AppointmentFilter(SQLModel):
    clinic_id: int | None = None
    doctor_id: int | None = None
    patient_id: int | None = None
    status: AppointmentStatus | None = None
    from_date: date | None = None  # clinic-local, inclusive
    to_date: date | None = None  # clinic-local, inclusive


class AppointmentPublic(SQLModel):
    id: int
    clinic_id: int
    doctor_id: int
    patient_id: int
    appointment_date: datetime  # UTC
    local_date: str  # YYYY-MM-DD in the clinic zone
    local_time: str  # HH:mm in the clinic zone
    timezone: str
    duration: int
    status: AppointmentStatus
    amount: float | None = None
    reason: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    suggested_new_date: datetime | None = None
    registered_at: datetime | None = None  # in the client's original offset
    created_at: datetime
    updated_at: datetime
