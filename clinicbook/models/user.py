from enum import Enum

from sqlmodel import Field, SQLModel


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    CLINIC = "CLINIC"
    DOCTOR = "DOCTOR"
    PATIENT = "PATIENT"


# Appointments booked by these roles skip the pending state
STAFF_ROLES = frozenset({UserRole.ADMIN.value, UserRole.CLINIC.value, UserRole.DOCTOR.value})


class UserBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str | None = None
    role: str = Field(default=UserRole.PATIENT.value, max_length=16, index=True)
    is_active: bool = True


class User(UserBase, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    clinic_id: int | None = Field(default=None, foreign_key="clinics.id", index=True)