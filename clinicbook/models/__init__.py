from clinicbook.models.clinic import Clinic, Patient
from clinicbook.models.user import STAFF_ROLES, User, UserRole
from clinicbook.models.schedule import DayScheduleIn, DaySchedulePublic, DoctorSchedule
from clinicbook.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
    StatusChange,
)

__all__ = [
    "Clinic",
    "Patient",
    "STAFF_ROLES",
    "User",
    "UserRole",
    "DayScheduleIn",
    "DaySchedulePublic",
    "DoctorSchedule",
    "Appointment",
    "AppointmentCreate",
    "AppointmentFilter",
    "AppointmentPublic",
    "AppointmentStatus",
    "AppointmentUpdate",
    "StatusChange",
]
