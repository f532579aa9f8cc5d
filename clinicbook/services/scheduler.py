import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinicbook.core.config import settings
from clinicbook.core.errors import NotFoundError, SlotConflictError
from clinicbook.core.locks import DoctorLocks
from clinicbook.core.wallclock import utc_naive_now
from clinicbook.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentUpdate,
    StatusChange,
)
from clinicbook.models.schedule import DayScheduleIn, DoctorSchedule
from clinicbook.services import appointment_service, schedule_service, slot_service

logger = logging.getLogger(__name__)


class AppointmentScheduler:
    """Single entry point for reading and changing doctor calendars.

    Every write is one transaction. Writes that can affect a doctor's timeline
    run under that doctor's lock from the availability read to the commit, so
    two overlapping bookings for the same doctor can never both succeed.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utc_naive_now,
        lock_timeout: float | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.clock = clock
        self.locks = DoctorLocks(settings.booking_lock_timeout_seconds if lock_timeout is None else lock_timeout)

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[AsyncSession]:
        async with self.session_maker() as session:
            yield session

    @asynccontextmanager
    async def _write(self, *doctor_ids: int) -> AsyncIterator[AsyncSession]:
        async with self.locks.hold_many(*doctor_ids):
            async with self.session_maker() as session:
                async with session.begin():
                    yield session

    async def _doctor_of(self, appointment_id: int) -> int:
        async with self._read() as session:
            result = await session.execute(select(Appointment.doctor_id).where(Appointment.id == appointment_id))
            doctor_id = result.scalar_one_or_none()
        if doctor_id is None:
            raise NotFoundError("Appointment not found")
        return doctor_id

    async def clinic_zone(self, clinic_id: int | None) -> ZoneInfo:
        async with self._read() as session:
            return await schedule_service.get_clinic_zone(session, clinic_id)

    # --- Doctor schedule ---

    async def get_doctor_schedule(self, doctor_id: int) -> list[DoctorSchedule]:
        async with self._read() as session:
            return await schedule_service.get_schedule(session, doctor_id)

    async def set_doctor_schedule(self, doctor_id: int, entries: list[DayScheduleIn]) -> list[DoctorSchedule]:
        async with self._write(doctor_id) as session:
            return await schedule_service.replace_schedule(session, doctor_id, entries)

    async def delete_doctor_schedule(self, doctor_id: int) -> int:
        async with self._write(doctor_id) as session:
            await schedule_service.require_doctor(session, doctor_id, for_update=True)
            return await schedule_service.delete_schedule(session, doctor_id)

    # --- Availability ---

    async def get_busy_slots(self, doctor_id: int, d: date, duration: int | None = None) -> slot_service.DayAvailability:
        """Advisory view for pickers; create/reschedule re-check inside their transaction."""
        async with self._read() as session:
            return await slot_service.get_day_availability(session, doctor_id, d, duration, now=self.clock())

    # --- Appointments ---

    async def get_appointment(self, appointment_id: int) -> Appointment:
        async with self._read() as session:
            return await appointment_service.get_appointment(session, appointment_id)

    async def list_appointments(self, filters: AppointmentFilter) -> list[Appointment]:
        async with self._read() as session:
            return await appointment_service.list_appointments(session, filters)

    async def create_appointment(self, data: AppointmentCreate, caller_role: str | None = None) -> Appointment:
        async with self._write(data.doctor_id) as session:
            return await appointment_service.create_appointment(session, data, caller_role, self.clock())

    async def reschedule_appointment(
        self, appointment_id: int, new_date: datetime, new_duration: int | None = None
    ) -> Appointment:
        fields: dict = {"appointment_date": new_date}
        if new_duration is not None:
            fields["duration"] = new_duration
        return await self.update_appointment(appointment_id, AppointmentUpdate(**fields))

    async def change_appointment_status(self, appointment_id: int, change: StatusChange) -> Appointment:
        doctor_id = await self._doctor_of(appointment_id)
        async with self._write(doctor_id) as session:
            appointment = await self._locked_appointment(session, appointment_id, doctor_id)
            return await appointment_service.change_status(session, appointment, change, self.clock())

    async def update_appointment(self, appointment_id: int, update: AppointmentUpdate) -> Appointment:
        current_doctor = await self._doctor_of(appointment_id)
        target_doctor = update.doctor_id if update.doctor_id is not None else current_doctor
        # Both calendars: the source one so its own reschedules cannot interleave with the move
        async with self._write(current_doctor, target_doctor) as session:
            appointment = await self._locked_appointment(session, appointment_id, current_doctor)
            return await appointment_service.update_appointment(session, appointment, update, self.clock())

    async def _locked_appointment(self, session: AsyncSession, appointment_id: int, doctor_id: int) -> Appointment:
        appointment = await appointment_service.get_appointment(session, appointment_id, for_update=True)
        if appointment.doctor_id != doctor_id:
            # Moved to another doctor between the lookup and the lock
            logger.warning("Appointment %s left doctor %s before the lock was taken", appointment_id, doctor_id)
            raise SlotConflictError("Appointment was changed concurrently, please retry")
        return appointment
