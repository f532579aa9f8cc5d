"""Shared fixtures for tests that need a database."""

import tempfile
import unittest
from datetime import datetime

from clinicbook.core.db import build_engine, build_session_maker, init_db
from clinicbook.models.clinic import Clinic, Patient
from clinicbook.models.schedule import DayScheduleIn
from clinicbook.models.user import User, UserRole
from clinicbook.services.scheduler import AppointmentScheduler

CLINIC_TZ = "Asia/Dubai"  # UTC+4 all year

# Monday 2025-12-01 09:00 UTC (13:00 in Dubai)
NOW = datetime(2025, 12, 1, 9, 0)

WEEKDAYS_9_TO_18 = [
    DayScheduleIn(day_of_week=day, is_working=True, start_time="09:00", end_time="18:00")
    for day in range(1, 6)
] + [
    DayScheduleIn(day_of_week=0, is_working=False),
    DayScheduleIn(day_of_week=6, is_working=False),
]


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """One clinic in Dubai with two doctors, a patient and a non-doctor user."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = build_engine(f"sqlite+aiosqlite:///{self._tmp.name}/test.db")
        await init_db(self.engine)
        self.session_maker = build_session_maker(self.engine)
        self.now = NOW
        self.scheduler = AppointmentScheduler(self.session_maker, clock=lambda: self.now)

        async with self.session_maker() as session:
            async with session.begin():
                clinic = Clinic(name="Smile Dental", timezone=CLINIC_TZ)
                session.add(clinic)
                await session.flush()
                doctor = User(email="doc@smile.test", full_name="Dr. Ivanova", role=UserRole.DOCTOR.value, clinic_id=clinic.id)
                other_doctor = User(email="doc2@smile.test", full_name="Dr. Petrov", role=UserRole.DOCTOR.value, clinic_id=clinic.id)
                receptionist = User(email="desk@smile.test", role=UserRole.CLINIC.value, clinic_id=clinic.id)
                session.add_all([doctor, other_doctor, receptionist])
                await session.flush()
                patient = Patient(clinic_id=clinic.id, full_name="Anna Smirnova", phone="+971500000000")
                session.add(patient)
                await session.flush()
                self.clinic_id = clinic.id
                self.doctor_id = doctor.id
                self.other_doctor_id = other_doctor.id
                self.receptionist_id = receptionist.id
                self.patient_id = patient.id

    async def asyncTearDown(self):
        await self.engine.dispose()
        self._tmp.cleanup()

    async def set_weekdays(self, doctor_id=None):
        return await self.scheduler.set_doctor_schedule(doctor_id or self.doctor_id, WEEKDAYS_9_TO_18)
