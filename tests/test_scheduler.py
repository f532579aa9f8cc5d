"""
Tests for services/scheduler.py

Booking, rescheduling and status changes against a real database, including
the guarantee that a doctor never ends up with overlapping appointments.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from itertools import combinations
from unittest import mock

from clinicbook.core.config import settings
from clinicbook.core.errors import (
    ImmutableStateError,
    InvalidTransitionError,
    MissingCancellationReasonError,
    NotADoctorError,
    NotFoundError,
    PastDateError,
    SlotConflictError,
    ValidationError,
)
from clinicbook.core.wallclock import get_zone, to_wall_clock
from clinicbook.models.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentFilter,
    AppointmentStatus,
    AppointmentUpdate,
    StatusChange,
)
from clinicbook.services import appointment_service
from tests.helpers import CLINIC_TZ, DatabaseTestCase

CHRISTMAS = date(2025, 12, 25)  # Thursday
SUNDAY = date(2025, 12, 28)


def local(hour, minute=0, day=CHRISTMAS):
    """Clinic wall-clock time, as a client would send it."""
    return datetime(day.year, day.month, day.day, hour, minute)


class SchedulerTestCase(DatabaseTestCase):
    async def book(self, hour, minute=0, duration=None, day=CHRISTMAS, doctor_id=None, role=None, **extra):
        data = AppointmentCreate(
            doctor_id=doctor_id or self.doctor_id,
            patient_id=self.patient_id,
            appointment_date=local(hour, minute, day),
            duration=duration,
            **extra,
        )
        return await self.scheduler.create_appointment(data, caller_role=role)

    def assertNoOverlaps(self, appointments):
        for a, b in combinations(appointments, 2):
            a_end = a.appointment_date + timedelta(minutes=a.duration)
            b_end = b.appointment_date + timedelta(minutes=b.duration)
            self.assertFalse(
                a.appointment_date < b_end and b.appointment_date < a_end,
                f"{a.id} and {b.id} overlap",
            )


class TestCreateAppointment(SchedulerTestCase):
    """New bookings."""

    async def test_wall_clock_round_trip(self):
        """15:00 in Dubai is stored as 11:00 UTC and displayed as 15:00 again."""
        a = await self.book(15)
        self.assertEqual(a.appointment_date, datetime(2025, 12, 25, 11, 0))
        shown = to_wall_clock(a.appointment_date, get_zone(CLINIC_TZ))
        self.assertEqual(shown, local(15))
        self.assertEqual(a.duration, 30)
        self.assertEqual(a.clinic_id, self.clinic_id)

    async def test_anonymous_booking_is_pending(self):
        a = await self.book(10)
        self.assertEqual(a.status, AppointmentStatus.PENDING.value)

    async def test_staff_booking_is_confirmed(self):
        for hour, role in ((10, "CLINIC"), (11, "ADMIN"), (12, "DOCTOR")):
            with self.subTest(role=role):
                a = await self.book(hour, role=role)
                self.assertEqual(a.status, AppointmentStatus.CONFIRMED.value)
        a = await self.book(13, role="PATIENT")
        self.assertEqual(a.status, AppointmentStatus.PENDING.value)

    async def test_adjacent_booking_is_allowed(self):
        """10:00-10:30 and 10:30-11:00 share only a boundary."""
        await self.book(10)
        second = await self.book(10, 30)
        self.assertEqual(second.appointment_date, datetime(2025, 12, 25, 6, 30))
        before = await self.book(9, 30)
        self.assertIsNotNone(before.id)

    async def test_overlapping_booking_conflicts(self):
        first = await self.book(10)
        with self.assertRaises(SlotConflictError) as ctx:
            await self.book(10, 15)
        self.assertEqual([e["appointment_id"] for e in ctx.exception.errors], [first.id])

    async def test_long_booking_conflicts_with_later_one(self):
        await self.book(10)
        with self.assertRaises(SlotConflictError):
            await self.book(9, 30, duration=60)

    async def test_other_doctor_is_independent(self):
        await self.book(10)
        a = await self.book(10, doctor_id=self.other_doctor_id)
        self.assertEqual(a.doctor_id, self.other_doctor_id)

    async def test_past_dates_rejected(self):
        """Now is 13:00 in Dubai on 2025-12-01."""
        with self.assertRaises(PastDateError):
            await self.book(10, day=date(2025, 11, 30))
        with self.assertRaises(PastDateError):
            await self.book(13, day=date(2025, 12, 1))
        a = await self.book(13, 30, day=date(2025, 12, 1))
        self.assertIsNotNone(a.id)

    async def test_duration_bounds(self):
        for duration in (10, 300):
            with self.subTest(duration=duration):
                with self.assertRaises(ValidationError):
                    await self.book(10, duration=duration)
        a = await self.book(10, duration=240)
        self.assertEqual(a.duration, 240)

    async def test_long_booking_survives_lower_max_duration(self):
        """A 4 hour booking made earlier still blocks its last hour after the maximum drops to 60."""
        await self.book(9, duration=240)
        with mock.patch.object(settings, "max_duration_minutes", 60):
            with self.assertRaises(SlotConflictError):
                await self.book(12)
            day = await self.scheduler.get_busy_slots(self.doctor_id, CHRISTMAS)
        self.assertEqual(len(day.busy), 1)
        a = await self.book(13)
        self.assertIsNotNone(a.id)

    async def test_unknown_patient(self):
        data = AppointmentCreate(doctor_id=self.doctor_id, patient_id=9999, appointment_date=local(10))
        with self.assertRaises(NotFoundError):
            await self.scheduler.create_appointment(data)

    async def test_doctor_must_be_a_doctor(self):
        with self.assertRaises(NotADoctorError):
            await self.book(10, doctor_id=self.receptionist_id)
        with self.assertRaises(NotFoundError):
            await self.book(10, doctor_id=9999)

    async def test_registered_at_keeps_client_offset(self):
        seen = datetime(2025, 12, 1, 13, 5, tzinfo=timezone(timedelta(hours=4)))
        a = await self.book(10, registered_at=seen)
        self.assertEqual(a.registered_at, datetime(2025, 12, 1, 9, 5))
        self.assertEqual(a.registered_at_offset, "+04:00")

    async def test_registered_at_defaults_to_now_in_clinic_zone(self):
        a = await self.book(10)
        self.assertEqual(a.registered_at, self.now)
        self.assertEqual(a.registered_at_offset, "+04:00")

    async def test_working_hours_not_enforced_by_default(self):
        """Sunday is a day off but booking still succeeds."""
        await self.set_weekdays()
        a = await self.book(10, day=SUNDAY)
        self.assertIsNotNone(a.id)

    async def test_working_hours_enforced_when_enabled(self):
        await self.set_weekdays()
        with mock.patch.object(settings, "enforce_working_hours", True):
            with self.assertRaises(ValidationError):
                await self.book(10, day=SUNDAY)
            with self.assertRaises(ValidationError):
                await self.book(17, 45)
            with self.assertRaises(ValidationError):
                await self.book(8, 30)
            a = await self.book(17, 30)
        self.assertIsNotNone(a.id)


class TestConcurrentBooking(SchedulerTestCase):
    """Concurrent requests for the same doctor."""

    async def test_race_for_the_same_slot(self):
        """Exactly one of two simultaneous requests for 10:00 wins."""
        results = await asyncio.gather(self.book(10), self.book(10, 15), return_exceptions=True)
        created = [r for r in results if isinstance(r, Appointment)]
        conflicts = [r for r in results if isinstance(r, SlotConflictError)]
        self.assertEqual(len(created), 1)
        self.assertEqual(len(conflicts), 1)
        listed = await self.scheduler.list_appointments(AppointmentFilter(doctor_id=self.doctor_id))
        self.assertEqual(len(listed), 1)

    async def test_no_overlaps_after_many_requests(self):
        """Overlapping 45 minute requests every 15 minutes leave a clean timeline."""
        starts = [(9 + m // 60, m % 60) for m in range(0, 180, 15)]
        results = await asyncio.gather(
            *(self.book(h, m, duration=45) for h, m in starts), return_exceptions=True
        )
        for r in results:
            if not isinstance(r, Appointment):
                self.assertIsInstance(r, SlotConflictError)
        booked = await self.scheduler.list_appointments(AppointmentFilter(doctor_id=self.doctor_id))
        self.assertGreater(len(booked), 1)
        self.assertNoOverlaps(booked)

    async def test_lock_timeout_is_a_conflict(self):
        self.scheduler.locks.timeout = 0.01
        async with self.scheduler.locks.hold(self.doctor_id):
            with self.assertRaises(SlotConflictError):
                await self.book(10)

    async def test_partial_lock_set_is_released_on_timeout(self):
        """Failing to get the second doctor gives the first one back."""
        locks = self.scheduler.locks
        locks.timeout = 0.01
        async with locks.hold(self.other_doctor_id):
            with self.assertRaises(SlotConflictError):
                async with locks.hold_many(self.other_doctor_id, self.doctor_id):
                    pass
        self.assertFalse(locks._lock_for(self.doctor_id).locked())
        self.assertFalse(locks._lock_for(self.other_doctor_id).locked())

    async def test_move_races_reschedule_of_same_appointment(self):
        """Moving to another doctor while the same appointment is rescheduled never double-books the target."""
        moving = await self.book(10)
        await self.book(14, doctor_id=self.other_doctor_id)
        real_busy = appointment_service.get_busy_intervals

        async def slow_busy(*args, **kwargs):
            busy = await real_busy(*args, **kwargs)
            await asyncio.sleep(0.05)
            return busy

        with mock.patch.object(appointment_service, "get_busy_intervals", slow_busy):
            results = await asyncio.gather(
                self.scheduler.update_appointment(moving.id, AppointmentUpdate(doctor_id=self.other_doctor_id)),
                self.scheduler.reschedule_appointment(moving.id, local(14)),
                return_exceptions=True,
            )
        self.assertEqual(len([r for r in results if isinstance(r, Appointment)]), 1)
        self.assertEqual(len([r for r in results if isinstance(r, SlotConflictError)]), 1)
        target = await self.scheduler.list_appointments(AppointmentFilter(doctor_id=self.other_doctor_id))
        self.assertNoOverlaps(target)


class TestBusySlots(SchedulerTestCase):
    """Day availability as shown to pickers."""

    async def test_busy_slot_is_marked(self):
        await self.set_weekdays()
        await self.book(10)
        day = await self.scheduler.get_busy_slots(self.doctor_id, CHRISTMAS)
        self.assertTrue(day.is_working)
        self.assertEqual((day.window_start, day.window_end), ("09:00", "18:00"))
        slots = {s.time: s for s in day.slots}
        self.assertEqual(len(slots), 18)
        self.assertTrue(slots["10:00"].is_busy)
        self.assertFalse(slots["09:30"].is_busy)
        self.assertFalse(slots["10:30"].is_busy)
        self.assertEqual([b.start for b in day.busy], [datetime(2025, 12, 25, 6, 0)])

    async def test_duration_widens_busy_test(self):
        await self.set_weekdays()
        await self.book(10)
        day = await self.scheduler.get_busy_slots(self.doctor_id, CHRISTMAS, duration=60)
        slots = {s.time: s for s in day.slots}
        self.assertTrue(slots["09:30"].is_busy)
        self.assertEqual(len(slots), 18)

    async def test_day_off_has_busy_intervals_but_no_slots(self):
        await self.set_weekdays()
        await self.book(11, day=SUNDAY)
        day = await self.scheduler.get_busy_slots(self.doctor_id, SUNDAY)
        self.assertFalse(day.is_working)
        self.assertEqual(day.slots, [])
        self.assertEqual(len(day.busy), 1)

    async def test_past_slots_today(self):
        """At 13:00 local the morning is past."""
        await self.set_weekdays()
        day = await self.scheduler.get_busy_slots(self.doctor_id, date(2025, 12, 1))
        slots = {s.time: s for s in day.slots}
        self.assertTrue(slots["12:30"].is_past)
        self.assertTrue(slots["13:00"].is_past)
        self.assertFalse(slots["13:30"].is_past)

    async def test_cancelled_appointment_frees_the_slot(self):
        await self.set_weekdays()
        a = await self.book(10)
        await self.scheduler.change_appointment_status(
            a.id, StatusChange(status=AppointmentStatus.CANCELLED, cancellation_reason="patient called")
        )
        day = await self.scheduler.get_busy_slots(self.doctor_id, CHRISTMAS)
        self.assertEqual(day.busy, [])
        again = await self.book(10)
        self.assertNotEqual(again.id, a.id)


class TestReschedule(SchedulerTestCase):
    """Moving appointments."""

    async def test_overlap_with_itself_is_ignored(self):
        a = await self.book(10)
        moved = await self.scheduler.reschedule_appointment(a.id, local(10, 15))
        self.assertEqual(to_wall_clock(moved.appointment_date, get_zone(CLINIC_TZ)), local(10, 15))

    async def test_reschedule_into_another_appointment(self):
        a = await self.book(10)
        await self.book(11)
        with self.assertRaises(SlotConflictError):
            await self.scheduler.reschedule_appointment(a.id, local(10, 45))
        unchanged = await self.scheduler.get_appointment(a.id)
        self.assertEqual(unchanged.appointment_date, datetime(2025, 12, 25, 6, 0))

    async def test_new_duration_is_checked(self):
        a = await self.book(10)
        await self.book(11)
        with self.assertRaises(SlotConflictError):
            await self.scheduler.reschedule_appointment(a.id, local(10), new_duration=90)
        with self.assertRaises(ValidationError):
            await self.scheduler.reschedule_appointment(a.id, local(10), new_duration=5)

    async def test_reschedule_into_the_past(self):
        a = await self.book(10)
        with self.assertRaises(PastDateError):
            await self.scheduler.reschedule_appointment(a.id, local(10, day=date(2025, 11, 28)))

    async def test_move_to_another_doctor(self):
        a = await self.book(10)
        moved = await self.scheduler.update_appointment(a.id, AppointmentUpdate(doctor_id=self.other_doctor_id))
        self.assertEqual(moved.doctor_id, self.other_doctor_id)
        b = await self.book(10)
        self.assertEqual(b.doctor_id, self.doctor_id)

    async def test_move_to_busy_doctor(self):
        a = await self.book(10)
        await self.book(10, doctor_id=self.other_doctor_id)
        with self.assertRaises(SlotConflictError):
            await self.scheduler.update_appointment(a.id, AppointmentUpdate(doctor_id=self.other_doctor_id))

    async def test_unknown_appointment(self):
        with self.assertRaises(NotFoundError):
            await self.scheduler.reschedule_appointment(9999, local(10))


class TestLifecycle(SchedulerTestCase):
    """Status changes and terminal states."""

    async def complete(self, a, amount=None):
        return await self.scheduler.change_appointment_status(
            a.id, StatusChange(status=AppointmentStatus.COMPLETED, amount=amount)
        )

    async def cancel(self, a, reason="patient called"):
        return await self.scheduler.change_appointment_status(
            a.id, StatusChange(status=AppointmentStatus.CANCELLED, cancellation_reason=reason)
        )

    async def test_confirm_then_complete(self):
        a = await self.book(10)
        a = await self.scheduler.change_appointment_status(a.id, StatusChange(status=AppointmentStatus.CONFIRMED))
        self.assertEqual(a.status, "confirmed")
        a = await self.complete(a, amount=120.0)
        self.assertEqual((a.status, a.amount), ("completed", 120.0))

    async def test_completed_only_accepts_amount(self):
        a = await self.complete(await self.book(10))
        with self.assertRaises(ImmutableStateError):
            await self.scheduler.reschedule_appointment(a.id, local(12))
        with self.assertRaises(ImmutableStateError):
            await self.scheduler.update_appointment(a.id, AppointmentUpdate(notes="edited"))
        with self.assertRaises(InvalidTransitionError):
            await self.scheduler.change_appointment_status(a.id, StatusChange(status=AppointmentStatus.CONFIRMED))
        a = await self.scheduler.update_appointment(a.id, AppointmentUpdate(amount=75.0))
        self.assertEqual(a.amount, 75.0)

    async def test_repeated_complete_does_not_move_the_appointment(self):
        """Sending completed again with a new date is still a date edit on a completed appointment."""
        a = await self.complete(await self.book(10))
        with self.assertRaises(ImmutableStateError):
            await self.scheduler.update_appointment(
                a.id, AppointmentUpdate(status=AppointmentStatus.COMPLETED, appointment_date=local(14))
            )
        a = await self.scheduler.update_appointment(
            a.id, AppointmentUpdate(status=AppointmentStatus.COMPLETED, amount=90.0)
        )
        self.assertEqual((a.amount, a.appointment_date), (90.0, datetime(2025, 12, 25, 6, 0)))

    async def test_cancel_requires_reason(self):
        a = await self.book(10)
        with self.assertRaises(MissingCancellationReasonError):
            await self.cancel(a, reason=" ")
        still = await self.scheduler.get_appointment(a.id)
        self.assertEqual(still.status, "pending")

    async def test_cancelled_is_frozen(self):
        a = await self.cancel(await self.book(10))
        self.assertEqual(a.cancellation_reason, "patient called")
        with self.assertRaises(ImmutableStateError):
            await self.scheduler.update_appointment(a.id, AppointmentUpdate(notes="x"))
        with self.assertRaises(ImmutableStateError):
            await self.scheduler.reschedule_appointment(a.id, local(12))
        with self.assertRaises(ImmutableStateError):
            await self.scheduler.change_appointment_status(a.id, StatusChange(status=AppointmentStatus.CONFIRMED))

    async def test_cancel_with_suggested_date(self):
        a = await self.book(10)
        a = await self.scheduler.change_appointment_status(
            a.id,
            StatusChange(
                status=AppointmentStatus.CANCELLED,
                cancellation_reason="doctor is away",
                suggested_new_date=local(16, day=date(2025, 12, 29)),
            ),
        )
        self.assertEqual(a.suggested_new_date, datetime(2025, 12, 29, 12, 0))

    async def test_combined_complete_ignores_new_date(self):
        a = await self.book(10)
        a = await self.scheduler.update_appointment(
            a.id, AppointmentUpdate(status=AppointmentStatus.COMPLETED, amount=50.0, appointment_date=local(14))
        )
        self.assertEqual((a.status, a.amount), ("completed", 50.0))
        self.assertEqual(a.appointment_date, datetime(2025, 12, 25, 6, 0))

    async def test_combined_confirm_and_reschedule(self):
        a = await self.book(10)
        a = await self.scheduler.update_appointment(
            a.id, AppointmentUpdate(status=AppointmentStatus.CONFIRMED, appointment_date=local(14))
        )
        self.assertEqual(a.status, "confirmed")
        self.assertEqual(a.appointment_date, datetime(2025, 12, 25, 10, 0))


class TestListAppointments(SchedulerTestCase):
    """Filtering."""

    async def test_filter_by_local_day(self):
        """00:30 local on the 26th is still the 25th in UTC but belongs to the 26th."""
        late = await self.book(23, 30)
        early = await self.book(0, 30, day=date(2025, 12, 26))
        await self.book(10, day=date(2025, 12, 27))
        found = await self.scheduler.list_appointments(
            AppointmentFilter(doctor_id=self.doctor_id, from_date=date(2025, 12, 26), to_date=date(2025, 12, 26))
        )
        self.assertEqual([a.id for a in found], [early.id])
        found = await self.scheduler.list_appointments(
            AppointmentFilter(clinic_id=self.clinic_id, to_date=CHRISTMAS)
        )
        self.assertEqual([a.id for a in found], [late.id])

    async def test_filter_by_status(self):
        a = await self.book(10)
        await self.book(11, role="CLINIC")
        found = await self.scheduler.list_appointments(AppointmentFilter(status=AppointmentStatus.PENDING))
        self.assertEqual([x.id for x in found], [a.id])
