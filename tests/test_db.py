"""
Tests for core/db.py URL handling and stored column types
"""

import unittest

from sqlalchemy import DateTime

from clinicbook.core.db import to_async_url, to_sync_url
from clinicbook.models.appointment import Appointment
from clinicbook.models.schedule import DoctorSchedule


class TestDatabaseUrls(unittest.TestCase):
    """The app runs on async drivers; Alembic runs on sync ones."""

    def test_postgres_gets_asyncpg_without_psycopg_params(self):
        url = to_async_url("postgresql://u:p@db.example.com:5432/clinic?sslmode=require&channel_binding=require&application_name=api")
        self.assertEqual(url, "postgresql+asyncpg://u:p@db.example.com:5432/clinic?application_name=api")

    def test_other_urls_untouched(self):
        for url in ("sqlite+aiosqlite:///./clinic.db", "postgresql+asyncpg://u@h/db"):
            with self.subTest(url=url):
                self.assertEqual(to_async_url(url), url)

    def test_sync_url_for_migrations(self):
        self.assertEqual(to_sync_url("postgresql+asyncpg://u:p@h:5432/db"), "postgresql://u:p@h:5432/db")
        self.assertEqual(to_sync_url("sqlite+aiosqlite:///./clinic.db"), "sqlite:///./clinic.db")
        self.assertEqual(to_sync_url("postgresql://u@h/db?sslmode=require"), "postgresql://u@h/db?sslmode=require")


class TestStoredDatetimes(unittest.TestCase):
    """Instants are stored as naive UTC, so every stored datetime column is a plain DateTime."""

    def test_columns_are_naive_datetime(self):
        columns = [
            Appointment.__table__.c.appointment_date,
            Appointment.__table__.c.suggested_new_date,
            Appointment.__table__.c.registered_at,
            Appointment.__table__.c.created_at,
            Appointment.__table__.c.updated_at,
            DoctorSchedule.__table__.c.created_at,
            DoctorSchedule.__table__.c.updated_at,
        ]
        for column in columns:
            with self.subTest(column=column.name):
                self.assertIs(type(column.type), DateTime)
                self.assertFalse(column.type.timezone)
