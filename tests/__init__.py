import os

# Settings are read at import time; tests run against throwaway SQLite files
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./clinicbook-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENV", "test")
