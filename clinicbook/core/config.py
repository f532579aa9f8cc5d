from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False
    auto_create_tables: bool = False

    # JWT (tokens are issued by the external auth service, only verified here)
    secret_key: str
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Clinics without an explicit zone fall back to this IANA name
    default_timezone: str = "UTC"

    # Appointment business rules
    default_duration_minutes: int = 30
    min_duration_minutes: int = 15
    max_duration_minutes: int = 240
    enforce_working_hours: bool = False
    booking_lock_timeout_seconds: float = 5.0

    # Slot grid
    slot_interval_minutes: int = 30
    slot_start_hour: int = 8
    slot_end_hour: int = 20  # exclusive, last slot starts before 20:00

    # Env
    env: str = "development"

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown IANA timezone: {value}")
        return value

    @model_validator(mode="after")
    def _consistent_ranges(self) -> "Settings":
        if not self.min_duration_minutes <= self.default_duration_minutes <= self.max_duration_minutes:
            raise ValueError("default_duration_minutes must lie between min and max duration")
        if not 0 <= self.slot_start_hour < self.slot_end_hour <= 24:
            raise ValueError("slot_start_hour must be before slot_end_hour, both within 0..24")
        if self.slot_interval_minutes <= 0:
            raise ValueError("slot_interval_minutes must be positive")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
