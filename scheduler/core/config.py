import os
from dataclasses import dataclass


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
APP_DEBUG = _get_bool(os.getenv("APP_DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# 0=Sunday ... 6=Saturday
WEEK_START_DAY = int(os.getenv("WEEK_START_DAY", "0"))
TEACHING_START_HOUR = int(os.getenv("TEACHING_START_HOUR", "13"))
TEACHING_END_HOUR = int(os.getenv("TEACHING_END_HOUR", "22"))

MAX_NOTES_LENGTH = int(os.getenv("MAX_NOTES_LENGTH", "600"))


@dataclass(frozen=True)
class ScheduleSettings:
    """Weekly availability rules handed to the availability manager."""

    week_start_day: int = 0
    earliest_hour: int = 13
    latest_hour: int = 22

    def __post_init__(self) -> None:
        if not 0 <= self.week_start_day <= 6:
            raise ValueError("week_start_day must be between 0 (Sunday) and 6 (Saturday).")
        if not 0 <= self.earliest_hour < self.latest_hour <= 24:
            raise ValueError("Teaching window must satisfy 0 <= earliest_hour < latest_hour <= 24.")


def get_schedule_settings() -> ScheduleSettings:
    return ScheduleSettings(
        week_start_day=WEEK_START_DAY,
        earliest_hour=TEACHING_START_HOUR,
        latest_hour=TEACHING_END_HOUR,
    )


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    get_schedule_settings()
