"""Startup-time helpers for safe config logging."""

from pushsched.common.config import SchedulerSettings
from pushsched.common.logging import logger


_SECRET_MARKERS = ("key", "secret", "password", "token", "sa_json", "dsn")


def redacted_settings(settings: SchedulerSettings, fields: list[str]) -> dict[str, object]:
    """Return the selected settings with secret-like values masked."""

    values = settings.model_dump(include=set(fields))
    for name, value in values.items():
        if value is None:
            values[name] = "<unset>"
        elif any(marker in name for marker in _SECRET_MARKERS):
            values[name] = "<redacted>"
    return values


def log_startup_config(settings: SchedulerSettings, fields: list[str]) -> None:
    """Log selected startup settings for quick troubleshooting."""

    config = {"service": settings.service_name, **redacted_settings(settings, fields)}
    logger.info("startup_config=%s", config)
