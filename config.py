import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_enabled: bool,
        summary_refresh_hour: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_enabled = scheduler_enabled
        self.summary_refresh_hour = summary_refresh_hour
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("TRACKER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "tracker.db"
    database_url = os.getenv("TRACKER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("TRACKER_TIMEZONE", "UTC")
    scheduler_enabled = _env_flag("TRACKER_SCHEDULER_ENABLED", "1")
    summary_refresh_hour = int(os.getenv("TRACKER_SUMMARY_REFRESH_HOUR", "3"))
    log_level = os.getenv("TRACKER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_enabled=scheduler_enabled,
        summary_refresh_hour=summary_refresh_hour,
        log_level=log_level,
    )
