import os
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

STORAGE_BACKENDS = ("file", "memory", "postgres")


@dataclass(frozen=True)
class Config:
    storage: str = "file"
    data_dir: str = os.path.join(os.path.expanduser("~"), ".medtrack")
    database_url: str | None = None
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    timezone: str = "UTC"
    poll_interval_seconds: float = 30.0
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> "Config":
        storage = os.environ.get("MEDTRACK_STORAGE", "file").strip().lower()
        if storage not in STORAGE_BACKENDS:
            raise RuntimeError(
                f"MEDTRACK_STORAGE must be one of {', '.join(STORAGE_BACKENDS)}, got {storage!r}"
            )

        database_url = os.environ.get("DATABASE_URL") or None
        if storage == "postgres" and not database_url:
            raise RuntimeError("DATABASE_URL must be set when MEDTRACK_STORAGE=postgres")

        timezone = os.environ.get("MEDTRACK_TIMEZONE", "UTC")
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise RuntimeError(f"MEDTRACK_TIMEZONE is not a known timezone: {timezone!r}") from exc

        return cls(
            storage=storage,
            data_dir=os.environ.get("MEDTRACK_DATA_DIR", cls.data_dir),
            database_url=database_url,
            supabase_url=os.environ.get("SUPABASE_URL") or None,
            supabase_anon_key=os.environ.get("SUPABASE_ANON_KEY") or None,
            timezone=timezone,
            poll_interval_seconds=float(os.environ.get("MEDTRACK_POLL_INTERVAL", "30")),
            log_format=os.environ.get("MEDTRACK_LOG_FORMAT", "json"),
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def now(self) -> datetime:
        """Current wall-clock time in the configured timezone."""
        return datetime.now(self.tzinfo)
