from __future__ import annotations

import pytest

from medtrack.config import Config


def _clear(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "MEDTRACK_STORAGE",
        "MEDTRACK_DATA_DIR",
        "DATABASE_URL",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "MEDTRACK_TIMEZONE",
        "MEDTRACK_POLL_INTERVAL",
        "MEDTRACK_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear(monkeypatch)
    config = Config.from_env()
    assert config.storage == "file"
    assert config.timezone == "UTC"
    assert config.poll_interval_seconds == 30.0
    assert config.log_format == "json"
    assert config.now().utcoffset().total_seconds() == 0


def test_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    _clear(monkeypatch)
    monkeypatch.setenv("MEDTRACK_STORAGE", "postgres")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/medtrack")
    monkeypatch.setenv("MEDTRACK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("MEDTRACK_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("MEDTRACK_POLL_INTERVAL", "5")
    monkeypatch.setenv("MEDTRACK_LOG_FORMAT", "text")

    config = Config.from_env()
    assert config.storage == "postgres"
    assert config.database_url == "postgresql://localhost/medtrack"
    assert config.data_dir == str(tmp_path)
    assert config.tzinfo.key == "Europe/Berlin"
    assert config.poll_interval_seconds == 5.0
    assert config.log_format == "text"


def test_postgres_requires_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear(monkeypatch)
    monkeypatch.setenv("MEDTRACK_STORAGE", "postgres")
    with pytest.raises(RuntimeError, match="DATABASE_URL must be set"):
        Config.from_env()


@pytest.mark.parametrize(("name", "value"), [("MEDTRACK_STORAGE", "sqlite"), ("MEDTRACK_TIMEZONE", "Mars/Base")])
def test_rejects_unknown_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    _clear(monkeypatch)
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        Config.from_env()
