"""Key-value persistence for per-user tracker snapshots.

Each collection is stored whole under ``medtrack-<collection>-<user_id>``
as a JSON value. Backends only move JSON; validation happens when state is
rebuilt from the snapshots.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import psycopg
from psycopg.types.json import Jsonb

from .config import Config
from .errors import StorageError

logger = logging.getLogger(__name__)

_KEY_SEGMENTS = {
    "medications": "medications",
    "dose_logs": "dose-logs",
    "profiles": "profiles",
    "rewards": "rewards",
}


def snapshot_key(collection: str, user_id: str) -> str:
    try:
        segment = _KEY_SEGMENTS[collection]
    except KeyError:
        raise ValueError(f"unknown collection {collection!r}") from None
    return f"medtrack-{segment}-{user_id}"


class SnapshotStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def clear(self, key: str) -> None: ...


class MemorySnapshotStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        # Stored serialized so callers never share mutable structures with the store.
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key} is not JSON-serializable: {exc}") from exc

    async def clear(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileSnapshotStore:
    """One JSON file per key inside ``directory``."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        # Percent-encoding keeps distinct keys in distinct files.
        return self.directory / f"{quote(key, safe='-')}.json"

    def _read(self, key: str) -> Any | None:
        path = self.path_for(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt snapshot {path}: {exc}") from exc

    def _write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            payload = json.dumps(value, indent=2)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key} is not JSON-serializable: {exc}") from exc
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def _remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to remove {key}: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def clear(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)


class PostgresSnapshotStore:
    """Snapshots in a ``medtrack_snapshots`` table, one JSONB row per key."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    async def ensure_schema(self) -> None:
        try:
            async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS medtrack_snapshots (
                        key TEXT PRIMARY KEY,
                        value JSONB NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                )
                await conn.commit()
        except psycopg.Error as exc:
            raise StorageError(f"Failed to prepare snapshot table: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        try:
            async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "SELECT value FROM medtrack_snapshots WHERE key = %s",
                        (key,),
                    )
                    row = await cur.fetchone()
        except psycopg.Error as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc
        return row[0] if row is not None else None

    async def set(self, key: str, value: Any) -> None:
        try:
            async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
                await conn.execute(
                    """
                    INSERT INTO medtrack_snapshots (key, value, updated_at)
                    VALUES (%s, %s, NOW())
                    ON CONFLICT (key) DO UPDATE
                    SET value = EXCLUDED.value, updated_at = NOW()
                    """,
                    (key, Jsonb(value)),
                )
                await conn.commit()
        except psycopg.Error as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc

    async def clear(self, key: str) -> None:
        try:
            async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
                await conn.execute("DELETE FROM medtrack_snapshots WHERE key = %s", (key,))
                await conn.commit()
        except psycopg.Error as exc:
            raise StorageError(f"Failed to remove {key}: {exc}") from exc


def store_from_config(config: Config) -> SnapshotStore:
    if config.storage == "memory":
        return MemorySnapshotStore()
    if config.storage == "postgres":
        if not config.database_url:
            raise RuntimeError("DATABASE_URL must be set when MEDTRACK_STORAGE=postgres")
        return PostgresSnapshotStore(config.database_url)
    return JsonFileSnapshotStore(config.data_dir)
