from __future__ import annotations

import os
import uuid
from pathlib import Path

import pytest

from medtrack.config import Config
from medtrack.errors import StorageError
from medtrack.storage import (
    JsonFileSnapshotStore,
    MemorySnapshotStore,
    PostgresSnapshotStore,
    snapshot_key,
    store_from_config,
)

DATABASE_URL = os.environ.get("DATABASE_URL", "")


def test_snapshot_keys_follow_collection_naming() -> None:
    assert snapshot_key("medications", "u1") == "medtrack-medications-u1"
    assert snapshot_key("dose_logs", "u1") == "medtrack-dose-logs-u1"
    assert snapshot_key("profiles", "u1") == "medtrack-profiles-u1"
    assert snapshot_key("rewards", "u1") == "medtrack-rewards-u1"
    with pytest.raises(ValueError):
        snapshot_key("settings", "u1")


async def test_memory_store_copies_values() -> None:
    store = MemorySnapshotStore()
    value = {"points": 10}
    await store.set("k", value)
    value["points"] = 99

    assert await store.get("k") == {"points": 10}
    await store.clear("k")
    assert await store.get("k") is None


async def test_memory_store_rejects_unserializable_values() -> None:
    with pytest.raises(StorageError):
        await MemorySnapshotStore().set("k", {"bad": object()})


async def test_file_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path / "data")
    assert await store.get("medtrack-rewards-u1") is None

    await store.set("medtrack-rewards-u1", {"points": 65})
    assert await store.get("medtrack-rewards-u1") == {"points": 65}
    assert store.path_for("medtrack-rewards-u1").exists()

    await store.clear("medtrack-rewards-u1")
    assert await store.get("medtrack-rewards-u1") is None


async def test_file_store_sanitizes_key_for_filename(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path)
    await store.set("medtrack-profiles-../../evil", [])
    assert store.path_for("medtrack-profiles-../../evil").parent == tmp_path


async def test_file_store_keeps_similar_user_ids_apart(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path)
    slash, underscore = snapshot_key("rewards", "a/b"), snapshot_key("rewards", "a_b")
    assert store.path_for(slash) != store.path_for(underscore)

    await store.set(slash, {"points": 10})
    await store.set(underscore, {"points": 20})
    assert await store.get(slash) == {"points": 10}
    assert await store.get(underscore) == {"points": 20}
    assert store.path_for(snapshot_key("rewards", "u1")).name == "medtrack-rewards-u1.json"


async def test_file_store_reports_corrupt_snapshot(tmp_path: Path) -> None:
    store = JsonFileSnapshotStore(tmp_path)
    store.path_for("k").write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError, match="Corrupt"):
        await store.get("k")


def test_store_from_config_picks_backend(tmp_path: Path) -> None:
    assert isinstance(store_from_config(Config(storage="memory")), MemorySnapshotStore)
    file_store = store_from_config(Config(storage="file", data_dir=str(tmp_path)))
    assert isinstance(file_store, JsonFileSnapshotStore)
    assert file_store.directory == tmp_path
    with pytest.raises(RuntimeError):
        store_from_config(Config(storage="postgres"))


@pytest.mark.skipif(not DATABASE_URL, reason="DATABASE_URL not set")
async def test_postgres_store_upserts() -> None:
    store = PostgresSnapshotStore(DATABASE_URL)
    await store.ensure_schema()
    key = f"medtrack-rewards-{uuid.uuid4()}"
    try:
        await store.set(key, {"points": 10})
        await store.set(key, {"points": 25})
        assert await store.get(key) == {"points": 25}
    finally:
        await store.clear(key)
    assert await store.get(key) is None
