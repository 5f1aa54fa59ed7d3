"""Test snapshot artifacts: naming, atomic save, retention, restore, legacy format."""

import json
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from drink_tracker.core.errors import NotFoundError, PersistenceError
from drink_tracker.core.models import CURRENT_FORMAT_VERSION
from drink_tracker.persistence.snapshots import (
    SnapshotManager,
    SnapshotScheduler,
    artifact_name,
    parse_artifact_time,
)
from drink_tracker.store.event_store import EventStore


class TestArtifactNames:
    def test_name_roundtrip(self):
        ts = datetime(2024, 6, 1, 21, 30, 15, 123456, tzinfo=timezone.utc)
        name = artifact_name(ts)
        assert name == "snapshot-2024-06-01T21-30-15-123456Z.json"
        assert parse_artifact_time(name) == ts

    def test_legacy_millisecond_names_accepted(self):
        parsed = parse_artifact_time("snapshot-2024-06-01T21-30-15-123Z.json")
        assert parsed == datetime(2024, 6, 1, 21, 30, 15, 123000, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "name",
        ["notes.json", "snapshot-latest.json", "snapshot-2024-06-01T21-30-15-123456Z.json.tmp"],
    )
    def test_strangers_rejected(self, name):
        assert parse_artifact_time(name) is None


class TestSave:
    @pytest.mark.asyncio
    async def test_save_writes_versioned_artifact(self, snapshot_manager, snapshot_dir, seeded_store):
        seeded_store.add_consumption("Beer")
        filename = await snapshot_manager.save()

        raw = json.loads((snapshot_dir / filename).read_text(encoding="utf-8"))
        assert raw["format_version"] == CURRENT_FORMAT_VERSION
        assert len(raw["consumptions"]) == 1
        assert raw["consumptions"][0]["item_name"] == "Beer"
        assert not list(snapshot_dir.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_names_strictly_increase_on_frozen_clock(self, snapshot_manager):
        names = [await snapshot_manager.save() for _ in range(3)]
        assert names == sorted(names)
        assert len(set(names)) == 3

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_artifact(self, snapshot_manager, snapshot_dir):
        first = await snapshot_manager.save()
        with patch("drink_tracker.core.file_io.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError):
                await snapshot_manager.save()
        assert [p.name for p in snapshot_dir.iterdir()] == [first]
        assert snapshot_manager.stats() == {"saves": 1, "failures": 1}

    @pytest.mark.asyncio
    async def test_retention_keeps_newest(self, seeded_store, snapshot_dir, sim_clock):
        manager = SnapshotManager(seeded_store, snapshot_dir, max_files=3, clock=sim_clock)
        names = []
        for _ in range(5):
            names.append(await manager.save())
            sim_clock.advance(seconds=1)
        remaining = [a.filename for a in manager.list_artifacts()]
        assert remaining == names[-3:][::-1]

    def test_max_files_must_be_positive(self, seeded_store, snapshot_dir):
        with pytest.raises(ValueError):
            SnapshotManager(seeded_store, snapshot_dir, max_files=0)


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_replaces_store(self, snapshot_manager, seeded_store, snapshot_dir, sim_clock):
        alice, _ = seeded_store.upsert_participant("Alice")
        seeded_store.add_consumption("Beer", participant_id=alice.id)
        await snapshot_manager.save()
        before = seeded_store.snapshot()

        fresh = EventStore(clock=sim_clock)
        manager = SnapshotManager(fresh, snapshot_dir, clock=sim_clock)
        assert await manager.restore()
        assert fresh.snapshot() == before

    @pytest.mark.asyncio
    async def test_no_artifacts(self, snapshot_manager, seeded_store):
        assert not await snapshot_manager.restore()
        assert len(seeded_store.items()) == 6

    @pytest.mark.asyncio
    async def test_skips_malformed_newest(self, snapshot_manager, seeded_store, snapshot_dir, sim_clock):
        seeded_store.add_consumption("Beer")
        good = await snapshot_manager.save()
        sim_clock.advance(seconds=5)
        bad = artifact_name(sim_clock.now())
        (snapshot_dir / bad).write_text("{not json", encoding="utf-8")

        fresh = EventStore(clock=sim_clock)
        manager = SnapshotManager(fresh, snapshot_dir, clock=sim_clock)
        assert manager.load_latest()[0].name == good
        assert await manager.restore()
        assert len(fresh.consumptions()) == 1

    @pytest.mark.asyncio
    async def test_all_malformed_leaves_store_alone(self, seeded_store, snapshot_dir, sim_clock):
        snapshot_dir.mkdir()
        (snapshot_dir / artifact_name(sim_clock.now())).write_bytes(b"\xff\xfe\x00")
        manager = SnapshotManager(seeded_store, snapshot_dir, clock=sim_clock)
        assert not await manager.restore()
        assert len(seeded_store.items()) == 6

    @pytest.mark.asyncio
    async def test_temp_files_ignored(self, snapshot_manager, snapshot_dir):
        name = await snapshot_manager.save()
        (snapshot_dir / (artifact_name(datetime(2030, 1, 1, tzinfo=timezone.utc)) + ".tmp")).write_text("{}")
        assert snapshot_manager.latest_path().name == name


class TestLegacyFormat:
    def test_legacy_artifact(self, tmp_path):
        legacy = {
            "drinks": [{"name": "Beer", "emoji": "🍺", "imageUrl": "/img/beer.png"}],
            "consumptions": [{"drinkName": "Beer", "at": "2024-06-01T20:00:00.000Z"}],
            "events": [{"label": "Cake", "at": "2024-06-01T20:30:00.000Z"}],
        }
        path = tmp_path / "snapshot-2024-06-01T21-00-00-000Z.json"
        path.write_text(json.dumps(legacy), encoding="utf-8")

        state = SnapshotManager.load(path)
        assert state.format_version == 0
        assert state.items[0].image_ref == "/img/beer.png"
        assert state.items[0].color == "#8B5CF6"
        assert state.consumptions[0].item_name == "Beer"
        assert state.consumptions[0].id
        assert state.markers[0].color == "#F59E0B"
        assert state.participants == ()
        assert not state.settings.predictions_locked

    @pytest.mark.parametrize("body", ["{}", '{"participants": []}', '{"settings": {}}'])
    def test_unversioned_without_collections_rejected(self, tmp_path, body):
        path = tmp_path / "snapshot-2024-06-01T21-00-00-000000Z.json"
        path.write_text(body, encoding="utf-8")
        with pytest.raises(PersistenceError):
            SnapshotManager.load(path)

    def test_single_legacy_collection_is_enough(self, tmp_path):
        path = tmp_path / "snapshot-2024-06-01T21-00-00-000000Z.json"
        path.write_text('{"drinks": []}', encoding="utf-8")
        assert SnapshotManager.load(path).is_empty()

    def test_versioned_empty_state_accepted(self, tmp_path):
        path = tmp_path / "snapshot-2024-06-01T21-00-00-000000Z.json"
        path.write_text('{"format_version": 2}', encoding="utf-8")
        assert SnapshotManager.load(path).is_empty()

    def test_wrong_shape_raises(self, tmp_path):
        path = tmp_path / "snapshot-2024-06-01T21-00-00-000000Z.json"
        path.write_text('{"consumptions": "lots"}', encoding="utf-8")
        with pytest.raises(PersistenceError):
            SnapshotManager.load(path)


class TestListing:
    def test_latest_path_empty(self, snapshot_manager):
        with pytest.raises(NotFoundError):
            snapshot_manager.latest_path()

    @pytest.mark.asyncio
    async def test_list_artifacts_reports_size(self, snapshot_manager, snapshot_dir):
        name = await snapshot_manager.save()
        [info] = snapshot_manager.list_artifacts()
        assert info.filename == name
        assert info.size_bytes == os.path.getsize(snapshot_dir / name)


class TestScheduler:
    @pytest.mark.asyncio
    async def test_run_once_saves(self, snapshot_manager):
        scheduler = SnapshotScheduler(snapshot_manager, interval=120)
        await scheduler.run_once()
        assert len(snapshot_manager.list_artifacts()) == 1

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, snapshot_manager):
        scheduler = SnapshotScheduler(snapshot_manager, interval=120)
        with patch("drink_tracker.core.file_io.os.replace", side_effect=OSError("ro fs")):
            await scheduler.run_once()
        assert scheduler.health_check()["error_count"] == 1
