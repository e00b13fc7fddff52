"""Tests for sync state tracking."""

import json

import pytest

from puffin.sync.state import SyncStateTracker, compute_file_hash


@pytest.fixture(name="tracker")
def tracker_fixture(tmp_path) -> SyncStateTracker:
    return SyncStateTracker(tmp_path / "sync-config.json", tmp_path / "puffin.db")


def test_hash_is_deterministic(tmp_path):
    a = tmp_path / "a.db"
    b = tmp_path / "b.db"
    a.write_bytes(b"same content")
    b.write_bytes(b"same content")

    assert compute_file_hash(a) == compute_file_hash(a)
    assert compute_file_hash(a) == compute_file_hash(b)

    b.write_bytes(b"other content")
    assert compute_file_hash(a) != compute_file_hash(b)


def test_hash_of_missing_file(tmp_path):
    assert compute_file_hash(tmp_path / "missing.db") is None


def test_hash_of_large_file_spans_chunks(tmp_path):
    path = tmp_path / "large.db"
    path.write_bytes(b"x" * (3 * 1024 * 1024 + 7))
    assert len(compute_file_hash(path)) == 64


class TestConfig:
    def test_defaults_when_missing(self, tracker: SyncStateTracker):
        config = tracker.get_config()
        assert config.is_configured is False
        assert config.last_synced_at is None

    def test_corrupt_file_reads_as_not_configured(self, tracker: SyncStateTracker):
        tracker.config_path.write_text("{not json")
        assert tracker.get_config().is_configured is False

    def test_save_merges(self, tracker: SyncStateTracker):
        tracker.save_config(remote_container_id="F1", remote_container_name="Backups")
        tracker.save_config(user_email="user@example.com")

        config = tracker.get_config()
        assert config.remote_container_id == "F1"
        assert config.remote_container_name == "Backups"
        assert config.user_email == "user@example.com"

    def test_stored_with_camel_case_keys(self, tracker: SyncStateTracker):
        tracker.save_config(remote_container_id="F1")
        data = json.loads(tracker.config_path.read_text())
        assert data["remoteContainerId"] == "F1"
        assert "isConfigured" not in data

    def test_unknown_field_rejected(self, tracker: SyncStateTracker):
        with pytest.raises(ValueError):
            tracker.save_config(folder="F1")

    def test_clear_config(self, tracker: SyncStateTracker):
        tracker.save_config(remote_container_id="F1")
        tracker.clear_config()
        tracker.clear_config()
        assert tracker.get_config().is_configured is False

    def test_bind_resets_bookkeeping(self, tracker: SyncStateTracker):
        tracker.db_path.write_bytes(b"db-v1")
        tracker.set_bound_container(container_id="F1")
        tracker.mark_synced(tracker.compute_file_hash(), "md5-1")

        tracker.set_bound_container(file_id="shared-file", name="puffin-backup.db")

        config = tracker.get_config()
        assert config.is_file_based_sync is True
        assert config.remote_file_id == "shared-file"
        assert config.remote_container_id is None
        assert config.synced_db_hash is None
        assert config.last_synced_at is None

    def test_bind_requires_exactly_one_target(self, tracker: SyncStateTracker):
        with pytest.raises(ValueError):
            tracker.set_bound_container()
        with pytest.raises(ValueError):
            tracker.set_bound_container(container_id="F1", file_id="file")


class TestSyncRequired:
    def test_not_configured(self, tracker: SyncStateTracker):
        tracker.db_path.write_bytes(b"db-v1")
        assert tracker.is_sync_required() is False

    def test_never_synced(self, tracker: SyncStateTracker):
        tracker.db_path.write_bytes(b"db-v1")
        tracker.set_bound_container(container_id="F1")
        assert tracker.has_local_changes() is True
        assert tracker.is_sync_required() is True

    def test_false_after_mark_synced_then_true_after_write(self, tracker: SyncStateTracker):
        tracker.db_path.write_bytes(b"db-v1")
        tracker.set_bound_container(container_id="F1")
        tracker.mark_synced(tracker.compute_file_hash())

        assert tracker.has_local_changes() is False
        assert tracker.is_sync_required() is False

        tracker.db_path.write_bytes(b"db-v2")
        assert tracker.has_local_changes() is True
        assert tracker.is_sync_required() is True

    def test_known_cloud_mismatch(self, tracker: SyncStateTracker):
        tracker.db_path.write_bytes(b"db-v1")
        tracker.set_bound_container(container_id="F1")
        tracker.mark_synced(tracker.compute_file_hash(), "md5-1")

        tracker.record_remote_checksum("md5-1")
        assert tracker.is_sync_required() is False

        tracker.record_remote_checksum("md5-2")
        assert tracker.has_local_changes() is False
        assert tracker.is_sync_required() is True

    def test_mark_synced_records_time(self, tracker: SyncStateTracker):
        tracker.db_path.write_bytes(b"db-v1")
        tracker.set_bound_container(container_id="F1")
        tracker.mark_synced(tracker.compute_file_hash())

        config = tracker.get_config()
        assert config.last_synced_at is not None
        assert config.last_synced_at.tzinfo is not None
