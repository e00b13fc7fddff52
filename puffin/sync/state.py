"""Sync state tracking.

Answers "is the local database in sync with the last known cloud copy"
from the persisted configuration record plus a fresh hash of the live
file. Nothing derived is cached between calls, so a crash between a
local write and the next check cannot leave a stale "in sync" answer.
"""
import hashlib
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from puffin.models.sync import SyncConfiguration

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1024 * 1024


def compute_file_hash(path: Path) -> str | None:
    """SHA-256 of a file, streamed. None if the file does not exist yet."""
    path = Path(path)
    if not path.exists():
        return None
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        logger.error(f"Failed to hash {path}: {e}")
        return None
    return digest.hexdigest()


class SyncStateTracker:
    """Reads and writes the sync configuration record for one database file."""

    def __init__(self, config_path: Path, db_path: Path):
        self.config_path = Path(config_path)
        self.db_path = Path(db_path)

    def get_config(self) -> SyncConfiguration:
        if not self.config_path.exists():
            return SyncConfiguration()
        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
            return SyncConfiguration.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to read sync config, treating as not configured: {e}")
            return SyncConfiguration()

    def save_config(self, **changes) -> bool:
        """Merge ``changes`` into the stored record. Fields not mentioned are kept."""
        unknown = set(changes) - set(SyncConfiguration.model_fields)
        if unknown:
            raise ValueError(f"Unknown sync config fields: {sorted(unknown)}")

        current = self.get_config().model_dump()
        current.update(changes)
        updated = SyncConfiguration.model_validate(current)

        tmp_path = self.config_path.with_name(self.config_path.name + ".tmp")
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(updated.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.config_path)
            return True
        except OSError as e:
            logger.error(f"Failed to save sync config: {e}")
            return False

    def clear_config(self) -> None:
        try:
            self.config_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete sync config: {e}")

    def set_bound_container(
        self,
        container_id: str | None = None,
        file_id: str | None = None,
        name: str | None = None,
    ) -> bool:
        """
        Bind a folder or a shared file as the remote target.

        Rebinding starts from a clean slate: bookkeeping about the previous
        target says nothing about the new one.
        """
        if bool(container_id) == bool(file_id):
            raise ValueError("Bind exactly one of container_id or file_id")
        return self.save_config(
            remote_container_id=container_id,
            remote_file_id=file_id,
            is_file_based_sync=bool(file_id),
            remote_container_name=name,
            last_synced_at=None,
            synced_db_hash=None,
            synced_remote_checksum=None,
            observed_remote_checksum=None,
        )

    def mark_synced(self, db_hash: str, remote_checksum: str | None = None) -> bool:
        """Record a successful push or pull of a file whose hash is ``db_hash``."""
        return self.save_config(
            synced_db_hash=db_hash,
            last_synced_at=datetime.now(UTC),
            synced_remote_checksum=remote_checksum,
            observed_remote_checksum=remote_checksum,
        )

    def record_remote_checksum(self, checksum: str | None) -> bool:
        return self.save_config(observed_remote_checksum=checksum)

    def compute_file_hash(self, path: Path | None = None) -> str | None:
        return compute_file_hash(path or self.db_path)

    def has_local_changes(self, config: SyncConfiguration | None = None) -> bool:
        config = config or self.get_config()
        if not config.synced_db_hash:
            return True
        return self.compute_file_hash() != config.synced_db_hash

    def is_sync_required(self) -> bool:
        config = self.get_config()
        if not config.is_configured:
            return False
        if config.last_synced_at is None:
            return True
        if config.has_cloud_mismatch:
            return True
        return self.has_local_changes(config)
