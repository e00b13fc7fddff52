"""Sync configuration record.

This module defines the JSON document that remembers which remote target
the local database is bound to and what the database looked like at the
last successful sync. It lives next to the database file, not inside it,
so replacing the database during a pull never loses the bookkeeping.
"""

from datetime import datetime

from puffin.models.oauth import CamelModel


class SyncConfiguration(CamelModel):
    """Persisted sync bookkeeping.

    Exactly one remote target is bound at a time: a folder
    (``remote_container_id``) or, in multi-account mode, a single shared
    file (``remote_file_id`` with ``is_file_based_sync`` set).
    ``is_configured`` is derived from those fields and never stored.

    Attributes:
        remote_container_id: Drive folder ID holding the backup.
        remote_container_name: Folder or file name, for display.
        remote_file_id: Drive file ID when bound to a shared file.
        is_file_based_sync: True when syncing by file ID.
        last_synced_at: Time of the last successful push or pull.
        user_email: Account email, informational only.
        synced_db_hash: SHA-256 of the local file as of the last
            successful sync. Only a successful push or pull updates it.
        synced_remote_checksum: Provider checksum of the remote object as
            of the last successful sync.
        observed_remote_checksum: Provider checksum seen by the most
            recent remote status check.
    """
    remote_container_id: str | None = None
    remote_container_name: str | None = None
    remote_file_id: str | None = None
    is_file_based_sync: bool = False
    last_synced_at: datetime | None = None
    user_email: str | None = None
    synced_db_hash: str | None = None
    synced_remote_checksum: str | None = None
    observed_remote_checksum: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.remote_container_id or self.remote_file_id)

    @property
    def has_cloud_mismatch(self) -> bool:
        """A remote checksum was observed that differs from the one last synced."""
        return bool(
            self.observed_remote_checksum
            and self.synced_remote_checksum
            and self.observed_remote_checksum != self.synced_remote_checksum
        )
