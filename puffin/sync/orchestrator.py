"""Sync orchestration: push, pull and the state machine around them."""
import asyncio
import logging
import os
from datetime import timedelta
from enum import Enum
from pathlib import Path

from puffin.core.backups import PULL_PREFIX, PUSH_PREFIX, create_backup, restore_backup
from puffin.core.database import LocalDatabase
from puffin.models.results import (
    CloseCheck,
    ContainerValidation,
    ExchangeResult,
    RemoteInfo,
    SyncCheck,
    SyncOutcome,
)
from puffin.sync.drive import DriveStorage, extract_folder_id_from_url
from puffin.sync.errors import SyncErrorCode
from puffin.sync.oauth import AuthorizationManager, ScopeLevel
from puffin.sync.state import SyncStateTracker
from puffin.sync.vault import CredentialVault

logger = logging.getLogger(__name__)

# Tolerance for clock skew between this machine and Drive
CLOCK_SKEW = timedelta(seconds=60)


class SyncPhase(str, Enum):
    NOT_CONFIGURED = "not_configured"
    IN_SYNC = "in_sync"
    DIVERGED = "diverged"
    SYNCING = "syncing"


class SyncOrchestrator:
    """
    Coordinates the vault, state tracker and remote storage for one database.

    Only one push or pull runs at a time. A second request while one is in
    flight is rejected with ``SYNC_IN_PROGRESS`` rather than queued.
    """

    def __init__(
        self,
        vault: CredentialVault,
        auth: AuthorizationManager,
        state: SyncStateTracker,
        storage: DriveStorage,
        database: LocalDatabase,
        backup_dir: Path,
        download_temp_path: Path,
        backup_keep: int = 5,
    ):
        self.vault = vault
        self.auth = auth
        self.state = state
        self.storage = storage
        self.database = database
        self.backup_dir = Path(backup_dir)
        self.download_temp_path = Path(download_temp_path)
        self.backup_keep = backup_keep
        self._lock = asyncio.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def phase(self) -> SyncPhase:
        if self.is_syncing:
            return SyncPhase.SYNCING
        config = self.state.get_config()
        if not config.is_configured:
            return SyncPhase.NOT_CONFIGURED
        if config.last_synced_at is None:
            # Freshly bound, nothing transferred yet
            return SyncPhase.IN_SYNC
        return SyncPhase.DIVERGED if self.state.is_sync_required() else SyncPhase.IN_SYNC

    # Binding

    async def connect_container(self, folder_id_or_url: str, name: str | None = None) -> ContainerValidation:
        """Validate a folder (ID or Drive link) and bind it as the sync target."""
        if self.is_syncing:
            return ContainerValidation(success=False, error="A sync is in progress", error_code=SyncErrorCode.SYNC_IN_PROGRESS)
        async with self._lock:
            return await self._connect_container(folder_id_or_url, name)

    async def _connect_container(self, folder_id_or_url: str, name: str | None) -> ContainerValidation:
        folder_id = extract_folder_id_from_url(folder_id_or_url)
        if folder_id is None:
            return ContainerValidation(
                success=False,
                error="Invalid Google Drive folder URL or ID",
                error_code=SyncErrorCode.INVALID_URL,
            )

        validation = await self.storage.validate_container(folder_id)
        if not validation.success:
            return validation

        if not self.state.set_bound_container(container_id=validation.id, name=validation.name or name):
            return ContainerValidation(
                success=False,
                error="Failed to save sync configuration",
                error_code=SyncErrorCode.LOCAL_WRITE_FAILED,
            )
        logger.info(f"Bound sync folder {validation.name} ({validation.id})")
        return validation

    async def connect_file(self, file_id: str, name: str | None = None) -> ContainerValidation:
        """Bind a database file shared directly by another account."""
        if self.is_syncing:
            return ContainerValidation(success=False, error="A sync is in progress", error_code=SyncErrorCode.SYNC_IN_PROGRESS)
        async with self._lock:
            return await self._connect_file(file_id, name)

    async def _connect_file(self, file_id: str, name: str | None) -> ContainerValidation:
        validation = await self.storage.validate_file(file_id)
        if not validation.success:
            return validation

        if not self.state.set_bound_container(file_id=validation.id, name=validation.name or name):
            return ContainerValidation(
                success=False,
                error="Failed to save sync configuration",
                error_code=SyncErrorCode.LOCAL_WRITE_FAILED,
            )
        logger.info(f"Bound shared sync file {validation.name} ({validation.id})")
        return validation

    # Status

    async def _remote_info(self, config) -> RemoteInfo:
        if config.is_file_based_sync:
            return await self.storage.get_remote_info_by_file_id(config.remote_file_id)
        return await self.storage.get_remote_info(config.remote_container_id)

    async def check_status(self) -> SyncCheck:
        """
        Compare local and cloud state before the user is allowed to edit.

        Local drift is found by re-hashing the database file. Cloud drift is
        found by comparing Drive's checksum with the one recorded at the last
        sync, or the modification time when Drive reports no checksum.
        """
        config = self.state.get_config()
        if not config.is_configured:
            return SyncCheck(sync_required=False, reason="not_configured")

        info = await self._remote_info(config)
        if info.error:
            logger.warning(f"Sync check could not reach Drive: {info.error}")
            return SyncCheck(
                sync_required=False,
                reason="check_failed",
                can_edit=True,
                warning="Could not verify sync status. Proceed with caution.",
                error_code=info.error_code,
                last_synced_at=config.last_synced_at,
            )

        if not info.exists:
            return SyncCheck(
                sync_required=True,
                reason="no_cloud_backup",
                can_edit=True,
                has_local_changes=True,
                message="No backup found in the cloud. Upload your data first.",
            )

        if config.last_synced_at is None:
            return SyncCheck(
                sync_required=True,
                reason="never_synced",
                can_edit=False,
                has_local_changes=True,
                cloud_modified_at=info.modified_at,
                message="Sync with the cloud before making changes.",
            )

        if info.checksum:
            self.state.record_remote_checksum(info.checksum)

        local_changes = self.state.has_local_changes(config)
        cloud_changes = self._cloud_changed(config, info)
        details = {"db_hash": self.state.compute_file_hash(), "remote_checksum": info.checksum}

        if local_changes and cloud_changes:
            return SyncCheck(
                sync_required=True,
                reason="conflict",
                can_edit=False,
                has_local_changes=True,
                has_cloud_changes=True,
                cloud_modified_at=info.modified_at,
                last_synced_at=config.last_synced_at,
                message="Both this device and the cloud have changes. Choose which copy to keep.",
                details=details,
            )
        if cloud_changes:
            return SyncCheck(
                sync_required=True,
                reason="cloud_only",
                can_edit=False,
                has_cloud_changes=True,
                cloud_modified_at=info.modified_at,
                last_synced_at=config.last_synced_at,
                message="A newer version exists in the cloud. Download it before editing.",
                details=details,
            )
        if local_changes:
            return SyncCheck(
                sync_required=True,
                reason="local_only",
                can_edit=True,
                has_local_changes=True,
                cloud_modified_at=info.modified_at,
                last_synced_at=config.last_synced_at,
                message="You have changes that are not uploaded yet.",
                details=details,
            )
        return SyncCheck(
            sync_required=False,
            reason="in_sync",
            can_edit=True,
            cloud_modified_at=info.modified_at,
            last_synced_at=config.last_synced_at,
            details=details,
        )

    @staticmethod
    def _cloud_changed(config, info: RemoteInfo) -> bool:
        if info.checksum and config.synced_remote_checksum:
            return info.checksum != config.synced_remote_checksum
        if info.modified_at and config.last_synced_at:
            return info.modified_at > config.last_synced_at + CLOCK_SKEW
        return False

    def close_check(self) -> CloseCheck:
        if self.is_syncing:
            return CloseCheck(can_close=False, reason="sync_in_progress")
        if self.state.is_sync_required():
            return CloseCheck(can_close=False, reason="unsynced_changes")
        return CloseCheck(can_close=True)

    # Transfers

    async def push(self) -> SyncOutcome:
        """Upload the local database, replacing the cloud copy."""
        if self.is_syncing:
            return SyncOutcome.failed("A sync is already in progress", SyncErrorCode.SYNC_IN_PROGRESS)
        async with self._lock:
            return await self._push()

    async def _push(self) -> SyncOutcome:
        config = self.state.get_config()
        if not config.is_configured:
            return SyncOutcome.failed("Sync is not configured", SyncErrorCode.NOT_CONFIGURED)
        if not self.database.exists():
            return SyncOutcome.failed("No local database to upload", SyncErrorCode.LOCAL_DB_MISSING)

        logger.info("Starting push to Google Drive")
        self.database.checkpoint()

        backup_path = None
        try:
            backup_path = create_backup(self.database.path, self.backup_dir, PUSH_PREFIX, self.backup_keep)
        except OSError as e:
            # The local file is not modified by a push, so carry on without a copy
            logger.error(f"Failed to create pre-push backup: {e}")

        db_hash = self.state.compute_file_hash()
        if db_hash is None:
            return SyncOutcome.failed("Could not read the local database", SyncErrorCode.LOCAL_DB_MISSING)

        if config.is_file_based_sync:
            result = await self.storage.upload_by_file_id(self.database.path, config.remote_file_id)
        else:
            result = await self.storage.upload(self.database.path, config.remote_container_id)

        if not result.success:
            logger.error(f"Push failed: {result.error}")
            return SyncOutcome.failed(result.error or "Upload failed", result.error_code or SyncErrorCode.UNKNOWN)

        if not self.state.mark_synced(db_hash, result.checksum):
            return SyncOutcome.failed("Uploaded, but failed to record sync state", SyncErrorCode.LOCAL_WRITE_FAILED)

        synced = self.state.get_config()
        logger.info(f"Push completed, file {result.file_id}")
        return SyncOutcome(
            success=True,
            last_synced_at=synced.last_synced_at,
            db_hash=db_hash,
            file_id=result.file_id,
            backup_path=str(backup_path) if backup_path else None,
        )

    async def pull(self, confirm: bool = False) -> SyncOutcome:
        """
        Replace the local database with the cloud copy.

        Refuses with ``CONFIRMATION_REQUIRED`` while the local file has
        changes that were never uploaded, unless ``confirm`` is set.
        """
        if self.is_syncing:
            return SyncOutcome.failed("A sync is already in progress", SyncErrorCode.SYNC_IN_PROGRESS)
        async with self._lock:
            return await self._pull(confirm)

    async def _pull(self, confirm: bool) -> SyncOutcome:
        config = self.state.get_config()
        if not config.is_configured:
            return SyncOutcome.failed("Sync is not configured", SyncErrorCode.NOT_CONFIGURED)

        if self.database.exists() and self.state.has_local_changes(config) and not confirm:
            return SyncOutcome.failed(
                "Local changes would be overwritten by the download",
                SyncErrorCode.CONFIRMATION_REQUIRED,
            )

        logger.info("Starting pull from Google Drive")
        try:
            backup_path = create_backup(self.database.path, self.backup_dir, PULL_PREFIX, self.backup_keep)
        except OSError as e:
            logger.error(f"Failed to create pre-pull backup: {e}")
            return SyncOutcome.failed("Could not back up the local database", SyncErrorCode.LOCAL_WRITE_FAILED)

        if config.is_file_based_sync:
            result = await self.storage.download_by_file_id(config.remote_file_id, self.download_temp_path)
        else:
            result = await self.storage.download(config.remote_container_id, self.download_temp_path)

        if not result.success:
            logger.error(f"Pull failed: {result.error}")
            code = result.error_code or (SyncErrorCode.NOT_FOUND if result.not_found else SyncErrorCode.UNKNOWN)
            return SyncOutcome.failed(result.error or "Download failed", code)

        db_hash = self.state.compute_file_hash(self.download_temp_path)
        try:
            self._replace_database()
        except OSError as e:
            logger.error(f"Failed to replace local database: {e}")
            if backup_path is not None:
                restore_backup(backup_path, self.database.path)
            self.download_temp_path.unlink(missing_ok=True)
            return SyncOutcome.failed("Could not replace the local database", SyncErrorCode.LOCAL_WRITE_FAILED)

        if not self.state.mark_synced(db_hash, result.checksum):
            return SyncOutcome.failed("Downloaded, but failed to record sync state", SyncErrorCode.LOCAL_WRITE_FAILED)

        synced = self.state.get_config()
        logger.info("Pull completed")
        return SyncOutcome(
            success=True,
            last_synced_at=synced.last_synced_at,
            db_hash=db_hash,
            backup_path=str(backup_path) if backup_path else None,
        )

    def _replace_database(self) -> None:
        self.database.dispose()
        self.database.remove_side_files()
        self.database.path.parent.mkdir(parents=True, exist_ok=True)
        os.replace(self.download_temp_path, self.database.path)

    async def wait_until_idle(self) -> None:
        """Return once no push or pull is running."""
        async with self._lock:
            pass

    # Account

    async def disconnect(self) -> SyncOutcome:
        """Revoke access and forget tokens and binding. Waits for an in-flight sync."""
        async with self._lock:
            revoked = await self.auth.revoke()
            if not revoked:
                logger.warning("Disconnecting without confirmed token revocation")
            self.vault.clear()
            self.state.clear_config()
        logger.info("Disconnected from Google Drive")
        return SyncOutcome(success=True)

    def get_authorization_url(self, level: ScopeLevel | str = ScopeLevel.STANDARD) -> str | None:
        if not self.auth.is_configured():
            return None
        return self.auth.build_authorization_url(level)

    async def handle_callback(self, code: str, state: str | None = None) -> ExchangeResult:
        return await self.auth.exchange_code(code, state)

    async def refresh_user_email(self) -> str | None:
        """Fetch the account email for display. Failures are logged, never raised."""
        email = await self.auth.fetch_user_email()
        if email:
            self.state.save_config(user_email=email)
        return email
