"""Structured outcomes returned by the sync engine.

Remote and orchestration operations report failures as values rather than
exceptions, so the UI always receives an error code it can map to a
remediation instead of a provider stack trace.
"""

from dataclasses import dataclass, field
from datetime import datetime

from puffin.sync.errors import SyncErrorCode, hint_for


@dataclass
class ContainerValidation:
    """Result of validating a folder or shared file as a sync target."""
    success: bool
    id: str | None = None
    name: str | None = None
    error: str | None = None
    error_code: SyncErrorCode | None = None


@dataclass
class UploadResult:
    success: bool
    file_id: str | None = None
    checksum: str | None = None
    error: str | None = None
    error_code: SyncErrorCode | None = None


@dataclass
class DownloadResult:
    success: bool
    not_found: bool = False
    checksum: str | None = None
    error: str | None = None
    error_code: SyncErrorCode | None = None


@dataclass
class RemoteInfo:
    """Metadata of the remote backup object."""
    exists: bool
    file_id: str | None = None
    name: str | None = None
    modified_at: datetime | None = None
    checksum: str | None = None
    error: str | None = None
    error_code: SyncErrorCode | None = None


@dataclass
class ExchangeResult:
    success: bool
    scope_level: str | None = None
    error: str | None = None


@dataclass
class SyncOutcome:
    """Result of a push or pull."""
    success: bool
    last_synced_at: datetime | None = None
    db_hash: str | None = None
    file_id: str | None = None
    backup_path: str | None = None
    error: str | None = None
    error_code: SyncErrorCode | None = None
    hint: str | None = None

    @classmethod
    def failed(cls, error: str, error_code: SyncErrorCode, **kwargs) -> "SyncOutcome":
        return cls(success=False, error=error, error_code=error_code, hint=hint_for(error_code), **kwargs)


@dataclass
class SyncCheck:
    """Verdict of a status check, consumed by the UI before allowing edits."""
    sync_required: bool
    reason: str
    can_edit: bool = True
    has_local_changes: bool = False
    has_cloud_changes: bool = False
    cloud_modified_at: datetime | None = None
    last_synced_at: datetime | None = None
    message: str | None = None
    warning: str | None = None
    error_code: SyncErrorCode | None = None
    details: dict = field(default_factory=dict)


@dataclass
class CloseCheck:
    """Whether the application may exit now, and if not, why."""
    can_close: bool
    reason: str | None = None
