"""Error taxonomy shared by the remote adapter, orchestrator and routes."""
from enum import Enum


class SyncErrorCode(str, Enum):
    AUTH_REQUIRED = "AUTH_REQUIRED"
    NOT_FOUND = "NOT_FOUND"
    NO_ACCESS = "NO_ACCESS"
    READ_ONLY = "READ_ONLY"
    INVALID_URL = "INVALID_URL"
    TRANSIENT = "TRANSIENT"
    TIMEOUT = "TIMEOUT"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    LOCAL_DB_MISSING = "LOCAL_DB_MISSING"
    LOCAL_WRITE_FAILED = "LOCAL_WRITE_FAILED"
    UNKNOWN = "UNKNOWN"


REMEDIATION_HINTS = {
    SyncErrorCode.AUTH_REQUIRED: "Reconnect your Google account.",
    SyncErrorCode.NOT_FOUND: "Check the folder link, or pick the sync folder again.",
    SyncErrorCode.NO_ACCESS: "Ask the owner to share the folder with this account.",
    SyncErrorCode.READ_ONLY: "Ask the owner for edit access to the folder.",
    SyncErrorCode.INVALID_URL: "Paste a Google Drive folder link or folder ID.",
    SyncErrorCode.TRANSIENT: "Google Drive is busy. Try again in a few minutes.",
    SyncErrorCode.TIMEOUT: "The transfer took too long. Check your connection and try again.",
    SyncErrorCode.NOT_CONFIGURED: "Choose a sync folder first.",
    SyncErrorCode.SYNC_IN_PROGRESS: "Wait for the current sync to finish.",
    SyncErrorCode.CONFIRMATION_REQUIRED: "Confirm that unsynced local changes may be replaced.",
    SyncErrorCode.LOCAL_DB_MISSING: "There is no local data to upload yet.",
    SyncErrorCode.LOCAL_WRITE_FAILED: "Check free disk space and file permissions.",
}

# Google reports quota exhaustion as 403 with one of these reasons
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def hint_for(code: SyncErrorCode | None) -> str | None:
    if code is None:
        return None
    return REMEDIATION_HINTS.get(code)


class AuthRequiredError(Exception):
    """No usable authorization: the user must go through the OAuth flow again."""


class RemoteAPIError(Exception):
    """A remote call failed with an HTTP status."""

    def __init__(self, status_code: int, message: str = "", reason: str | None = None):
        super().__init__(message or f"Remote API error {status_code}")
        self.status_code = status_code
        self.reason = reason
        self.message = message or f"Remote API error {status_code}"


def classify_remote_error(error: BaseException) -> SyncErrorCode:
    """Map a failure raised by a remote call onto the error taxonomy."""
    if isinstance(error, AuthRequiredError):
        return SyncErrorCode.AUTH_REQUIRED
    if isinstance(error, TimeoutError):
        return SyncErrorCode.TIMEOUT
    status = getattr(error, "status_code", None)
    if status is None:
        return SyncErrorCode.UNKNOWN
    if status == 401:
        return SyncErrorCode.AUTH_REQUIRED
    if status == 403:
        return SyncErrorCode.NO_ACCESS
    if status == 404:
        return SyncErrorCode.NOT_FOUND
    if status == 429 or status >= 500:
        return SyncErrorCode.TRANSIENT
    return SyncErrorCode.UNKNOWN
