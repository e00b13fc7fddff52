"""Google Drive storage for the database backup.

Metadata calls go through googleapiclient on a worker thread; the media
download is streamed with httpx so it can be bounded by a hard timeout and
written incrementally. Every public method returns a result object, never
raises for remote failures.
"""
import asyncio
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import httplib2
import httpx
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from puffin.models.results import ContainerValidation, DownloadResult, RemoteInfo, UploadResult
from puffin.sync.errors import (
    RATE_LIMIT_REASONS,
    AuthRequiredError,
    RemoteAPIError,
    SyncErrorCode,
    classify_remote_error,
)
from puffin.sync.oauth import AuthorizationManager
from puffin.sync.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DATABASE_MIME_TYPE = "application/x-sqlite3"
VALIDATION_MARKER_FILENAME = ".puffin-validation-test"
MEDIA_URL = "https://www.googleapis.com/drive/v3/files/{file_id}"
FILE_FIELDS = "id, name, modifiedTime, md5Checksum"
DOWNLOAD_CHUNK_SIZE = 64 * 1024

FOLDER_URL_PATTERNS = [
    re.compile(r"drive\.google\.com/drive/(?:u/\d+/)?folders/([^/?#]+)"),
    re.compile(r"drive\.google\.com/.*[?&]id=([^&#]+)"),
]

# Failures a remote call can end with; anything else is a bug and propagates
REMOTE_FAILURES = (
    RemoteAPIError,
    AuthRequiredError,
    GoogleAuthError,
    httpx.HTTPError,
    httplib2.HttpLib2Error,
    OSError,
)


def sanitize_drive_id(value: str) -> str:
    """Keep only characters legal in a Drive ID."""
    return re.sub(r"[^a-zA-Z0-9_-]", "", value or "")


def escape_query_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_folder_query(folder_id: str, filename: str) -> str:
    """Drive ``q`` expression matching ``filename`` directly inside ``folder_id``."""
    return (
        f"'{sanitize_drive_id(folder_id)}' in parents "
        f"and name='{escape_query_value(filename)}' and trashed=false"
    )


def extract_folder_id_from_url(text: str) -> str | None:
    """
    Pull a folder ID out of a pasted Drive link.

    Accepts ``drive.google.com/drive/[u/N/]folders/<id>`` and ``...?id=<id>``
    links, or a bare ID made only of legal ID characters. Whether the ID names a
    real folder is left to validation. Returns None for anything else.
    """
    text = (text or "").strip()
    if not text:
        return None
    for pattern in FOLDER_URL_PATTERNS:
        match = pattern.search(text)
        if match:
            return sanitize_drive_id(match.group(1)) or None
    if sanitize_drive_id(text) == text:
        return text
    return None


def parse_modified_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable modifiedTime from Drive: {value}")
        return None


def _error_reason(error: HttpError) -> str | None:
    details = getattr(error, "error_details", None)
    if isinstance(details, list):
        for detail in details:
            if isinstance(detail, dict) and detail.get("reason"):
                return detail["reason"]
    return None


def to_remote_error(error: HttpError) -> RemoteAPIError:
    """Convert a googleapiclient error, folding quota 403s into 429."""
    status = int(error.resp.status)
    reason = _error_reason(error)
    if status == 403 and reason in RATE_LIMIT_REASONS:
        status = 429
    message = error.reason if isinstance(getattr(error, "reason", None), str) else str(error)
    return RemoteAPIError(status, message, reason)


def build_drive_service(credentials):
    """Build authenticated Drive API service."""
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


class DriveStorage:
    """
    Remote storage adapter for one Google account.

    Folder-scoped methods locate the backup by name inside the bound folder.
    The ``*_by_file_id`` variants address a file shared directly by another
    account, which does not show up in folder listings.
    """

    def __init__(
        self,
        auth: AuthorizationManager,
        backup_filename: str = "puffin-backup.db",
        retry_policy: RetryPolicy | None = None,
        download_timeout: float = 120.0,
        service_factory: Callable[[Any], Any] = build_drive_service,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.auth = auth
        self.backup_filename = backup_filename
        self.retry_policy = retry_policy or RetryPolicy()
        self.download_timeout = download_timeout
        self.service_factory = service_factory
        self.transport = transport
        self.sleep = sleep

    async def _credentials(self):
        creds = await self.auth.get_authorized_client()
        if creds is None:
            raise AuthRequiredError("Not authenticated with Google")
        return creds

    async def _service(self):
        return self.service_factory(await self._credentials())

    async def _call(self, func: Callable[[], Any], context: str) -> Any:
        """Run a blocking API call on a worker thread, with retries."""
        async def attempt():
            try:
                return await asyncio.to_thread(func)
            except HttpError as e:
                raise to_remote_error(e) from e

        return await with_retry(attempt, context, self.retry_policy, sleep=self.sleep)

    async def _find_backup(self, service, folder_id: str) -> dict | None:
        response = await self._call(
            lambda: service.files().list(
                q=build_folder_query(folder_id, self.backup_filename),
                fields=f"files({FILE_FIELDS})",
                spaces="drive",
                pageSize=1,
            ).execute(),
            "list backup files",
        )
        files = response.get("files", [])
        return files[0] if files else None

    # Validation

    async def validate_container(self, folder_id: str) -> ContainerValidation:
        """
        Check that ``folder_id`` is a folder this account can read and write.

        Write access is probed by creating a marker file and deleting it
        again, because sharing settings can grant read without write.
        """
        folder_id = sanitize_drive_id(folder_id)
        if not folder_id:
            return ContainerValidation(success=False, error="Folder ID is empty", error_code=SyncErrorCode.NOT_FOUND)

        try:
            service = await self._service()
            folder = await self._call(
                lambda: service.files().get(
                    fileId=folder_id,
                    fields="id, name, mimeType",
                    supportsAllDrives=True,
                ).execute(),
                "get folder metadata",
            )
        except REMOTE_FAILURES as e:
            return self._validation_failure(e, folder=True)

        if folder.get("mimeType") != FOLDER_MIME_TYPE:
            return ContainerValidation(
                success=False,
                error="The provided ID is not a folder",
                error_code=SyncErrorCode.NOT_FOUND,
            )

        try:
            await self._probe_write_access(service, folder_id)
        except RemoteAPIError as e:
            if e.status_code == 403:
                return ContainerValidation(
                    success=False,
                    error="You only have read access to this folder",
                    error_code=SyncErrorCode.READ_ONLY,
                )
            return self._validation_failure(e, folder=True)
        except REMOTE_FAILURES as e:
            return self._validation_failure(e, folder=True)

        logger.info(f"Validated Drive folder {folder.get('name')} ({folder_id})")
        return ContainerValidation(success=True, id=folder["id"], name=folder.get("name"))

    async def _probe_write_access(self, service, folder_id: str) -> None:
        marker = await self._call(
            lambda: service.files().create(
                body={"name": VALIDATION_MARKER_FILENAME, "parents": [folder_id]},
                fields="id",
                supportsAllDrives=True,
            ).execute(),
            "create validation marker",
        )
        marker_id = marker.get("id")
        if not marker_id:
            return
        try:
            await self._call(
                lambda: service.files().delete(fileId=marker_id, supportsAllDrives=True).execute(),
                "delete validation marker",
            )
        except REMOTE_FAILURES as e:
            logger.warning(f"Failed to delete validation marker {marker_id}: {e}")

    async def validate_file(self, file_id: str) -> ContainerValidation:
        """Check that ``file_id`` is a plain file this account can edit."""
        file_id = sanitize_drive_id(file_id)
        if not file_id:
            return ContainerValidation(success=False, error="File ID is empty", error_code=SyncErrorCode.NOT_FOUND)

        try:
            service = await self._service()
            info = await self._call(
                lambda: service.files().get(
                    fileId=file_id,
                    fields="id, name, mimeType, capabilities(canEdit)",
                    supportsAllDrives=True,
                ).execute(),
                "get shared file metadata",
            )
        except REMOTE_FAILURES as e:
            return self._validation_failure(e, folder=False)

        if info.get("mimeType") == FOLDER_MIME_TYPE:
            return ContainerValidation(
                success=False,
                error="The provided ID is a folder, not a file",
                error_code=SyncErrorCode.NOT_FOUND,
            )
        if info.get("capabilities", {}).get("canEdit") is False:
            return ContainerValidation(
                success=False,
                error="You only have read access to this file",
                error_code=SyncErrorCode.READ_ONLY,
            )
        return ContainerValidation(success=True, id=info["id"], name=info.get("name"))

    def _validation_failure(self, error: BaseException, folder: bool) -> ContainerValidation:
        code = classify_remote_error(error)
        target = "folder" if folder else "file"
        messages = {
            SyncErrorCode.AUTH_REQUIRED: "Not authenticated with Google",
            SyncErrorCode.NOT_FOUND: f"The {target} was not found. Check the link and try again.",
            SyncErrorCode.NO_ACCESS: f"You don't have access to this {target}. Check the sharing settings.",
        }
        logger.error(f"Drive {target} validation failed: {error}")
        return ContainerValidation(success=False, error=messages.get(code, str(error)), error_code=code)

    # Upload

    async def upload(self, local_path: Path, folder_id: str) -> UploadResult:
        """Create the backup in ``folder_id``, or replace its content if it already exists."""
        local_path = Path(local_path)
        if not local_path.exists():
            return UploadResult(success=False, error="Local database not found", error_code=SyncErrorCode.LOCAL_DB_MISSING)

        try:
            service = await self._service()
            existing = await self._find_backup(service, folder_id)

            if existing:
                result = await self._call(
                    lambda: self._send_media(service, local_path, file_id=existing["id"]),
                    "update backup file",
                )
            else:
                result = await self._call(
                    lambda: self._send_media(service, local_path, folder_id=sanitize_drive_id(folder_id)),
                    "create backup file",
                )
        except REMOTE_FAILURES as e:
            return self._upload_failure(e)

        logger.info(f"Uploaded {local_path.name} to Drive file {result.get('id')}")
        return UploadResult(success=True, file_id=result.get("id"), checksum=result.get("md5Checksum"))

    async def upload_by_file_id(self, local_path: Path, file_id: str) -> UploadResult:
        """Replace the content of a shared file in place."""
        local_path = Path(local_path)
        if not local_path.exists():
            return UploadResult(success=False, error="Local database not found", error_code=SyncErrorCode.LOCAL_DB_MISSING)

        try:
            service = await self._service()
            result = await self._call(
                lambda: self._send_media(service, local_path, file_id=sanitize_drive_id(file_id)),
                "update shared backup file",
            )
        except REMOTE_FAILURES as e:
            return self._upload_failure(e)

        return UploadResult(success=True, file_id=result.get("id"), checksum=result.get("md5Checksum"))

    def _send_media(self, service, local_path: Path, file_id: str | None = None, folder_id: str | None = None) -> dict:
        # Opened per attempt so a retry re-sends from the first byte
        with open(local_path, "rb") as fh:
            media = MediaIoBaseUpload(fh, mimetype=DATABASE_MIME_TYPE, resumable=True)
            if file_id:
                request = service.files().update(
                    fileId=file_id,
                    media_body=media,
                    fields=FILE_FIELDS,
                    supportsAllDrives=True,
                )
            else:
                request = service.files().create(
                    body={"name": self.backup_filename, "parents": [folder_id], "mimeType": DATABASE_MIME_TYPE},
                    media_body=media,
                    fields=FILE_FIELDS,
                    supportsAllDrives=True,
                )
            return request.execute()

    def _upload_failure(self, error: BaseException) -> UploadResult:
        code = classify_remote_error(error)
        logger.error(f"Upload failed: {error}")
        if code == SyncErrorCode.NO_ACCESS:
            # Listing worked but writing did not
            code = SyncErrorCode.READ_ONLY
        return UploadResult(success=False, error=str(error) or "Failed to upload database", error_code=code)

    # Download

    async def download(self, folder_id: str, dest_path: Path) -> DownloadResult:
        """Download the backup in ``folder_id`` to ``dest_path``."""
        try:
            service = await self._service()
            backup = await self._find_backup(service, folder_id)
        except REMOTE_FAILURES as e:
            return self._download_failure(e)

        if backup is None:
            return DownloadResult(success=False, not_found=True, error="No backup found in the sync folder")

        return await self._download_media(backup, dest_path)

    async def download_by_file_id(self, file_id: str, dest_path: Path) -> DownloadResult:
        file_id = sanitize_drive_id(file_id)
        try:
            service = await self._service()
            info = await self._call(
                lambda: service.files().get(fileId=file_id, fields=FILE_FIELDS, supportsAllDrives=True).execute(),
                "get shared file metadata",
            )
        except RemoteAPIError as e:
            if e.status_code == 404:
                return DownloadResult(
                    success=False,
                    not_found=True,
                    error="The shared file no longer exists",
                    error_code=SyncErrorCode.NOT_FOUND,
                )
            return self._download_failure(e)
        except REMOTE_FAILURES as e:
            return self._download_failure(e)

        return await self._download_media(info, dest_path)

    async def _download_media(self, info: dict, dest_path: Path) -> DownloadResult:
        dest_path = Path(dest_path)
        part_path = dest_path.with_name(dest_path.name + ".part")
        try:
            creds = await self._credentials()
            await with_retry(
                lambda: self._stream_to_file(info["id"], creds.token, part_path),
                "download backup file",
                self.retry_policy,
                sleep=self.sleep,
            )
            os.replace(part_path, dest_path)
        except REMOTE_FAILURES as e:
            part_path.unlink(missing_ok=True)
            return self._download_failure(e)

        logger.info(f"Downloaded Drive file {info['id']} to {dest_path}")
        return DownloadResult(success=True, checksum=info.get("md5Checksum"))

    async def _stream_to_file(self, file_id: str, access_token: str, part_path: Path) -> None:
        part_path.parent.mkdir(parents=True, exist_ok=True)
        async with asyncio.timeout(self.download_timeout):
            async with httpx.AsyncClient(transport=self.transport, timeout=None) as client:
                async with client.stream(
                    "GET",
                    MEDIA_URL.format(file_id=file_id),
                    params={"alt": "media", "supportsAllDrives": "true"},
                    headers={"Authorization": f"Bearer {access_token}"},
                ) as response:
                    if response.status_code != 200:
                        await response.aread()
                        raise RemoteAPIError(response.status_code, f"Download failed with status {response.status_code}")
                    with open(part_path, "wb") as fh:
                        async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            fh.write(chunk)

    def _download_failure(self, error: BaseException) -> DownloadResult:
        code = classify_remote_error(error)
        if code == SyncErrorCode.TIMEOUT:
            message = "Download timed out"
        else:
            message = str(error) or "Failed to download database"
        logger.error(f"Download failed: {message}")
        return DownloadResult(success=False, not_found=code == SyncErrorCode.NOT_FOUND, error=message, error_code=code)

    # Metadata

    async def get_remote_info(self, folder_id: str) -> RemoteInfo:
        try:
            service = await self._service()
            backup = await self._find_backup(service, folder_id)
        except REMOTE_FAILURES as e:
            logger.error(f"Failed to get remote backup info: {e}")
            return RemoteInfo(exists=False, error=str(e), error_code=classify_remote_error(e))

        if backup is None:
            return RemoteInfo(exists=False)
        return self._remote_info(backup)

    async def get_remote_info_by_file_id(self, file_id: str) -> RemoteInfo:
        file_id = sanitize_drive_id(file_id)
        try:
            service = await self._service()
            info = await self._call(
                lambda: service.files().get(fileId=file_id, fields=FILE_FIELDS, supportsAllDrives=True).execute(),
                "get shared file metadata",
            )
        except RemoteAPIError as e:
            if e.status_code == 404:
                return RemoteInfo(exists=False, error="The shared file no longer exists", error_code=SyncErrorCode.NOT_FOUND)
            return RemoteInfo(exists=False, error=str(e), error_code=classify_remote_error(e))
        except REMOTE_FAILURES as e:
            logger.error(f"Failed to get shared file info: {e}")
            return RemoteInfo(exists=False, error=str(e), error_code=classify_remote_error(e))

        return self._remote_info(info)

    @staticmethod
    def _remote_info(data: dict) -> RemoteInfo:
        return RemoteInfo(
            exists=True,
            file_id=data.get("id"),
            name=data.get("name"),
            modified_at=parse_modified_time(data.get("modifiedTime")),
            checksum=data.get("md5Checksum"),
        )
