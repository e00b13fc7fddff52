"""Tests for the Google Drive storage adapter."""

import hashlib

import httpx
import pytest

from puffin.sync.drive import (
    VALIDATION_MARKER_FILENAME,
    build_folder_query,
    extract_folder_id_from_url,
    sanitize_drive_id,
)
from puffin.sync.errors import SyncErrorCode

from tests.helpers import FOLDER_ID, SHARED_FILE_ID, make_http_error

BACKUP = "puffin-backup.db"


class TestQueryHelpers:
    def test_sanitize_strips_illegal_characters(self):
        assert sanitize_drive_id("abc' or name contains 'x") == "abcornamecontainsx"
        assert sanitize_drive_id("1A_b-2") == "1A_b-2"

    def test_folder_query_escapes_name(self):
        query = build_folder_query("F1' or '1'='1", "o'brien.db")
        assert query == "'F1or11' in parents and name='o\\'brien.db' and trashed=false"

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("1AbCdEfGhIjKlMnOpQrStUv", "1AbCdEfGhIjKlMnOpQrStUv"),
            ("https://drive.google.com/drive/folders/1AbCdEfGhIjKlMnOpQrStUv", "1AbCdEfGhIjKlMnOpQrStUv"),
            ("https://drive.google.com/drive/u/1/folders/1AbCdEfGhIjKlMnOpQrStUv?usp=sharing", "1AbCdEfGhIjKlMnOpQrStUv"),
            ("https://drive.google.com/open?id=1AbCdEfGhIjKlMnOpQrStUv&authuser=0", "1AbCdEfGhIjKlMnOpQrStUv"),
            ("https://example.com/folders/1AbCdEfGhIjKlMnOpQrStUv", None),
            ("F1", "F1"),
            ("  F1  ", "F1"),
            ("not a folder", None),
            ("", None),
        ],
    )
    def test_extract_folder_id(self, text, expected):
        assert extract_folder_id_from_url(text) == expected


class TestValidateContainer:
    @pytest.mark.asyncio
    async def test_writable_folder(self, authorized_ctx, fake_drive):
        result = await authorized_ctx.storage.validate_container(FOLDER_ID)

        assert result.success is True
        assert result.id == FOLDER_ID
        assert result.name == "Puffin"
        # Marker created and removed again
        assert fake_drive.count("create") == 1
        assert fake_drive.count("delete") == 1
        assert fake_drive.find(VALIDATION_MARKER_FILENAME) == []

    @pytest.mark.asyncio
    async def test_plain_file_is_not_a_container(self, authorized_ctx, fake_drive):
        fake_drive.add_file("plain", "notes.txt", b"hello", mime_type="text/plain")

        result = await authorized_ctx.storage.validate_container("plain")

        assert result.success is False
        assert result.error_code == SyncErrorCode.NOT_FOUND
        assert fake_drive.count("create") == 0

    @pytest.mark.asyncio
    async def test_missing_folder(self, authorized_ctx):
        result = await authorized_ctx.storage.validate_container("does-not-exist")
        assert result.success is False
        assert result.error_code == SyncErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_no_access(self, authorized_ctx, fake_drive):
        fake_drive.fail("get", make_http_error(403, "insufficientFilePermissions"))

        result = await authorized_ctx.storage.validate_container(FOLDER_ID)

        assert result.success is False
        assert result.error_code == SyncErrorCode.NO_ACCESS

    @pytest.mark.asyncio
    async def test_read_only(self, authorized_ctx, fake_drive):
        fake_drive.read_only.add(FOLDER_ID)

        result = await authorized_ctx.storage.validate_container(FOLDER_ID)

        assert result.success is False
        assert result.error_code == SyncErrorCode.READ_ONLY

    @pytest.mark.asyncio
    async def test_marker_delete_failure_still_succeeds(self, authorized_ctx, fake_drive):
        fake_drive.fail("delete", make_http_error(400, "badRequest"))

        result = await authorized_ctx.storage.validate_container(FOLDER_ID)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_not_authenticated(self, ctx):
        result = await ctx.storage.validate_container(FOLDER_ID)
        assert result.success is False
        assert result.error_code == SyncErrorCode.AUTH_REQUIRED


class TestUpload:
    @pytest.mark.asyncio
    async def test_creates_then_replaces_in_place(self, authorized_ctx, fake_drive, db_file):
        first = await authorized_ctx.storage.upload(db_file, FOLDER_ID)
        assert first.success is True
        assert first.checksum == hashlib.md5(b"db-v1").hexdigest()

        db_file.write_bytes(b"db-v2")
        second = await authorized_ctx.storage.upload(db_file, FOLDER_ID)

        assert second.success is True
        assert second.file_id == first.file_id
        backups = fake_drive.find(BACKUP)
        assert len(backups) == 1
        assert backups[0]["content"] == b"db-v2"
        assert backups[0]["parents"] == [FOLDER_ID]

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, authorized_ctx, fake_drive, db_file):
        fake_drive.fail("list", make_http_error(403, "userRateLimitExceeded"), make_http_error(503, "backendError"))

        result = await authorized_ctx.storage.upload(db_file, FOLDER_ID)

        assert result.success is True
        assert fake_drive.count("list") == 3

    @pytest.mark.asyncio
    async def test_permission_error_not_retried(self, authorized_ctx, fake_drive, db_file):
        fake_drive.read_only.add(FOLDER_ID)

        result = await authorized_ctx.storage.upload(db_file, FOLDER_ID)

        assert result.success is False
        assert result.error_code == SyncErrorCode.READ_ONLY
        assert fake_drive.count("create") == 1

    @pytest.mark.asyncio
    async def test_missing_local_file(self, authorized_ctx, settings):
        result = await authorized_ctx.storage.upload(settings.database_path, FOLDER_ID)
        assert result.success is False
        assert result.error_code == SyncErrorCode.LOCAL_DB_MISSING

    @pytest.mark.asyncio
    async def test_by_file_id_passes_all_drives_flag(self, authorized_ctx, fake_drive, db_file):
        fake_drive.add_file(SHARED_FILE_ID, BACKUP, b"old")

        result = await authorized_ctx.storage.upload_by_file_id(db_file, SHARED_FILE_ID)

        assert result.success is True
        assert fake_drive.content(SHARED_FILE_ID) == b"db-v1"
        method, kwargs = fake_drive.calls[-1]
        assert method == "update"
        assert kwargs["supportsAllDrives"] is True


class TestDownload:
    @pytest.mark.asyncio
    async def test_downloads_backup(self, authorized_ctx, fake_drive, tmp_path):
        fake_drive.add_file("backup", BACKUP, b"remote-db", parents=[FOLDER_ID])
        dest = tmp_path / "download.db"

        result = await authorized_ctx.storage.download(FOLDER_ID, dest)

        assert result.success is True
        assert dest.read_bytes() == b"remote-db"
        assert result.checksum == hashlib.md5(b"remote-db").hexdigest()

    @pytest.mark.asyncio
    async def test_no_backup(self, authorized_ctx, tmp_path):
        dest = tmp_path / "download.db"

        result = await authorized_ctx.storage.download(FOLDER_ID, dest)

        assert result.success is False
        assert result.not_found is True
        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_stream_error_leaves_no_file(self, authorized_ctx, fake_drive, tmp_path, settings):
        fake_drive.add_file("backup", BACKUP, b"remote-db", parents=[FOLDER_ID])

        def broken(request):
            return httpx.Response(403)

        authorized_ctx.storage.transport = httpx.MockTransport(broken)
        dest = tmp_path / "download.db"

        result = await authorized_ctx.storage.download(FOLDER_ID, dest)

        assert result.success is False
        assert result.error_code == SyncErrorCode.NO_ACCESS
        assert not dest.exists()
        assert not (tmp_path / "download.db.part").exists()

    @pytest.mark.asyncio
    async def test_timeout_leaves_no_file(self, authorized_ctx, fake_drive, tmp_path):
        fake_drive.add_file("backup", BACKUP, b"remote-db", parents=[FOLDER_ID])

        async def slow(request):
            raise TimeoutError()

        authorized_ctx.storage.transport = httpx.MockTransport(slow)
        dest = tmp_path / "download.db"

        result = await authorized_ctx.storage.download(FOLDER_ID, dest)

        assert result.success is False
        assert result.error_code == SyncErrorCode.TIMEOUT
        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_by_file_id(self, authorized_ctx, fake_drive, tmp_path, http_calls):
        fake_drive.add_file(SHARED_FILE_ID, BACKUP, b"shared-db")
        dest = tmp_path / "download.db"

        result = await authorized_ctx.storage.download_by_file_id(SHARED_FILE_ID, dest)

        assert result.success is True
        assert dest.read_bytes() == b"shared-db"
        assert http_calls[-1].url.params["supportsAllDrives"] == "true"

    @pytest.mark.asyncio
    async def test_by_file_id_missing(self, authorized_ctx, tmp_path):
        result = await authorized_ctx.storage.download_by_file_id("gone", tmp_path / "download.db")
        assert result.success is False
        assert result.not_found is True
        assert result.error_code == SyncErrorCode.NOT_FOUND


class TestRemoteInfo:
    @pytest.mark.asyncio
    async def test_existing_backup(self, authorized_ctx, fake_drive):
        fake_drive.add_file("backup", BACKUP, b"remote-db", parents=[FOLDER_ID])

        info = await authorized_ctx.storage.get_remote_info(FOLDER_ID)

        assert info.exists is True
        assert info.file_id == "backup"
        assert info.modified_at is not None
        assert info.checksum == hashlib.md5(b"remote-db").hexdigest()

    @pytest.mark.asyncio
    async def test_no_backup(self, authorized_ctx):
        info = await authorized_ctx.storage.get_remote_info(FOLDER_ID)
        assert info.exists is False
        assert info.error is None

    @pytest.mark.asyncio
    async def test_shared_file_gone(self, authorized_ctx):
        info = await authorized_ctx.storage.get_remote_info_by_file_id("gone")
        assert info.exists is False
        assert info.error_code == SyncErrorCode.NOT_FOUND


class TestValidateFile:
    @pytest.mark.asyncio
    async def test_editable_file(self, authorized_ctx, fake_drive):
        fake_drive.add_file(SHARED_FILE_ID, BACKUP, b"db")
        result = await authorized_ctx.storage.validate_file(SHARED_FILE_ID)
        assert result.success is True
        assert result.name == BACKUP

    @pytest.mark.asyncio
    async def test_view_only_file(self, authorized_ctx, fake_drive):
        fake_drive.add_file(SHARED_FILE_ID, BACKUP, b"db", can_edit=False)
        result = await authorized_ctx.storage.validate_file(SHARED_FILE_ID)
        assert result.success is False
        assert result.error_code == SyncErrorCode.READ_ONLY

    @pytest.mark.asyncio
    async def test_folder_is_not_a_file(self, authorized_ctx):
        result = await authorized_ctx.storage.validate_file(FOLDER_ID)
        assert result.success is False
        assert result.error_code == SyncErrorCode.NOT_FOUND
