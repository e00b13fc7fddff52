"""Fakes for the Google APIs used by the sync engine."""

import hashlib
import json
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from puffin.sync.drive import FOLDER_MIME_TYPE

FOLDER_ID = "F1"
SHARED_FILE_ID = "shared-file-id"


def make_http_error(status: int, reason: str = "error", message: str = "failed") -> HttpError:
    """An HttpError shaped like the ones Drive returns."""
    content = {"error": {"code": status, "message": message, "errors": [{"reason": reason, "message": message}]}}
    return HttpError(httplib2.Response({"status": status}), json.dumps(content).encode())


class FakeRequest:
    def __init__(self, func):
        self.func = func

    def execute(self):
        return self.func()


class FakeFiles:
    def __init__(self, drive: "FakeDrive"):
        self.drive = drive

    def list(self, q=None, **kwargs):
        return FakeRequest(lambda: self.drive.handle("list", q=q, **kwargs))

    def get(self, fileId=None, **kwargs):
        return FakeRequest(lambda: self.drive.handle("get", fileId=fileId, **kwargs))

    def create(self, body=None, media_body=None, **kwargs):
        return FakeRequest(lambda: self.drive.handle("create", body=body, media_body=media_body, **kwargs))

    def update(self, fileId=None, media_body=None, **kwargs):
        return FakeRequest(lambda: self.drive.handle("update", fileId=fileId, media_body=media_body, **kwargs))

    def delete(self, fileId=None, **kwargs):
        return FakeRequest(lambda: self.drive.handle("delete", fileId=fileId, **kwargs))


class FakeDrive:
    """In-memory stand-in for the Drive v3 ``files`` resource."""

    def __init__(self):
        self.files_by_id: dict[str, dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.failures: dict[str, list[HttpError]] = {}
        self.read_only: set[str] = set()
        self._counter = 0

    def files(self):
        return FakeFiles(self)

    # Setup helpers

    def add_folder(self, folder_id: str, name: str = "Puffin"):
        self.files_by_id[folder_id] = {"id": folder_id, "name": name, "mimeType": FOLDER_MIME_TYPE, "parents": []}

    def add_file(self, file_id: str, name: str, content: bytes, parents=None, mime_type="application/x-sqlite3",
                 can_edit=True, modified: datetime | None = None):
        self.files_by_id[file_id] = {
            "id": file_id,
            "name": name,
            "mimeType": mime_type,
            "parents": list(parents or []),
            "content": content,
            "md5Checksum": hashlib.md5(content).hexdigest(),
            "modifiedTime": (modified or datetime.now(UTC)).isoformat().replace("+00:00", "Z"),
            "capabilities": {"canEdit": can_edit},
        }

    def fail(self, method: str, *errors: HttpError):
        self.failures.setdefault(method, []).extend(errors)

    def content(self, file_id: str) -> bytes:
        return self.files_by_id[file_id]["content"]

    def find(self, name: str) -> list[dict]:
        return [f for f in self.files_by_id.values() if f["name"] == name]

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    # Dispatch

    def handle(self, method: str, **kwargs):
        self.calls.append((method, kwargs))
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)
        return getattr(self, f"_{method}")(**kwargs)

    def _metadata(self, entry: dict) -> dict:
        return {k: v for k, v in entry.items() if k != "content"}

    def _list(self, q=None, **kwargs):
        # Only the queries the adapter builds: "'<id>' in parents and name='<name>' and trashed=false"
        parent = q.split("'")[1]
        name = q.split("name='")[1].split("' and")[0].replace("\\'", "'")
        files = [
            self._metadata(f) for f in self.files_by_id.values()
            if parent in f["parents"] and f["name"] == name
        ]
        return {"files": files}

    def _get(self, fileId=None, **kwargs):
        if fileId not in self.files_by_id:
            raise make_http_error(404, "notFound", f"File not found: {fileId}")
        return self._metadata(self.files_by_id[fileId])

    def _create(self, body=None, media_body=None, **kwargs):
        for parent in body.get("parents", []):
            if parent in self.read_only:
                raise make_http_error(403, "insufficientFilePermissions", "The user does not have write access")
        self._counter += 1
        file_id = f"file-{self._counter}"
        content = media_body.getbytes(0, media_body.size()) if media_body is not None else b""
        self.add_file(file_id, body["name"], content, parents=body.get("parents"))
        return self._metadata(self.files_by_id[file_id])

    def _update(self, fileId=None, media_body=None, **kwargs):
        if fileId not in self.files_by_id:
            raise make_http_error(404, "notFound", f"File not found: {fileId}")
        entry = self.files_by_id[fileId]
        if not entry.get("capabilities", {}).get("canEdit", True):
            raise make_http_error(403, "insufficientFilePermissions", "The user does not have write access")
        content = media_body.getbytes(0, media_body.size())
        self.add_file(fileId, entry["name"], content, parents=entry["parents"])
        return self._metadata(self.files_by_id[fileId])

    def _delete(self, fileId=None, **kwargs):
        self.files_by_id.pop(fileId, None)
        return ""


class FakeFlow:
    """Stand-in for google_auth_oauthlib's Flow."""

    def __init__(self, registration, scopes, redirect_uri):
        self.registration = registration
        self.scopes = scopes
        self.redirect_uri = redirect_uri
        self.credentials = None
        self.oauth2session = SimpleNamespace(token={})

    def authorization_url(self, **kwargs):
        params = "&".join(f"{k}={v}" for k, v in kwargs.items())
        return f"https://accounts.google.com/o/oauth2/auth?client_id={self.registration.client_id}&{params}", kwargs["state"]

    def fetch_token(self, code=None):
        if code == "bad-code":
            raise ValueError("invalid_grant")
        self.credentials = Credentials(
            token="access-from-code",
            refresh_token="refresh-from-code",
            expiry=datetime.now(UTC).replace(tzinfo=None) + timedelta(hours=1),
        )
        self.oauth2session.token = {"scope": list(self.scopes)}


