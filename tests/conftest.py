"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from puffin.core.config import Settings
from puffin.main import app
from puffin.models import TokenPair
from puffin.sync.context import build_sync_context, get_sync_context
from puffin.sync.oauth import SCOPE_DRIVE_FILE, SCOPE_EMAIL

from tests.helpers import FOLDER_ID, FakeDrive, FakeFlow


@pytest.fixture(name="fake_drive")
def fake_drive_fixture() -> FakeDrive:
    drive = FakeDrive()
    drive.add_folder(FOLDER_ID)
    return drive


@pytest.fixture(name="http_calls")
def http_calls_fixture() -> list[httpx.Request]:
    return []


@pytest.fixture(name="transport")
def transport_fixture(fake_drive: FakeDrive, http_calls: list) -> httpx.MockTransport:
    """Serves Drive media downloads, userinfo and token revocation."""

    def handler(request: httpx.Request) -> httpx.Response:
        http_calls.append(request)
        if request.url.host == "oauth2.googleapis.com" and request.url.path == "/revoke":
            return httpx.Response(200)
        if request.url.path == "/oauth2/v2/userinfo":
            return httpx.Response(200, json={"email": "user@example.com"})
        if request.url.path.startswith("/drive/v3/files/"):
            file_id = request.url.path.rsplit("/", 1)[-1]
            if file_id not in fake_drive.files_by_id:
                return httpx.Response(404)
            return httpx.Response(200, content=fake_drive.content(file_id))
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        sync_encryption_key="test-secret",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_api_key="api-key",
        retry_base_delay=0.0,
        remote_check_interval_minutes=0,
    )


@pytest.fixture(name="ctx")
def ctx_fixture(settings: Settings, fake_drive: FakeDrive, transport: httpx.MockTransport):
    """Sync context wired to the fakes."""

    async def no_sleep(delay):
        return None

    return build_sync_context(
        settings,
        flow_factory=FakeFlow,
        service_factory=lambda creds: fake_drive,
        transport=transport,
        sleep=no_sleep,
    )


@pytest.fixture(name="tokens")
def tokens_fixture() -> TokenPair:
    return TokenPair(
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        scope=f"{SCOPE_DRIVE_FILE} {SCOPE_EMAIL}",
    )


@pytest.fixture(name="authorized_ctx")
def authorized_ctx_fixture(ctx, tokens: TokenPair):
    """Context with a valid, unexpired token pair in the vault."""
    ctx.vault.save_tokens(tokens)
    return ctx


@pytest.fixture(name="db_file")
def db_file_fixture(settings: Settings):
    """Local database file holding "db-v1"."""
    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    settings.database_path.write_bytes(b"db-v1")
    return settings.database_path


@pytest.fixture(name="client")
def client_fixture(authorized_ctx):
    """Create a test client bound to the test sync context."""

    def get_sync_context_override():
        return authorized_ctx

    app.dependency_overrides[get_sync_context] = get_sync_context_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
