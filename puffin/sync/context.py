"""Composition root for the sync engine.

Everything the routes need is built once here from ``Settings`` and handed
around by reference, so tests can assemble the same graph over a temporary
directory.
"""
from dataclasses import dataclass

from fastapi import Request

from puffin.core.config import Settings
from puffin.core.database import LocalDatabase
from puffin.sync.drive import DriveStorage
from puffin.sync.oauth import AuthorizationManager
from puffin.sync.orchestrator import SyncOrchestrator
from puffin.sync.retry import RetryPolicy
from puffin.sync.state import SyncStateTracker
from puffin.sync.vault import CredentialVault, EnvironmentCredentialSource, derive_vault_key


@dataclass
class SyncContext:
    settings: Settings
    vault: CredentialVault
    auth: AuthorizationManager
    state: SyncStateTracker
    storage: DriveStorage
    database: LocalDatabase
    orchestrator: SyncOrchestrator


def build_sync_context(settings: Settings, **overrides) -> SyncContext:
    """
    Wire the engine for ``settings``.

    ``overrides`` may replace ``flow_factory``, ``service_factory``,
    ``transport`` or ``sleep`` with test doubles.
    """
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    vault = CredentialVault(
        settings.data_dir,
        derive_vault_key(settings.sync_encryption_key, settings.data_dir),
        sources=[EnvironmentCredentialSource.from_settings(settings)],
    )

    auth_kwargs = {k: overrides[k] for k in ("flow_factory", "transport") if k in overrides}
    auth = AuthorizationManager(vault, settings.google_redirect_uri, **auth_kwargs)

    state = SyncStateTracker(settings.config_path, settings.database_path)

    storage_kwargs = {k: overrides[k] for k in ("service_factory", "transport", "sleep") if k in overrides}
    storage = DriveStorage(
        auth,
        backup_filename=settings.remote_backup_filename,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        download_timeout=settings.download_timeout_seconds,
        **storage_kwargs,
    )

    database = LocalDatabase(settings.database_path, echo=settings.debug)

    orchestrator = SyncOrchestrator(
        vault=vault,
        auth=auth,
        state=state,
        storage=storage,
        database=database,
        backup_dir=settings.backup_dir,
        download_temp_path=settings.download_temp_path,
        backup_keep=settings.local_backup_keep,
    )

    return SyncContext(
        settings=settings,
        vault=vault,
        auth=auth,
        state=state,
        storage=storage,
        database=database,
        orchestrator=orchestrator,
    )


def get_sync_context(request: Request) -> SyncContext:
    """Dependency for getting the application's sync context."""
    return request.app.state.sync_context
