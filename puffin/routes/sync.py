"""Sync routes consumed by the desktop UI."""
import dataclasses
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic.alias_generators import to_camel

from puffin.models.oauth import CamelModel, ClientRegistration
from puffin.sync.context import SyncContext, get_sync_context
from puffin.sync.errors import SyncErrorCode, hint_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

ERROR_STATUS = {
    SyncErrorCode.AUTH_REQUIRED: 401,
    SyncErrorCode.NO_ACCESS: 403,
    SyncErrorCode.READ_ONLY: 403,
    SyncErrorCode.NOT_FOUND: 404,
    SyncErrorCode.NOT_CONFIGURED: 400,
    SyncErrorCode.INVALID_URL: 400,
    SyncErrorCode.SYNC_IN_PROGRESS: 409,
    SyncErrorCode.CONFIRMATION_REQUIRED: 409,
    SyncErrorCode.TRANSIENT: 503,
    SyncErrorCode.TIMEOUT: 504,
}


class BindFolderRequest(CamelModel):
    folder_id: str | None = None
    folder_url: str | None = None
    folder_name: str | None = None


class BindFileRequest(CamelModel):
    file_id: str
    file_name: str | None = None


class CredentialsRequest(CamelModel):
    client_id: str
    client_secret: str
    api_key: str = ""


def to_response(result) -> dict:
    """Dataclass result as a camelCase JSON object."""
    return jsonable_encoder({to_camel(k): v for k, v in dataclasses.asdict(result).items()})


def raise_for_failure(error: str | None, error_code: SyncErrorCode | None) -> None:
    code = error_code or SyncErrorCode.UNKNOWN
    raise HTTPException(
        status_code=ERROR_STATUS.get(code, 500),
        detail={"error": error or "Sync failed", "errorCode": code.value, "hint": hint_for(code)},
    )


@router.get("/status")
async def sync_status(ctx: SyncContext = Depends(get_sync_context)):
    """
    Check whether a sync is required before editing.

    Compares the live database with the last synced state and the cloud
    backup. Never fails: an unreachable Drive is reported as ``check_failed``.
    """
    result = await ctx.orchestrator.check_status()
    return to_response(result)


@router.get("/config")
async def get_config(ctx: SyncContext = Depends(get_sync_context)):
    """Current binding plus account status, for the settings page."""
    config = ctx.state.get_config()
    return {
        **config.model_dump(mode="json", by_alias=True),
        "isConfigured": config.is_configured,
        "isAuthenticated": ctx.vault.has_tokens(),
        "hasCredentials": ctx.vault.has_credentials(),
        "hasExtendedScope": ctx.auth.has_extended_scope(),
        "phase": ctx.orchestrator.phase.value,
    }


@router.post("/config")
async def bind_folder(body: BindFolderRequest, ctx: SyncContext = Depends(get_sync_context)):
    """Validate a Drive folder (ID or link) and bind it as the sync target."""
    target = body.folder_url or body.folder_id
    if not target:
        raise_for_failure("Folder ID or URL is required", SyncErrorCode.INVALID_URL)

    result = await ctx.orchestrator.connect_container(target, body.folder_name)
    if not result.success:
        raise_for_failure(result.error, result.error_code)
    return {"success": True, "folderId": result.id, "folderName": result.name}


@router.post("/connect/file")
async def bind_file(body: BindFileRequest, ctx: SyncContext = Depends(get_sync_context)):
    """Bind a database file shared by another account."""
    result = await ctx.orchestrator.connect_file(body.file_id, body.file_name)
    if not result.success:
        raise_for_failure(result.error, result.error_code)
    return {"success": True, "fileId": result.id, "fileName": result.name}


@router.post("/push")
async def push(ctx: SyncContext = Depends(get_sync_context)):
    result = await ctx.orchestrator.push()
    if not result.success:
        raise_for_failure(result.error, result.error_code)
    return to_response(result)


@router.post("/pull")
async def pull(confirm: bool = False, ctx: SyncContext = Depends(get_sync_context)):
    """
    Download the cloud backup over the local database.

    Returns 409 with ``CONFIRMATION_REQUIRED`` while there are unsynced local
    changes; repeat with ``confirm=true`` to discard them.
    """
    result = await ctx.orchestrator.pull(confirm=confirm)
    if not result.success:
        raise_for_failure(result.error, result.error_code)
    return to_response(result)


@router.post("/disconnect")
async def disconnect(ctx: SyncContext = Depends(get_sync_context)):
    result = await ctx.orchestrator.disconnect()
    return {"success": result.success}


@router.get("/close-check")
async def close_check(ctx: SyncContext = Depends(get_sync_context)):
    return to_response(ctx.orchestrator.close_check())


@router.get("/token")
async def access_token(ctx: SyncContext = Depends(get_sync_context)):
    """Current access token, for the Drive file picker."""
    creds = await ctx.auth.get_authorized_client()
    if creds is None or not creds.token:
        raise_for_failure("Not authenticated", SyncErrorCode.AUTH_REQUIRED)
    return {"accessToken": creds.token}


@router.get("/credentials")
async def public_credentials(ctx: SyncContext = Depends(get_sync_context)):
    """Client ID and API key for the picker. The client secret is never returned."""
    registration = ctx.vault.get_credentials()
    client_id = registration.client_id if registration else ""
    api_key = registration.api_key if registration else ""
    return {"clientId": client_id, "apiKey": api_key, "configured": bool(client_id and api_key)}


@router.post("/credentials")
async def save_credentials(body: CredentialsRequest, ctx: SyncContext = Depends(get_sync_context)):
    registration = ClientRegistration(
        client_id=body.client_id.strip(),
        client_secret=body.client_secret.strip(),
        api_key=body.api_key.strip(),
    )
    if not registration.is_complete():
        raise HTTPException(status_code=400, detail="Client ID and secret are required")
    if not ctx.vault.save_credentials(registration):
        raise HTTPException(status_code=500, detail="Failed to store credentials")
    return {"success": True}


@router.delete("/credentials")
async def clear_credentials(ctx: SyncContext = Depends(get_sync_context)):
    """Forget the stored client registration. Environment values are unaffected."""
    ctx.vault.clear_credentials()
    logger.info("Cleared stored OAuth client credentials")
    return {"success": True}
