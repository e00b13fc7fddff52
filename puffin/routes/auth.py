"""Google OAuth routes for connecting a Drive account."""
import logging
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from puffin.sync.context import SyncContext, get_sync_context
from puffin.sync.oauth import ScopeLevel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync/oauth", tags=["auth"])


def settings_redirect(ctx: SyncContext, **params: str) -> RedirectResponse:
    base = ctx.settings.settings_page_url
    separator = "&" if "?" in base else "?"
    query = "&".join(f"{key}={quote(value)}" for key, value in params.items())
    return RedirectResponse(f"{base}{separator}{query}", status_code=303)


@router.get("/url")
async def authorization_url(
    scope_level: ScopeLevel = Query(ScopeLevel.STANDARD, alias="scopeLevel"),
    ctx: SyncContext = Depends(get_sync_context),
):
    """
    Build the Google consent URL.

    ``extended`` requests full Drive access, needed to open a backup that
    another account shared with this one.
    """
    url = ctx.orchestrator.get_authorization_url(scope_level)
    if url is None:
        raise HTTPException(
            status_code=400,
            detail="Google OAuth credentials not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.",
        )
    return {"url": url, "scopeLevel": scope_level.value}


@router.get("/callback")
async def oauth_callback(
    background_tasks: BackgroundTasks,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    ctx: SyncContext = Depends(get_sync_context),
):
    """
    Handle the redirect back from Google.

    Stores the tokens, schedules the account email lookup so the redirect
    is not held up by it, and sends the user back to the settings page.
    """
    if error:
        logger.warning(f"OAuth authorization denied: {error}")
        return settings_redirect(ctx, sync_error=error)
    if not code:
        return settings_redirect(ctx, sync_error="no_code")

    result = await ctx.orchestrator.handle_callback(code, state)
    if not result.success:
        return settings_redirect(ctx, sync_error=result.error or "token_exchange_failed")

    background_tasks.add_task(ctx.orchestrator.refresh_user_email)
    return settings_redirect(ctx, sync_auth="success")
