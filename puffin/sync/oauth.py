"""Google OAuth2 authorization for Drive access.

Two scope tiers are offered. ``standard`` only lets the app see files it
created itself, which is all single-account sync needs. ``extended`` adds
full Drive access, required to open a backup another account shared with
this one. The tier that was actually granted is read back from the token's
scope string.
"""
import asyncio
import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Callable

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from puffin.models.oauth import ClientRegistration, TokenPair
from puffin.models.results import ExchangeResult
from puffin.sync.vault import CredentialVault

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
REVOKE_URI = "https://oauth2.googleapis.com/revoke"
USERINFO_URI = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPE_DRIVE_FILE = "https://www.googleapis.com/auth/drive.file"
SCOPE_DRIVE = "https://www.googleapis.com/auth/drive"
SCOPE_EMAIL = "https://www.googleapis.com/auth/userinfo.email"


class ScopeLevel(str, Enum):
    STANDARD = "standard"
    EXTENDED = "extended"


SCOPES = {
    ScopeLevel.STANDARD: [SCOPE_DRIVE_FILE, SCOPE_EMAIL],
    ScopeLevel.EXTENDED: [SCOPE_DRIVE_FILE, SCOPE_DRIVE, SCOPE_EMAIL],
}


def get_scopes(level: ScopeLevel | str = ScopeLevel.STANDARD) -> list[str]:
    return list(SCOPES[ScopeLevel(level)])


@dataclass(frozen=True)
class OAuthState:
    scope_level: ScopeLevel = ScopeLevel.STANDARD
    custom: str | None = None


def encode_state(level: ScopeLevel | str, custom: str | None = None) -> str:
    """Pack the requested scope tier into the opaque ``state`` parameter."""
    payload = json.dumps({"scopeLevel": ScopeLevel(level).value, "custom": custom}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode()).decode().rstrip("=")


def decode_state(state: str | None) -> OAuthState:
    """Inverse of ``encode_state``. Malformed input falls back to the defaults."""
    if not state:
        return OAuthState()
    try:
        padded = state + "=" * (-len(state) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode()))
        level = ScopeLevel(data.get("scopeLevel", ScopeLevel.STANDARD.value))
        custom = data.get("custom")
        return OAuthState(scope_level=level, custom=custom if isinstance(custom, str) else None)
    except (binascii.Error, ValueError, AttributeError, UnicodeDecodeError):
        logger.warning("Ignoring malformed OAuth state parameter")
        return OAuthState()


def build_flow(registration: ClientRegistration, scopes: list[str], redirect_uri: str) -> Flow:
    """OAuth web flow for the registered client."""
    client_config = {
        "web": {
            "client_id": registration.client_id,
            "client_secret": registration.client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
        }
    }
    # Google may grant a different scope set than requested; keep oauthlib from raising on it
    os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")
    # The callback handler builds a fresh Flow, so there is no verifier to carry over
    return Flow.from_client_config(
        client_config,
        scopes=scopes,
        redirect_uri=redirect_uri,
        autogenerate_code_verifier=False,
    )


def _scope_string(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return " ".join(value)
    return value or ""


def _to_aware(expiry: datetime | None) -> datetime | None:
    # google-auth keeps expiry as naive UTC
    if expiry is None:
        return None
    return expiry.replace(tzinfo=UTC) if expiry.tzinfo is None else expiry


def _to_naive(expires_at: datetime | None) -> datetime | None:
    if expires_at is None:
        return None
    if expires_at.tzinfo is not None:
        expires_at = expires_at.astimezone(UTC)
    return expires_at.replace(tzinfo=None)


class AuthorizationManager:
    """
    Drives the authorization-code flow and hands out authorized credentials.

    Args:
        vault: Source of the client registration and token storage
        redirect_uri: Callback URL registered with Google
        flow_factory: Builds the OAuth flow, replaceable in tests
        transport: Optional httpx transport for revoke/userinfo calls
    """

    def __init__(
        self,
        vault: CredentialVault,
        redirect_uri: str,
        flow_factory: Callable[[ClientRegistration, list[str], str], Any] = build_flow,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.vault = vault
        self.redirect_uri = redirect_uri
        self.flow_factory = flow_factory
        self.transport = transport

    def is_configured(self) -> bool:
        return self.vault.has_credentials()

    def get_scopes(self, level: ScopeLevel | str = ScopeLevel.STANDARD) -> list[str]:
        return get_scopes(level)

    def build_authorization_url(self, level: ScopeLevel | str = ScopeLevel.STANDARD, state: str | None = None) -> str:
        registration = self.vault.get_credentials()
        if registration is None:
            raise ValueError("Google OAuth client is not configured")

        flow = self.flow_factory(registration, get_scopes(level), self.redirect_uri)
        url, _ = flow.authorization_url(
            access_type="offline",  # Get refresh token
            prompt="consent",  # Always show consent to get refresh token
            state=encode_state(level, state),
        )
        return url

    async def exchange_code(self, code: str, state: str | None = None) -> ExchangeResult:
        """Exchange an authorization code for tokens and store them."""
        registration = self.vault.get_credentials()
        if registration is None:
            return ExchangeResult(success=False, error="Google OAuth client is not configured")

        requested = decode_state(state)
        scopes = get_scopes(requested.scope_level)

        try:
            flow = self.flow_factory(registration, scopes, self.redirect_uri)
            await asyncio.to_thread(flow.fetch_token, code=code)
        except Exception as e:
            logger.error(f"Authorization code exchange failed: {e}")
            return ExchangeResult(success=False, error=str(e) or "Token exchange failed")

        creds = flow.credentials
        if not creds.token or not creds.refresh_token:
            return ExchangeResult(success=False, error="Google did not return a refresh token")

        granted = _scope_string(getattr(flow, "oauth2session", None) and flow.oauth2session.token.get("scope"))
        tokens = TokenPair(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expires_at=_to_aware(creds.expiry) or datetime.now(UTC) + timedelta(hours=1),
            token_type="Bearer",
            scope=granted or " ".join(scopes),
        )
        if not self.vault.save_tokens(tokens):
            return ExchangeResult(success=False, error="Failed to store tokens")

        logger.info(f"Authorization completed with {requested.scope_level.value} scope")
        return ExchangeResult(success=True, scope_level=requested.scope_level.value)

    async def get_authorized_client(self) -> Credentials | None:
        """
        Credentials ready for API calls, refreshing the access token if it expired.

        Returns None when there are no tokens or the refresh token was rejected;
        callers must treat that as "re-authorization required".
        """
        tokens = self.vault.get_tokens()
        registration = self.vault.get_credentials()
        if tokens is None or registration is None:
            return None

        creds = Credentials(
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_uri=TOKEN_URI,
            client_id=registration.client_id,
            client_secret=registration.client_secret,
            scopes=tokens.scopes or None,
            expiry=_to_naive(tokens.expires_at),
        )

        if not tokens.is_expired():
            return creds

        try:
            await asyncio.to_thread(creds.refresh, Request())
        except GoogleAuthError as e:
            logger.error(f"Failed to refresh access token: {e}")
            return None

        refreshed = tokens.model_copy(update={
            "access_token": creds.token,
            "refresh_token": creds.refresh_token or tokens.refresh_token,
            "expires_at": _to_aware(creds.expiry),
        })
        self.vault.save_tokens(refreshed)
        logger.info("Refreshed Google API credentials")
        return creds

    def has_extended_scope(self) -> bool:
        tokens = self.vault.get_tokens()
        if tokens is None:
            return False
        # drive.file contains "drive" as a substring, so compare whole scope tokens
        return SCOPE_DRIVE in tokens.scopes

    async def revoke(self) -> bool:
        """Revoke the grant at Google. True when nothing is left to revoke."""
        tokens = self.vault.get_tokens()
        if tokens is None:
            return True
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=10.0) as client:
                response = await client.post(REVOKE_URI, params={"token": tokens.refresh_token or tokens.access_token})
        except httpx.HTTPError as e:
            logger.warning(f"Token revocation failed: {e}")
            return False
        if response.status_code != 200:
            logger.warning(f"Token revocation rejected with status {response.status_code}")
            return False
        return True

    async def fetch_user_email(self) -> str | None:
        creds = await self.get_authorized_client()
        if creds is None:
            return None
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=10.0) as client:
                response = await client.get(USERINFO_URI, headers={"Authorization": f"Bearer {creds.token}"})
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch user info: {e}")
            return None
        if response.status_code != 200:
            return None
        return response.json().get("email")
