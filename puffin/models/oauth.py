"""OAuth records for Google Drive authentication.

This module defines the two secrets the sync engine persists: the OAuth
client registration the application authenticates as, and the token pair
obtained for the user. Both are serialized to JSON and encrypted by the
credential vault before they touch the disk; neither is stored in the
application database.
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Tokens this close to expiry count as expired
EXPIRY_LEEWAY = timedelta(seconds=60)


class CamelModel(BaseModel):
    """Base for records persisted as JSON with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientRegistration(CamelModel):
    """OAuth client registration for the Google Cloud project.

    Attributes:
        client_id: OAuth client ID.
        client_secret: OAuth client secret. Never returned to the UI.
        api_key: Browser API key used by the file picker. Optional.
    """
    client_id: str
    client_secret: str
    api_key: str = ""

    def is_complete(self) -> bool:
        return bool(self.client_id and self.client_secret)


class TokenPair(CamelModel):
    """Access/refresh token pair granted to this installation.

    The refresh token is long-lived and used to obtain new access tokens
    when they expire. ``scope`` is the space-separated scope string the
    provider reported at grant time; refresh responses may omit it, so it
    is carried over unchanged when the access token is renewed.

    Attributes:
        access_token: Short-lived bearer token for API requests.
        refresh_token: Long-lived token used to obtain new access tokens.
        expires_at: When the access token expires (UTC).
        token_type: Token type reported by the provider, normally "Bearer".
        scope: Space-separated list of granted scopes.
    """
    access_token: str
    refresh_token: str
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: str = ""

    @property
    def scopes(self) -> list[str]:
        return self.scope.split()

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at - EXPIRY_LEEWAY <= now
