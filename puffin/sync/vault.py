"""
Encrypted storage for OAuth secrets.

The client registration and the token pair are each kept in their own file
in the data directory, encrypted with Fernet (AES-128-CBC + HMAC, a fresh
random IV per encryption). Nothing here raises past the public methods: an
unreadable file is reported as absent and logged, which the rest of the
engine treats as "not connected".
"""

import base64
import hashlib
import json
import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Protocol, Sequence, TypeVar

from cryptography.fernet import Fernet, InvalidToken

from puffin.models.oauth import ClientRegistration, TokenPair

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKENS_FILENAME = ".sync-tokens.enc"
CREDENTIALS_FILENAME = ".sync-credentials.enc"


def derive_vault_key(secret: str | None, data_dir: Path) -> bytes:
    """
    Build a Fernet key.

    A configured secret wins: it is used as-is when it already is a Fernet
    key, otherwise hashed into one. Without a secret the key is derived from
    the host name, the home directory and the data directory, so a copied
    data directory cannot be decrypted on another machine.
    """
    if secret:
        if len(secret) == 44:  # Fernet keys are 32 bytes, urlsafe base64 encoded
            try:
                Fernet(secret.encode())
                return secret.encode()
            except ValueError:
                pass
        material = secret
    else:
        logger.warning("SYNC_ENCRYPTION_KEY not set. Using machine-derived vault key.")
        material = f"{socket.gethostname()}|{Path.home()}|{Path(data_dir).resolve()}"

    return base64.urlsafe_b64encode(hashlib.sha256(material.encode()).digest())


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    """Outcome of reading an encrypted file: a value, nothing, or a decode error."""
    value: T | None = None
    error: str | None = None

    @property
    def absent(self) -> bool:
        return self.value is None and self.error is None

    @property
    def corrupt(self) -> bool:
        return self.error is not None


class CredentialSource(Protocol):
    name: str

    def load(self) -> ClientRegistration | None:
        ...


class EnvironmentCredentialSource:
    """Client registration provisioned through deployment configuration."""
    name = "environment"

    def __init__(self, client_id: str, client_secret: str, api_key: str = ""):
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings) -> "EnvironmentCredentialSource":
        return cls(settings.google_client_id, settings.google_client_secret, settings.google_api_key)

    def load(self) -> ClientRegistration | None:
        if not (self.client_id and self.client_secret):
            return None
        return ClientRegistration(
            client_id=self.client_id,
            client_secret=self.client_secret,
            api_key=self.api_key,
        )


class StoredCredentialSource:
    """Client registration entered by the user and saved in the vault."""
    name = "vault"

    def __init__(self, vault: "CredentialVault"):
        self.vault = vault

    def load(self) -> ClientRegistration | None:
        result = self.vault.read_credentials()
        if result.corrupt:
            logger.error(f"Failed to read stored credentials: {result.error}")
        return result.value


class CredentialVault:
    """
    Encrypted persistence for the client registration and token pair.

    Args:
        data_dir: Directory holding the encrypted files
        key: Fernet key, see ``derive_vault_key``
        sources: Credential sources consulted before the stored registration
    """

    def __init__(self, data_dir: Path, key: bytes, sources: Sequence[CredentialSource] = ()):
        self.data_dir = Path(data_dir)
        self.tokens_path = self.data_dir / TOKENS_FILENAME
        self.credentials_path = self.data_dir / CREDENTIALS_FILENAME
        self._cipher = Fernet(key)
        self.credential_sources: list[CredentialSource] = [*sources, StoredCredentialSource(self)]

    # Tokens

    def save_tokens(self, tokens: TokenPair) -> bool:
        saved = self._write(self.tokens_path, tokens.model_dump_json(by_alias=True))
        if saved:
            logger.info("Stored OAuth tokens")
        return saved

    def read_tokens(self) -> ReadResult[TokenPair]:
        return self._read(self.tokens_path, TokenPair)

    def get_tokens(self) -> TokenPair | None:
        result = self.read_tokens()
        if result.corrupt:
            logger.error(f"Failed to read OAuth tokens: {result.error}")
        return result.value

    def has_tokens(self) -> bool:
        return self.get_tokens() is not None

    # Client registration

    def save_credentials(self, registration: ClientRegistration) -> bool:
        saved = self._write(self.credentials_path, registration.model_dump_json(by_alias=True))
        if saved:
            logger.info("Stored OAuth client registration")
        return saved

    def read_credentials(self) -> ReadResult[ClientRegistration]:
        return self._read(self.credentials_path, ClientRegistration)

    def get_credentials(self) -> ClientRegistration | None:
        """First complete registration offered by the configured sources."""
        for source in self.credential_sources:
            registration = source.load()
            if registration is not None and registration.is_complete():
                return registration
        return None

    def has_credentials(self) -> bool:
        return self.get_credentials() is not None

    # Removal

    def clear(self) -> None:
        """Forget the token pair. Safe to call when nothing is stored."""
        self._remove(self.tokens_path)

    def clear_credentials(self) -> None:
        self._remove(self.credentials_path)

    # Internals

    def _write(self, path: Path, payload: str) -> bool:
        encrypted = self._cipher.encrypt(payload.encode())
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(encrypted)
            os.replace(tmp_path, path)
            return True
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            return False

    def _read(self, path: Path, model: type[T]) -> ReadResult[T]:
        if not path.exists():
            return ReadResult()
        try:
            decrypted = self._cipher.decrypt(path.read_bytes())
            return ReadResult(value=model.model_validate(json.loads(decrypted)))
        except InvalidToken:
            return ReadResult(error=f"{path.name} cannot be decrypted with the current key")
        except (OSError, ValueError) as e:
            return ReadResult(error=f"{path.name} is unreadable: {e}")

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")
