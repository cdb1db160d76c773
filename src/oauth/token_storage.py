"""
Token storage for the OAuth token lifecycle manager.

This module defines the credential data structures and the CredentialStore
contract, plus three stores:

- FileTokenStorage: plaintext JSON file with user-only permissions (600)
- EncryptedFileTokenStorage: the same file, Fernet-encrypted
- InMemoryTokenStorage: process-local, for headless use and tests

File I/O is blocking, so the file stores run it in a worker thread to keep
the event loop free.
"""

import asyncio
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from .exceptions import TokenStorageError
from .metrics import AuthMetrics, auth_metrics

logger = logging.getLogger(__name__)


@dataclass
class Credential:
    """
    OAuth token set held by a provider.

    Attributes:
        access_token: Short-lived access token for API calls
        refresh_token: Long-lived token for obtaining new access tokens
        expiry_ms: Access token expiry in epoch milliseconds
        scope: Granted OAuth scopes
        token_type: Token type (typically "Bearer")
        id_token: OpenID Connect ID token, when issued
    """

    access_token: str
    refresh_token: Optional[str] = None
    expiry_ms: Optional[int] = None
    scope: List[str] = field(default_factory=list)
    token_type: str = "Bearer"
    id_token: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"Credential(access_token='***', has_refresh_token={bool(self.refresh_token)}, "
            f"expiry_ms={self.expiry_ms}, scope={self.scope!r}, token_type={self.token_type!r})"
        )

    @property
    def expires_at(self) -> Optional[datetime]:
        """Expiry as a timezone-aware UTC datetime, if known."""
        if self.expiry_ms is None:
            return None
        return datetime.fromtimestamp(self.expiry_ms / 1000, tz=timezone.utc)

    def is_expired(self, current_ms: Optional[int] = None) -> bool:
        """
        Check if the access token is past its expiry.

        Credentials without expiry information are treated as valid.
        """
        if self.expiry_ms is None:
            return False
        now = int(time.time() * 1000) if current_ms is None else current_ms
        return self.expiry_ms <= now

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry_ms": self.expiry_ms,
            "scope": list(self.scope),
            "token_type": self.token_type,
            "id_token": self.id_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        """
        Create Credential from dictionary.

        Raises:
            KeyError: If access_token is missing
            TypeError: If fields have wrong types
        """
        if not isinstance(data, dict):
            raise TypeError(f"credential must be an object, got {type(data).__name__}")
        scope = data.get("scope") or []
        if isinstance(scope, str):
            scope = scope.split()
        expiry = data.get("expiry_ms")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expiry_ms=int(expiry) if expiry is not None else None,
            scope=list(scope),
            token_type=data.get("token_type") or "Bearer",
            id_token=data.get("id_token"),
        )


@dataclass
class StoredCredential:
    """
    Credential persisted together with the identity that obtained it.

    Attributes:
        credential: The token set
        client_id: Client identity the tokens were issued to
        scopes: Scopes configured when the tokens were stored
        stored_at_ms: Epoch ms of the write
    """

    credential: Credential
    client_id: str
    scopes: List[str] = field(default_factory=list)
    stored_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credential": self.credential.to_dict(),
            "client_id": self.client_id,
            "scopes": list(self.scopes),
            "stored_at_ms": self.stored_at_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredCredential":
        if not isinstance(data, dict):
            raise TypeError(f"token file must hold an object, got {type(data).__name__}")
        return cls(
            credential=Credential.from_dict(data["credential"]),
            client_id=data["client_id"],
            scopes=list(data.get("scopes") or []),
            stored_at_ms=int(data.get("stored_at_ms") or 0),
        )


class CredentialStore(ABC):
    """Persistence contract for the last-known token set."""

    @abstractmethod
    async def save_tokens(self, stored: StoredCredential) -> None:
        """Persist credentials, replacing any previous ones."""

    @abstractmethod
    async def get_tokens(self) -> Optional[StoredCredential]:
        """Return stored credentials, or None when there are none."""

    @abstractmethod
    async def has_tokens(self) -> bool:
        """Check whether credentials are stored."""

    @abstractmethod
    async def delete_tokens(self) -> bool:
        """Remove stored credentials. Returns True if something was deleted."""


class InMemoryTokenStorage(CredentialStore):
    """Process-local credential store."""

    def __init__(self, initial: Optional[StoredCredential] = None):
        self._stored = initial

    async def save_tokens(self, stored: StoredCredential) -> None:
        self._stored = stored

    async def get_tokens(self) -> Optional[StoredCredential]:
        return self._stored

    async def has_tokens(self) -> bool:
        return self._stored is not None

    async def delete_tokens(self) -> bool:
        existed = self._stored is not None
        self._stored = None
        return existed


class FileTokenStorage(CredentialStore):
    """
    File-based token storage (plaintext JSON).

    Writes go to a temporary file in the same directory which then replaces
    the token file, so a crash mid-write never leaves a truncated file.
    """

    def __init__(self, token_file: Union[str, Path], metrics: Optional[AuthMetrics] = None):
        """
        Initialize token storage.

        Args:
            token_file: Path to token storage file
            metrics: Metrics emitter for cache corruption events
        """
        self.token_file = Path(token_file).expanduser()
        self.metrics = metrics or auth_metrics

    def _ensure_directory(self) -> None:
        """Create parent directory if needed."""
        self.token_file.parent.mkdir(parents=True, exist_ok=True)

    def _serialize(self, stored: StoredCredential) -> bytes:
        return json.dumps(stored.to_dict(), indent=2).encode("utf-8")

    def _deserialize(self, raw: bytes) -> Dict[str, Any]:
        return json.loads(raw.decode("utf-8"))

    def _write(self, stored: StoredCredential) -> None:
        self._ensure_directory()
        payload = self._serialize(stored)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.token_file.parent), prefix=".tokens-", suffix=".tmp"
        )
        try:
            os.chmod(tmp_path, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, self.token_file)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _read(self) -> Optional[StoredCredential]:
        if not self.token_file.exists():
            logger.debug(f"No token file found at {self.token_file}")
            return None

        try:
            raw = self.token_file.read_bytes()
        except OSError as e:
            logger.warning(f"Could not read token file: {e}")
            return None

        try:
            stored = StoredCredential.from_dict(self._deserialize(raw))
        except (ValueError, KeyError, TypeError, AttributeError, InvalidToken) as e:
            self._handle_corruption(e)
            return None

        logger.debug(f"Tokens loaded from {self.token_file}")
        return stored

    @staticmethod
    def _classify_corruption(error: Exception) -> str:
        if isinstance(error, InvalidToken):
            return "encryption"
        if isinstance(error, (json.JSONDecodeError, UnicodeDecodeError)):
            return "json"
        return "structure"

    def _handle_corruption(self, error: Exception) -> None:
        """Report a corrupted token file and move it aside."""
        corruption_type = self._classify_corruption(error)
        self.metrics.emit_cache_corrupted("file", corruption_type)

        backup = self.token_file.with_name(
            f"{self.token_file.name}.corrupted-{int(time.time() * 1000)}"
        )
        try:
            os.replace(self.token_file, backup)
        except OSError as e:
            logger.warning(f"Could not move corrupted token file aside: {e}")
            backup = None

        logger.warning(
            f"Invalid token file at {self.token_file} ({corruption_type}: "
            f"{type(error).__name__}), will need re-authorization"
            + (f"; backup kept at {backup}" if backup else "")
        )

    def _delete(self) -> bool:
        if not self.token_file.exists():
            logger.debug(f"Token file does not exist: {self.token_file}")
            return False
        self.token_file.unlink()
        logger.info(f"Token file deleted: {self.token_file}")
        return True

    async def save_tokens(self, stored: StoredCredential) -> None:
        """
        Save tokens to file with secure permissions (chmod 600).

        Raises:
            TokenStorageError: If the write fails
        """
        try:
            await asyncio.to_thread(self._write, stored)
        except OSError as e:
            logger.error(f"Failed to save tokens: {e}")
            raise TokenStorageError(
                "save",
                str(e),
                operation="save_tokens",
                context={"path": str(self.token_file), "client_id": stored.client_id},
            ) from e
        logger.info(f"Tokens saved to {self.token_file}")

    async def get_tokens(self) -> Optional[StoredCredential]:
        """
        Load tokens from file.

        Returns:
            StoredCredential if the file exists and is valid, None otherwise.
            A corrupted file is logged and reported as absent.
        """
        return await asyncio.to_thread(self._read)

    async def has_tokens(self) -> bool:
        return await asyncio.to_thread(self.token_file.exists)

    async def delete_tokens(self) -> bool:
        """
        Delete token file.

        Raises:
            TokenStorageError: If the file exists but cannot be removed
        """
        try:
            return await asyncio.to_thread(self._delete)
        except OSError as e:
            logger.error(f"Failed to delete token file: {e}")
            raise TokenStorageError(
                "delete", str(e), operation="delete_tokens",
                context={"path": str(self.token_file)},
            ) from e


class EncryptedFileTokenStorage(FileTokenStorage):
    """
    File-based token storage encrypted with Fernet (AES-128-CBC + HMAC).

    Contents that cannot be decrypted with the configured key are treated the
    same way as a corrupted plaintext file.
    """

    def __init__(
        self,
        token_file: Union[str, Path],
        key: Union[str, bytes],
        metrics: Optional[AuthMetrics] = None,
    ):
        """
        Args:
            token_file: Path to token storage file
            key: URL-safe base64 32-byte Fernet key (see ``generate_key``)
            metrics: Metrics emitter for cache corruption events
        """
        super().__init__(token_file, metrics)
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise TokenStorageError(
                "configure", f"invalid encryption key ({e})", operation="__init__"
            ) from e

    @staticmethod
    def generate_key() -> str:
        """Create a new random encryption key."""
        return Fernet.generate_key().decode("ascii")

    def _serialize(self, stored: StoredCredential) -> bytes:
        return self._fernet.encrypt(super()._serialize(stored))

    def _deserialize(self, raw: bytes) -> Dict[str, Any]:
        return super()._deserialize(self._fernet.decrypt(raw))
