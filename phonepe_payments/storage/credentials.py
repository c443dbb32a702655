"""
Credential stores for the cached OAuth2 access token.

The file store keeps the token encrypted at rest with Fernet and replaces the
cache file atomically. Any cache that cannot be read back is treated as empty
and removed; the next save recreates it.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import ConfigurationError, StorageError
from ..models import Token

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Contract for token caches: ``load() -> Token | None`` and ``save(Token)``."""

    @abstractmethod
    def load(self) -> Optional[Token]:
        """Return the cached token, or None when absent or unreadable."""
        pass

    @abstractmethod
    def save(self, token: Token) -> None:
        """Persist a token, replacing any previous one."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop the cached token."""
        pass


class MemoryCredentialStore(CredentialStore):
    """Process-local token cache."""

    def __init__(self, token: Optional[Token] = None):
        self._token = token
        self._lock = threading.Lock()

    def load(self) -> Optional[Token]:
        with self._lock:
            return self._token

    def save(self, token: Token) -> None:
        with self._lock:
            self._token = token

    def clear(self) -> None:
        with self._lock:
            self._token = None


class EncryptedFileCredentialStore(CredentialStore):
    """
    Fernet-encrypted token cache on disk.

    Without an explicit key a random one is generated for this process, so a
    cache left by another process is unreadable and gets replaced on the next
    save. Pass ``key`` (a urlsafe base64 Fernet key) to share the cache across
    restarts.
    """

    def __init__(self, path: str, key: Union[str, bytes, None] = None):
        if not path or not isinstance(path, str):
            raise ConfigurationError("token cache path must be a non-empty string", config_key="token_cache_path")
        self.path = os.path.abspath(path)
        try:
            self._fernet = Fernet(key if key else Fernet.generate_key())
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid token encryption key: {e}", config_key="token_encryption_key")
        self._lock = threading.Lock()
        logger.debug("EncryptedFileCredentialStore using %s", self.path)

    def load(self) -> Optional[Token]:
        with self._lock:
            try:
                with open(self.path, "rb") as f:
                    blob = f.read()
            except FileNotFoundError:
                return None
            except OSError as e:
                logger.warning("PhonePe token cache unreadable, discarding: %s", e)
                self._discard()
                return None

            try:
                return Token.from_dict(json.loads(self._fernet.decrypt(blob)))
            except (InvalidToken, ValueError, KeyError, TypeError) as e:
                logger.warning("PhonePe token decrypt failed, discarding cache: %s", e.__class__.__name__)
                self._discard()
                return None

    def save(self, token: Token) -> None:
        blob = self._fernet.encrypt(json.dumps(token.to_dict()).encode("utf-8"))
        directory = os.path.dirname(self.path)
        with self._lock:
            tmp_path = None
            try:
                os.makedirs(directory, mode=0o700, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".token-", suffix=".tmp")
                with os.fdopen(fd, "wb") as f:
                    if hasattr(os, "fchmod"):
                        os.fchmod(f.fileno(), 0o600)
                    f.write(blob)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
                tmp_path = None
            except OSError as e:
                logger.error("Failed to save PhonePe token cache: %s", e)
                raise StorageError(
                    f"Failed to save token cache: {e}", storage_type="file", operation="save", entity_id=self.path
                )
            finally:
                if tmp_path and os.path.exists(tmp_path):
                    os.remove(tmp_path)

    def clear(self) -> None:
        with self._lock:
            self._discard()

    def _discard(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove PhonePe token cache %s: %s", self.path, e)
