"""
OAuth2 client-credentials token lifecycle for the PhonePe gateway.
"""

import logging
import threading
import time
from typing import Callable, Optional

import requests

from .config import DEFAULT_EXPIRES_IN, GatewayConfig
from .exceptions import AuthError, StorageError
from .models import Token
from .storage.credentials import CredentialStore, EncryptedFileCredentialStore, MemoryCredentialStore
from .utils import redact_message

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/oauth/token"


class TokenManager:
    """
    Hands out access tokens that are valid beyond the safety margin.

    Refreshes are single-flight: one lock serialises the exchange, and a caller
    that waited on the lock re-reads the store before exchanging, so a burst of
    concurrent callers on an expired token costs exactly one authentication
    call.
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: Optional[CredentialStore] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store or self._default_store(config)
        self.session = session or requests.Session()
        self.safety_margin = config.token_safety_margin
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self.refresh_count = 0

    @staticmethod
    def _default_store(config: GatewayConfig) -> CredentialStore:
        if config.token_cache_path:
            return EncryptedFileCredentialStore(config.token_cache_path, key=config.token_encryption_key)
        return MemoryCredentialStore()

    @property
    def token_url(self) -> str:
        return f"{self.config.auth_url}{TOKEN_PATH}"

    def _cached_token(self) -> Optional[Token]:
        token = self.store.load()
        if token is not None and token.is_valid(self.safety_margin, self._clock()):
            return token
        return None

    def get_access_token(self) -> Token:
        """
        Return a token valid for at least ``safety_margin`` more seconds.

        Raises:
            AuthError: If the client-credentials exchange fails
        """
        token = self._cached_token()
        if token is not None:
            return token

        with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock.
            token = self._cached_token()
            if token is not None:
                return token

            token = self._exchange()
            try:
                self.store.save(token)
            except StorageError as e:
                logger.warning("PhonePe token obtained but not cached: %s", e.message)
            return token

    def invalidate(self) -> None:
        """Forget the cached token, e.g. after the gateway rejected it."""
        with self._refresh_lock:
            self.store.clear()
        logger.info("PhonePe access token invalidated")

    def _exchange(self) -> Token:
        form = {
            "client_id": self.config.client_id,
            "client_version": self.config.client_version,
            "client_secret": self.config.client_secret,
            "grant_type": "client_credentials",
        }
        try:
            resp = self.session.post(
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error("PhonePe token request timed out")
            raise AuthError("PhonePe token request timed out", cause="timeout")
        except requests.exceptions.RequestException as e:
            logger.error("PhonePe token request failed: %s", e)
            reason = redact_message(str(e))
            raise AuthError(f"PhonePe token request failed: {reason}", cause=reason)

        status = resp.status_code
        if not 200 <= status < 300:
            logger.error("PhonePe Token Failed (HTTP %s)", status)
            raise AuthError(
                f"PhonePe token request failed with HTTP {status}",
                status_code=status,
                cause=redact_message(str(getattr(resp, "text", ""))[:500]),
            )

        try:
            data = resp.json()
        except ValueError:
            raise AuthError("PhonePe token response is not valid JSON", status_code=status)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise AuthError("PhonePe token response has no access_token", status_code=status)

        expires_in = data.get("expires_in")
        try:
            expires_in = float(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN

        now = self._clock()
        token = Token(access_token=str(data["access_token"]), expires_at=now + expires_in)
        if not token.is_valid(self.safety_margin, now):
            logger.error("PhonePe token lifetime %ss is not beyond the %ss safety margin", expires_in, self.safety_margin)
            raise AuthError(
                "PhonePe token lifetime shorter than safety margin",
                status_code=status,
                cause=f"expires_in={expires_in}",
            )

        self.refresh_count += 1
        logger.info("PhonePe access token refreshed, expires in %ss", int(expires_in))
        return token
