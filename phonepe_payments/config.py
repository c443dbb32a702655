"""
Configuration module for the PhonePe payments package.

Holds the immutable, eagerly validated gateway configuration and an
environment-variable loader for hosts that do not bring their own.
"""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

VALID_ENVIRONMENTS = {"uat", "prod"}
VALID_PAYMENT_MODES = {"iframe", "redirect"}

# Default gateway endpoints per environment
DEFAULT_ENDPOINTS = {
    "uat": {
        "base_url": "https://api-uat.phonepe.com",
        "auth_url": "https://api-uat.phonepe.com",
    },
    "prod": {
        "base_url": "https://api.phonepe.com",
        "auth_url": "https://api.phonepe.com",
    },
}

DEFAULT_CLIENT_VERSION = "1.0"
DEFAULT_CURRENCY = "INR"
DEFAULT_TIMEOUT = 30
DEFAULT_TOKEN_SAFETY_MARGIN = 120
MIN_TOKEN_SAFETY_MARGIN = 60
DEFAULT_EXPIRES_IN = 3600

MAX_CONFIG_STRING_LENGTH = 1000

REQUIRED_FIELDS = ("client_id", "client_secret", "client_version", "base_url", "auth_url", "redirect_url")
SECRET_FIELDS = ("client_secret", "webhook_salt_key", "token_encryption_key")


def _validate_config_string(value: str, config_name: str) -> str:
    """Validate configuration string for type, length and content."""
    if not isinstance(value, str):
        raise ConfigurationError(
            f"{config_name} must be a string, got {type(value).__name__}",
            config_key=config_name,
            expected_value="str",
            actual_value=type(value).__name__,
        )
    if len(value) > MAX_CONFIG_STRING_LENGTH:
        raise ConfigurationError(
            f"{config_name} string too long ({len(value)} chars). Max: {MAX_CONFIG_STRING_LENGTH}",
            config_key=config_name,
        )
    if any(char in value for char in ["\0", "\r", "\n", "\t"]):
        raise ConfigurationError(f"{config_name} contains invalid characters", config_key=config_name)
    return value


def _validate_url(value: str, config_name: str, require_https: bool = False) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(
            f"{config_name} must be a valid http(s) URL",
            config_key=config_name,
            expected_value="http(s)://host/...",
            actual_value=value,
        )
    if require_https and not value.startswith("https://"):
        raise ConfigurationError(
            f"{config_name} must be HTTPS in production",
            config_key=config_name,
            expected_value="https://...",
            actual_value=value,
        )


@dataclass(frozen=True)
class GatewayConfig:
    """
    Validated configuration for one gateway environment.

    Construct once at process start and pass the same instance to the client
    and the webhook processor. Any problem raises ConfigurationError here,
    never later at request time.
    """

    client_id: str
    client_secret: str
    redirect_url: str
    environment: str = "uat"
    client_version: str = DEFAULT_CLIENT_VERSION
    base_url: Optional[str] = None
    auth_url: Optional[str] = None
    merchant_id: Optional[str] = None
    webhook_salt_key: Optional[str] = None
    webhook_salt_index: int = 1
    token_cache_path: Optional[str] = None
    token_encryption_key: Optional[str] = None
    payment_mode: str = "iframe"
    currency: str = DEFAULT_CURRENCY
    timeout: float = DEFAULT_TIMEOUT
    token_safety_margin: int = DEFAULT_TOKEN_SAFETY_MARGIN

    def __post_init__(self) -> None:
        if self.environment not in VALID_ENVIRONMENTS:
            raise ConfigurationError(
                'Environment must be "uat" or "prod".',
                config_key="environment",
                expected_value="uat|prod",
                actual_value=str(self.environment),
            )

        # Fill per-environment endpoint defaults; frozen, so go through object.__setattr__.
        for key in ("base_url", "auth_url"):
            if not getattr(self, key):
                object.__setattr__(self, key, DEFAULT_ENDPOINTS[self.environment][key])

        for key in REQUIRED_FIELDS:
            value = getattr(self, key)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ConfigurationError(f"Missing config: phonepe.{self.environment}.{key}", config_key=key)
            _validate_config_string(value, key)

        for key in ("merchant_id", "webhook_salt_key", "token_cache_path", "token_encryption_key"):
            value = getattr(self, key)
            if value is not None:
                _validate_config_string(value, key)

        # Strip trailing slashes so endpoint paths can be appended directly.
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "auth_url", self.auth_url.rstrip("/"))

        _validate_url(self.base_url, "base_url")
        _validate_url(self.auth_url, "auth_url")
        _validate_url(self.redirect_url, "redirect_url", require_https=self.is_production)

        if self.payment_mode not in VALID_PAYMENT_MODES:
            raise ConfigurationError(
                "payment_mode must be 'iframe' or 'redirect'",
                config_key="payment_mode",
                actual_value=str(self.payment_mode),
            )
        if isinstance(self.webhook_salt_index, bool) or not isinstance(self.webhook_salt_index, int) or self.webhook_salt_index < 1:
            raise ConfigurationError(
                "webhook_salt_index must be a positive integer",
                config_key="webhook_salt_index",
                actual_value=str(self.webhook_salt_index),
            )
        if not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise ConfigurationError("Timeout must be a positive number.", config_key="timeout", actual_value=str(self.timeout))
        if not isinstance(self.token_safety_margin, int) or self.token_safety_margin < MIN_TOKEN_SAFETY_MARGIN:
            raise ConfigurationError(
                f"token_safety_margin must be at least {MIN_TOKEN_SAFETY_MARGIN} seconds",
                config_key="token_safety_margin",
                actual_value=str(self.token_safety_margin),
            )

        logger.debug("GatewayConfig validated for %s environment", self.environment)

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """
        Build a configuration from PHONEPE_* environment variables.

        Per-environment credentials are read from PHONEPE_UAT_* or PHONEPE_PROD_*
        depending on PHONEPE_ENV (default ``uat``).
        """
        env = os.environ if environ is None else environ
        environment = env.get("PHONEPE_ENV", "uat").strip().lower()
        prefix = f"PHONEPE_{environment.upper()}_"

        salt_index_raw = env.get("PHONEPE_WEBHOOK_SALT_INDEX", "1")
        timeout_raw = env.get("PHONEPE_TIMEOUT", str(DEFAULT_TIMEOUT))
        try:
            salt_index = int(salt_index_raw)
        except ValueError:
            raise ConfigurationError(
                "PHONEPE_WEBHOOK_SALT_INDEX must be an integer", config_key="webhook_salt_index", actual_value=salt_index_raw
            )
        try:
            timeout = float(timeout_raw)
        except ValueError:
            raise ConfigurationError("PHONEPE_TIMEOUT must be a number", config_key="timeout", actual_value=timeout_raw)

        return cls(
            environment=environment,
            client_id=env.get(f"{prefix}CLIENT_ID", ""),
            client_secret=env.get(f"{prefix}CLIENT_SECRET", ""),
            client_version=env.get("PHONEPE_CLIENT_VERSION", DEFAULT_CLIENT_VERSION),
            base_url=env.get(f"{prefix}BASE_URL") or None,
            auth_url=env.get(f"{prefix}AUTH_URL") or None,
            merchant_id=env.get(f"{prefix}MERCHANT_ID") or None,
            redirect_url=env.get("PHONEPE_REDIRECT_URL", ""),
            webhook_salt_key=env.get("PHONEPE_WEBHOOK_SALT_KEY") or None,
            webhook_salt_index=salt_index,
            token_cache_path=env.get("PHONEPE_TOKEN_CACHE_PATH") or None,
            token_encryption_key=env.get("PHONEPE_TOKEN_ENCRYPTION_KEY") or None,
            payment_mode=env.get("PHONEPE_PAYMENT_MODE", "iframe"),
            timeout=timeout,
        )

    def summary(self) -> dict:
        """Get a summary of the configuration with secrets masked."""
        data = asdict(self)
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "***"
        return data
