"""
Custom exceptions for the PhonePe payments package.

Defines the error taxonomy shared by the token manager, the gateway client,
the audit log and the webhook processor.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class PhonePePaymentsError(Exception):
    """Base exception for all PhonePe payments errors."""

    message: str
    error_code: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        logger.error(
            "%s: %s (Code: %s, Details: %s)",
            self.__class__.__name__,
            self.message,
            self.error_code,
            self.details,
        )

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}" if self.error_code else self.message

    def _merge_details(self, values: dict[str, Any]) -> None:
        self.details.update({k: v for k, v in values.items() if v is not None})


@dataclass
class ConfigurationError(PhonePePaymentsError):
    """Raised at construction time for missing or invalid configuration."""

    config_key: Optional[str] = None
    expected_value: Optional[str] = None
    actual_value: Optional[str] = None

    def __post_init__(self):
        self._merge_details(
            {
                "config_key": self.config_key,
                "expected_value": self.expected_value,
                "actual_value": self.actual_value,
            }
        )
        self.error_code = self.error_code or "CONFIGURATION_ERROR"
        super().__post_init__()


# The error taxonomy calls it ConfigError; both names are public.
ConfigError = ConfigurationError


@dataclass
class ValidationError(PhonePePaymentsError):
    """Raised when a caller passes an invalid argument."""

    field: Optional[str] = None
    value: Any = None
    constraints: Optional[dict[str, Any]] = None

    def __post_init__(self):
        self._merge_details(
            {
                "field": self.field,
                "value": self.value,
                "constraints": self.constraints,
            }
        )
        self.error_code = self.error_code or "VALIDATION_ERROR"
        super().__post_init__()


@dataclass
class AuthError(PhonePePaymentsError):
    """Raised when the OAuth2 client-credentials exchange fails.

    Recoverable: the caller may retry later.
    """

    status_code: Optional[int] = None
    cause: Optional[str] = None

    def __post_init__(self):
        self._merge_details({"status_code": self.status_code, "cause": self.cause})
        self.error_code = self.error_code or "AUTH_ERROR"
        super().__post_init__()


@dataclass
class GatewayError(PhonePePaymentsError):
    """Raised for transport failures, non-2xx or malformed gateway responses."""

    endpoint: Optional[str] = None
    status_code: Optional[int] = None
    gateway_error_code: Optional[str] = None
    response: Optional[Any] = None

    def __post_init__(self):
        self._merge_details(
            {
                "endpoint": self.endpoint,
                "status_code": self.status_code,
                "gateway_error_code": self.gateway_error_code,
            }
        )
        self.error_code = self.error_code or "GATEWAY_ERROR"
        super().__post_init__()


@dataclass
class SignatureError(PhonePePaymentsError):
    """Raised when an inbound webhook fails X-VERIFY authentication."""

    event_type: Optional[str] = None
    source_ip: Optional[str] = None

    def __post_init__(self):
        self._merge_details({"event_type": self.event_type, "source_ip": self.source_ip})
        self.error_code = self.error_code or "SIGNATURE_ERROR"
        super().__post_init__()


@dataclass
class StorageError(PhonePePaymentsError):
    """Base exception for credential cache and audit log failures."""

    storage_type: Optional[str] = None
    operation: Optional[str] = None
    entity_id: Optional[str] = None

    def __post_init__(self):
        self._merge_details(
            {
                "storage_type": self.storage_type,
                "operation": self.operation,
                "entity_id": self.entity_id,
            }
        )
        self.error_code = self.error_code or "STORAGE_ERROR"
        super().__post_init__()


@dataclass
class DuplicateSignatureError(StorageError):
    """Raised by an audit log when a record with the same signature already exists."""

    signature: Optional[str] = None

    def __post_init__(self):
        self.entity_id = self.entity_id or self.signature
        self.error_code = self.error_code or "DUPLICATE_SIGNATURE"
        super().__post_init__()
