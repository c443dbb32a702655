"""
PhonePe Payments

OAuth2 token management, checkout/status/refund calls and webhook
processing for the PhonePe payment gateway.
"""

from . import config, exceptions, logging_config, models, storage, utils
from .client import PhonePeClient
from .config import GatewayConfig
from .events import Notification, NotificationDispatcher, NotificationKind
from .exceptions import (
    AuthError,
    ConfigError,
    ConfigurationError,
    DuplicateSignatureError,
    GatewayError,
    PhonePePaymentsError,
    SignatureError,
    StorageError,
    ValidationError,
)
from .models import (
    Failure,
    OrderStatus,
    PaymentInitiation,
    RefundInitiation,
    Token,
    TransactionRecord,
    TransactionStatus,
    WebhookEventType,
    WebhookResponse,
)
from .storage import EncryptedFileCredentialStore, MemoryAuditLog, MemoryCredentialStore, SQLiteAuditLog
from .token_manager import TokenManager
from .webhooks import WebhookProcessor

__version__ = "0.1.0"

__all__ = [
    "PhonePeClient",
    "GatewayConfig",
    "TokenManager",
    "WebhookProcessor",
    "NotificationDispatcher",
    "NotificationKind",
    "Notification",
    "models",
    "exceptions",
    "storage",
    "utils",
    "config",
    "logging_config",
    "Token",
    "TransactionRecord",
    "TransactionStatus",
    "WebhookEventType",
    "WebhookResponse",
    "PaymentInitiation",
    "OrderStatus",
    "RefundInitiation",
    "Failure",
    "MemoryAuditLog",
    "SQLiteAuditLog",
    "MemoryCredentialStore",
    "EncryptedFileCredentialStore",
    "PhonePePaymentsError",
    "ConfigurationError",
    "ConfigError",
    "ValidationError",
    "AuthError",
    "GatewayError",
    "SignatureError",
    "StorageError",
    "DuplicateSignatureError",
]
