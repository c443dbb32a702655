"""
Data models for the PhonePe payments package.

Defines the cached access token, the audit log record, the webhook event
classification and the tagged result objects returned by the gateway client.
"""

import logging
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .exceptions import PhonePePaymentsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Token:
    """An OAuth2 bearer token and its absolute expiry (UNIX seconds)."""

    access_token: str
    expires_at: float

    def is_valid(self, margin: float = 0, now: Optional[float] = None) -> bool:
        """True when the token outlives ``now + margin``."""
        now = time.time() if now is None else now
        return bool(self.access_token) and self.expires_at > now + margin

    def to_dict(self) -> dict[str, Any]:
        return {"access_token": self.access_token, "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Token":
        access_token = data["access_token"]
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")
        return cls(access_token=access_token, expires_at=float(data["expires_at"]))

    def __repr__(self) -> str:
        return f"Token(access_token='***', expires_at={self.expires_at})"


class TransactionStatus(str, Enum):
    """Audit record states."""

    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    VALID = "VALID"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    REFUND_FAILED = "REFUND_FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.REFUNDED,
        TransactionStatus.REFUND_FAILED,
        TransactionStatus.INVALID_SIGNATURE,
    }
)


class AuditEvent(str, Enum):
    """Event types written by the gateway client."""

    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_INITIATED_SUCCESS = "PAYMENT_INITIATED_SUCCESS"
    PAYMENT_INITIATED_FAILED = "PAYMENT_INITIATED_FAILED"
    STATUS_CHECK = "STATUS_CHECK"
    REFUND_INITIATED = "REFUND_INITIATED"


class WebhookEventType(str, Enum):
    """Inbound notification kinds, with an explicit fallback for anything else."""

    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_SUCCESS = "REFUND_SUCCESS"
    REFUND_FAILED = "REFUND_FAILED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "WebhookEventType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


def _serialize_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class TransactionRecord:
    """
    One audit log entry.

    Created once per logical attempt (payment initiation, status check, refund)
    or per distinct inbound notification, then updated in place. Records are
    never deleted.
    """

    id: Optional[int] = None
    merchant_order_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    merchant_refund_id: Optional[str] = None
    refund_id: Optional[str] = None
    amount: Optional[int] = None
    currency: str = "INR"
    status: TransactionStatus = TransactionStatus.PENDING
    event_type: Optional[str] = None
    payment_instrument_type: Optional[str] = None
    raw_request: Optional[dict[str, Any]] = None
    raw_response: Optional[Any] = None
    webhook_payload: Optional[dict[str, Any]] = None
    signature: Optional[str] = None
    source_ip: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.status, TransactionStatus):
            self.status = TransactionStatus(self.status)
        if isinstance(self.event_type, Enum):
            self.event_type = self.event_type.value
        if isinstance(self.amount, bool) or (self.amount is not None and not isinstance(self.amount, int)):
            raise ValueError(f"amount must be an integer number of minor units, got {self.amount!r}")

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with datetimes as ISO 8601 strings."""
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("processed_at", "created_at", "updated_at"):
            data[key] = _serialize_dt(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransactionRecord":
        known = {k: v for k, v in data.items() if k in cls.field_names()}
        for key in ("processed_at", "created_at", "updated_at"):
            if key in known:
                known[key] = _parse_dt(known[key])
        return cls(**known)

    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class PaymentInitiation:
    """Successful checkout creation: send the end user to ``redirect_url``."""

    merchant_order_id: str
    redirect_url: str
    order_id: Optional[str] = None
    mode: str = "iframe"
    success: bool = field(default=True, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "mode": self.mode,
            "merchantOrderId": self.merchant_order_id,
            "orderId": self.order_id,
            "redirectUrl": self.redirect_url,
        }


@dataclass
class OrderStatus:
    """Raw status payload returned by the order status endpoint."""

    merchant_order_id: str
    data: dict[str, Any] = field(default_factory=dict)
    success: bool = field(default=True, init=False)

    @property
    def state(self) -> Optional[str]:
        return self.data.get("state")

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "data": self.data}


@dataclass
class RefundInitiation:
    """Refund accepted by the gateway; settlement arrives later via webhook."""

    merchant_refund_id: str
    original_merchant_order_id: str
    state: str = "PENDING"
    refund_id: Optional[str] = None
    success: bool = field(default=True, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "merchantRefundId": self.merchant_refund_id, "state": self.state}


@dataclass
class Failure:
    """Tagged failure result; gateway client calls never raise for business failures."""

    error: str
    error_code: Optional[str] = None
    status_code: Optional[int] = None
    merchant_order_id: Optional[str] = None
    merchant_refund_id: Optional[str] = None
    success: bool = field(default=False, init=False)

    @classmethod
    def from_exception(cls, exc: Exception, **kwargs: Any) -> "Failure":
        if isinstance(exc, PhonePePaymentsError):
            details = exc.details or {}
            return cls(
                error=exc.message,
                error_code=details.get("gateway_error_code") or exc.error_code,
                status_code=details.get("status_code"),
                **kwargs,
            )
        return cls(error=str(exc) or exc.__class__.__name__, error_code="UNEXPECTED_ERROR", **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            data["errorCode"] = self.error_code
        return data


@dataclass
class WebhookResponse:
    """HTTP outcome of a webhook delivery for the host framework to send back."""

    status_code: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300
