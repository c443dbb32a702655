"""
Host notifications raised after a verified webhook reaches a terminal state.

The host application subscribes handlers per notification kind to react to
payment and refund outcomes (mark an order paid, restock, email the buyer).
Every kind starts with a default handler that only logs.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .models import TransactionRecord, WebhookEventType

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    REFUND_SUCCESS = "refund_success"
    REFUND_FAILED = "refund_failed"

    @classmethod
    def for_event(cls, event_type: WebhookEventType) -> Optional["NotificationKind"]:
        return _EVENT_TO_KIND.get(event_type)


_EVENT_TO_KIND = {
    WebhookEventType.PAYMENT_SUCCESS: NotificationKind.PAYMENT_SUCCESS,
    WebhookEventType.PAYMENT_FAILED: NotificationKind.PAYMENT_FAILED,
    WebhookEventType.REFUND_SUCCESS: NotificationKind.REFUND_SUCCESS,
    WebhookEventType.REFUND_FAILED: NotificationKind.REFUND_FAILED,
}


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    record: TransactionRecord


Handler = Callable[[Notification], None]


def on_payment_success(notification: Notification) -> None:
    logger.info("Payment success for order %s", notification.record.merchant_order_id)


def on_payment_failed(notification: Notification) -> None:
    logger.info("Payment failed for order %s", notification.record.merchant_order_id)


def on_refund_success(notification: Notification) -> None:
    logger.info("Refund success for refund %s", notification.record.merchant_refund_id)


def on_refund_failed(notification: Notification) -> None:
    logger.info("Refund failed for refund %s", notification.record.merchant_refund_id)


DEFAULT_HANDLERS: Dict[NotificationKind, Handler] = {
    NotificationKind.PAYMENT_SUCCESS: on_payment_success,
    NotificationKind.PAYMENT_FAILED: on_payment_failed,
    NotificationKind.REFUND_SUCCESS: on_refund_success,
    NotificationKind.REFUND_FAILED: on_refund_failed,
}


class NotificationDispatcher:
    """
    Synchronous fan-out of notifications to subscribed handlers.

    A failing handler is logged and skipped; it never stops the other
    handlers and never reaches the webhook caller.
    """

    def __init__(self, use_default_handlers: bool = True):
        self._handlers: Dict[NotificationKind, List[Handler]] = {kind: [] for kind in NotificationKind}
        self._lock = threading.Lock()
        if use_default_handlers:
            for kind, handler in DEFAULT_HANDLERS.items():
                self._handlers[kind].append(handler)

    def subscribe(self, kind: NotificationKind, handler: Handler) -> Handler:
        """Register a handler; returns it so this can be used as a decorator factory target."""
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            self._handlers[NotificationKind(kind)].append(handler)
        return handler

    def on(self, kind: NotificationKind) -> Callable[[Handler], Handler]:
        """Decorator form of ``subscribe``."""

        def decorator(handler: Handler) -> Handler:
            return self.subscribe(kind, handler)

        return decorator

    def unsubscribe(self, kind: NotificationKind, handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers[NotificationKind(kind)]
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def handlers(self, kind: NotificationKind) -> List[Handler]:
        with self._lock:
            return list(self._handlers[NotificationKind(kind)])

    def emit(self, kind: NotificationKind, record: TransactionRecord) -> int:
        """Deliver a notification; returns how many handlers failed."""
        notification = Notification(kind=NotificationKind(kind), record=record)
        failures = 0
        for handler in self.handlers(kind):
            try:
                handler(notification)
            except Exception:
                failures += 1
                logger.exception(
                    "PhonePe notification handler %s failed for %s (record %s)",
                    getattr(handler, "__name__", repr(handler)),
                    notification.kind.value,
                    record.id,
                )
        return failures
