import logging

import pytest

from phonepe_payments.events import (
    DEFAULT_HANDLERS,
    Notification,
    NotificationDispatcher,
    NotificationKind,
    on_payment_success,
)
from phonepe_payments.models import TransactionRecord, TransactionStatus, WebhookEventType


@pytest.fixture
def record():
    return TransactionRecord(id=1, merchant_order_id="MO_1", status=TransactionStatus.COMPLETED)


def test_every_kind_has_a_default_handler():
    dispatcher = NotificationDispatcher()
    for kind in NotificationKind:
        assert dispatcher.handlers(kind) == [DEFAULT_HANDLERS[kind]]


def test_defaults_can_be_disabled():
    dispatcher = NotificationDispatcher(use_default_handlers=False)
    assert all(dispatcher.handlers(kind) == [] for kind in NotificationKind)


def test_default_handler_only_logs(record, caplog):
    with caplog.at_level(logging.INFO, logger="phonepe_payments.events"):
        on_payment_success(Notification(NotificationKind.PAYMENT_SUCCESS, record))
    assert "MO_1" in caplog.text


def test_subscribe_and_emit(record):
    dispatcher = NotificationDispatcher(use_default_handlers=False)
    received = []
    dispatcher.subscribe(NotificationKind.REFUND_FAILED, received.append)
    assert dispatcher.emit(NotificationKind.REFUND_FAILED, record) == 0
    assert received == [Notification(NotificationKind.REFUND_FAILED, record)]
    dispatcher.emit(NotificationKind.PAYMENT_SUCCESS, record)
    assert len(received) == 1


def test_decorator_subscription(record):
    dispatcher = NotificationDispatcher(use_default_handlers=False)
    received = []

    @dispatcher.on(NotificationKind.PAYMENT_FAILED)
    def handle(notification):
        received.append(notification.record.id)

    dispatcher.emit(NotificationKind.PAYMENT_FAILED, record)
    assert received == [1]


def test_unsubscribe(record):
    dispatcher = NotificationDispatcher(use_default_handlers=False)
    received = []
    dispatcher.subscribe(NotificationKind.PAYMENT_SUCCESS, received.append)
    assert dispatcher.unsubscribe(NotificationKind.PAYMENT_SUCCESS, received.append)
    assert not dispatcher.unsubscribe(NotificationKind.PAYMENT_SUCCESS, received.append)
    dispatcher.emit(NotificationKind.PAYMENT_SUCCESS, record)
    assert received == []


def test_failing_handler_is_isolated(record, caplog):
    dispatcher = NotificationDispatcher(use_default_handlers=False)
    received = []

    def broken(notification):
        raise ValueError("boom")

    dispatcher.subscribe(NotificationKind.PAYMENT_SUCCESS, broken)
    dispatcher.subscribe(NotificationKind.PAYMENT_SUCCESS, received.append)
    with caplog.at_level(logging.ERROR, logger="phonepe_payments.events"):
        failures = dispatcher.emit(NotificationKind.PAYMENT_SUCCESS, record)
    assert failures == 1
    assert len(received) == 1
    assert "broken" in caplog.text


def test_subscribe_rejects_non_callable():
    with pytest.raises(TypeError):
        NotificationDispatcher().subscribe(NotificationKind.PAYMENT_SUCCESS, "not callable")


def test_kind_for_event():
    assert NotificationKind.for_event(WebhookEventType.REFUND_SUCCESS) is NotificationKind.REFUND_SUCCESS
    assert NotificationKind.for_event(WebhookEventType.UNKNOWN) is None
