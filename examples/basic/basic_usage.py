"""
Basic usage example for PhonePe Payments.

Runs offline: a payment record is written the way ``initiate_payment`` would
leave it, then a signed PAYMENT_SUCCESS webhook settles it. Set PHONEPE_* env
vars and pass --live to talk to the UAT gateway instead.
"""

import json
import sys

from phonepe_payments import (
    GatewayConfig,
    MemoryAuditLog,
    NotificationDispatcher,
    NotificationKind,
    PhonePeClient,
    TransactionRecord,
    TransactionStatus,
    WebhookProcessor,
)
from phonepe_payments.utils import compute_webhook_signature, generate_merchant_order_id


def offline_demo():
    config = GatewayConfig(
        client_id="demo-client",
        client_secret="demo-secret",
        redirect_url="https://shop.example/payment/return",
        webhook_salt_key="demo-salt",
    )
    audit_log = MemoryAuditLog()
    dispatcher = NotificationDispatcher()

    @dispatcher.on(NotificationKind.PAYMENT_SUCCESS)
    def ship_order(notification):
        print(f"Shipping order {notification.record.merchant_order_id}")

    processor = WebhookProcessor.from_config(config, audit_log, dispatcher=dispatcher)

    merchant_order_id = generate_merchant_order_id()
    audit_log.create(
        TransactionRecord(
            merchant_order_id=merchant_order_id,
            amount=10000,
            status=TransactionStatus.PENDING,
            event_type="PAYMENT_INITIATED_SUCCESS",
        )
    )

    body = json.dumps(
        {
            "eventType": "PAYMENT_SUCCESS",
            "signature": f"demo-{merchant_order_id}",
            "data": {"merchantOrderId": merchant_order_id, "transactionId": "TX-DEMO", "amount": 10000},
        }
    ).encode("utf-8")
    x_verify = compute_webhook_signature(body, config.webhook_salt_key, config.webhook_salt_index)

    print("First delivery:", processor.handle(body, x_verify))
    print("Redelivery:", processor.handle(body, x_verify))
    print("Tampered:", processor.handle(body + b" ", x_verify))

    print("\nAudit log:")
    for record in audit_log.list_records():
        print(f"  #{record.id} {record.event_type} {record.status.value} {record.merchant_order_id or '-'}")


def live_demo():
    client = PhonePeClient(GatewayConfig.from_env())
    result = client.initiate_payment(100, "DEMO-ORDER")
    print(json.dumps(result.to_dict(), indent=2))
    if result.success:
        print(json.dumps(client.check_status(result.merchant_order_id).to_dict(), indent=2))


def main():
    if "--live" in sys.argv[1:]:
        live_demo()
    else:
        offline_demo()


if __name__ == "__main__":
    main()
