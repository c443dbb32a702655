"""
Flask application exposing a checkout endpoint and the PhonePe webhook.

Configuration comes from PHONEPE_* environment variables; audit records go to
phonepe_audit.db in the working directory.

    pip install phonepe-payments[web]
    flask --app examples/integrations/flask_webhook_app.py run
"""

from flask import Flask, jsonify, request

from phonepe_payments import GatewayConfig, NotificationDispatcher, NotificationKind, PhonePeClient, SQLiteAuditLog, WebhookProcessor
from phonepe_payments.integrations.flask import create_webhook_blueprint

config = GatewayConfig.from_env()
audit_log = SQLiteAuditLog("phonepe_audit.db")
client = PhonePeClient(config, audit_log=audit_log)
dispatcher = NotificationDispatcher()


@dispatcher.on(NotificationKind.PAYMENT_SUCCESS)
def mark_order_paid(notification):
    app.logger.info("Order %s paid", notification.record.merchant_order_id)


@dispatcher.on(NotificationKind.REFUND_FAILED)
def alert_refund_failure(notification):
    app.logger.warning("Refund %s failed: %s", notification.record.merchant_refund_id, notification.record.error_message)


app = Flask(__name__)
app.register_blueprint(create_webhook_blueprint(WebhookProcessor.from_config(config, audit_log, dispatcher=dispatcher)))


@app.route("/checkout", methods=["POST"])
def checkout():
    data = request.get_json(silent=True) or {}
    result = client.initiate_payment(data.get("amount"), data.get("order_ref", ""))
    return jsonify(result.to_dict()), 200 if result.success else 400


@app.route("/orders/<merchant_order_id>/status")
def order_status(merchant_order_id):
    result = client.check_status(merchant_order_id)
    return jsonify(result.to_dict()), 200 if result.success else 502


if __name__ == "__main__":
    app.run(debug=False)
