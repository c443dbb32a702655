"""
Inbound PhonePe webhook processing.

Each delivery walks a small state machine on its own audit record::

    RECEIVED -> INVALID_SIGNATURE
    RECEIVED -> VALID -> COMPLETED | FAILED | REFUNDED | REFUND_FAILED
    RECEIVED -> VALID                  (unknown event types)

Deliveries are deduplicated on the payload ``signature`` (or a hash of the raw
body when the payload has none). The audit log enforces uniqueness of that
key, so a retried or concurrently duplicated delivery is acknowledged without
running any side effect twice.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple, Union

from .config import GatewayConfig
from .events import NotificationDispatcher, NotificationKind
from .exceptions import DuplicateSignatureError, SignatureError
from .models import AuditEvent, TransactionRecord, TransactionStatus, WebhookEventType, WebhookResponse
from .storage.base import AuditLog
from .utils import body_fingerprint, deep_get, to_minor_units, utc_now, verify_webhook_signature

logger = logging.getLogger(__name__)

BAD_REQUEST = WebhookResponse(400, "Bad Request")
ALREADY_PROCESSED = WebhookResponse(200, "OK (already processed)")
INVALID_SIGNATURE = WebhookResponse(401, "Invalid X-VERIFY")
ACCEPTED = WebhookResponse(200, "OK")

# Terminal status reached by each known event on the webhook record.
EVENT_STATUS = {
    WebhookEventType.PAYMENT_SUCCESS: TransactionStatus.COMPLETED,
    WebhookEventType.PAYMENT_FAILED: TransactionStatus.FAILED,
    WebhookEventType.REFUND_SUCCESS: TransactionStatus.REFUNDED,
    WebhookEventType.REFUND_FAILED: TransactionStatus.REFUND_FAILED,
}

PAYMENT_ORIGIN_EVENTS = (AuditEvent.PAYMENT_INITIATED.value, AuditEvent.PAYMENT_INITIATED_SUCCESS.value)


class WebhookProcessor:
    """
    Authenticates and applies PhonePe webhook deliveries.

    ``handle`` never raises for bad input: it answers 400 for missing data,
    401 for a signature mismatch and 200 otherwise. Audit log failures are
    raised, so the host answers 5xx and the gateway redelivers.
    """

    def __init__(
        self,
        audit_log: AuditLog,
        dispatcher: Optional[NotificationDispatcher] = None,
        salt_key: Optional[str] = None,
        salt_index: int = 1,
    ):
        self.audit_log = audit_log
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.salt_key = salt_key
        self.salt_index = salt_index

    @classmethod
    def from_config(
        cls, config: GatewayConfig, audit_log: AuditLog, dispatcher: Optional[NotificationDispatcher] = None
    ) -> "WebhookProcessor":
        return cls(
            audit_log,
            dispatcher=dispatcher,
            salt_key=config.webhook_salt_key,
            salt_index=config.webhook_salt_index,
        )

    def verify_signature(
        self,
        raw_body: bytes,
        signature_header: str,
        event_type: Optional[str] = None,
        source_ip: Optional[str] = None,
    ) -> None:
        """
        Check the X-VERIFY header against the raw body.

        Raises:
            SignatureError: If the header does not match
        """
        if not verify_webhook_signature(raw_body, signature_header, self.salt_key, self.salt_index):
            raise SignatureError("X-VERIFY signature mismatch", event_type=event_type, source_ip=source_ip)

    def handle(
        self, raw_body: Union[bytes, str], signature_header: Optional[str], source_ip: Optional[str] = None
    ) -> WebhookResponse:
        """
        Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature_header: Value of the X-VERIFY header
            source_ip: Caller address, stored on the audit record

        Returns:
            WebhookResponse for the host framework to send back
        """
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        if not raw_body or not signature_header or not self.salt_key:
            logger.warning(
                "PhonePe Webhook: Missing data (ip=%s, has_payload=%s, has_xverify=%s, has_salt=%s)",
                source_ip,
                bool(raw_body),
                bool(signature_header),
                bool(self.salt_key),
            )
            return BAD_REQUEST

        payload, stored_payload = self._parse(raw_body)
        event_type = WebhookEventType.parse(payload.get("eventType"))
        raw_event_type = payload.get("eventType") or WebhookEventType.UNKNOWN.value
        signature = payload.get("signature") or body_fingerprint(raw_body)
        signature = str(signature)

        if self.audit_log.signature_exists(signature):
            logger.info("PhonePe Webhook: duplicate delivery %s ignored", signature[:16])
            return ALREADY_PROCESSED

        try:
            record = self.audit_log.create(
                TransactionRecord(
                    status=TransactionStatus.RECEIVED,
                    event_type=str(raw_event_type),
                    webhook_payload=stored_payload,
                    signature=signature,
                    source_ip=source_ip,
                )
            )
        except DuplicateSignatureError:
            # A concurrent delivery of the same notification won the insert.
            logger.info("PhonePe Webhook: concurrent duplicate %s ignored", signature[:16])
            return ALREADY_PROCESSED

        try:
            self.verify_signature(raw_body, signature_header, event_type=str(raw_event_type), source_ip=source_ip)
        except SignatureError as e:
            self.audit_log.update(record.id, status=TransactionStatus.INVALID_SIGNATURE, error_message=e.message)
            logger.warning("PhonePe Webhook: Invalid X-VERIFY (ip=%s, event=%s)", source_ip, raw_event_type)
            return INVALID_SIGNATURE

        record = self.audit_log.update(record.id, status=TransactionStatus.VALID)

        if event_type is WebhookEventType.UNKNOWN:
            logger.info("PhonePe Webhook: Unhandled event type %s (record %s)", raw_event_type, record.id)
            return ACCEPTED

        data = payload.get("data")
        data = data if isinstance(data, dict) else {}
        record = self._apply_event(record, event_type, data)
        self._settle_origin(record, event_type)

        kind = NotificationKind.for_event(event_type)
        if kind is not None:
            self.dispatcher.emit(kind, record)
        return ACCEPTED

    @staticmethod
    def _parse(raw_body: bytes) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Return the payload used for dispatch and the payload stored for audit."""
        text = raw_body.decode("utf-8", errors="replace")
        try:
            payload = json.loads(text)
        except ValueError:
            logger.warning("PhonePe Webhook: body is not valid JSON")
            return {}, {"_raw": text}
        if not isinstance(payload, dict):
            return {}, {"_raw": payload}
        return payload, payload

    def _apply_event(
        self, record: TransactionRecord, event_type: WebhookEventType, data: Dict[str, Any]
    ) -> TransactionRecord:
        changes: Dict[str, Any] = {"status": EVENT_STATUS[event_type], "processed_at": utc_now()}

        if event_type is WebhookEventType.PAYMENT_SUCCESS:
            changes.update(
                merchant_order_id=data.get("merchantOrderId"),
                gateway_order_id=data.get("orderId"),
                transaction_id=data.get("transactionId"),
                amount=to_minor_units(data.get("amount")),
                payment_instrument_type=deep_get(data, "paymentInstrument.type"),
            )
            logger.info(
                "PhonePe Payment Success: order=%s transaction=%s amount=%s",
                data.get("merchantOrderId"),
                data.get("transactionId"),
                data.get("amount"),
            )
        elif event_type is WebhookEventType.PAYMENT_FAILED:
            changes.update(
                merchant_order_id=data.get("merchantOrderId"),
                gateway_order_id=data.get("orderId"),
                error_message=data.get("errorMessage") or "Payment failed",
            )
            logger.warning("PhonePe Payment Failed: order=%s", data.get("merchantOrderId"))
        elif event_type is WebhookEventType.REFUND_SUCCESS:
            changes.update(
                merchant_order_id=data.get("originalMerchantOrderId"),
                merchant_refund_id=data.get("merchantRefundId"),
                refund_id=data.get("refundId"),
                amount=to_minor_units(data.get("amount")),
            )
            logger.info("PhonePe Refund Success: refund=%s", data.get("merchantRefundId"))
        elif event_type is WebhookEventType.REFUND_FAILED:
            changes.update(
                merchant_order_id=data.get("originalMerchantOrderId"),
                merchant_refund_id=data.get("merchantRefundId"),
                refund_id=data.get("refundId"),
                error_message=data.get("errorMessage") or "Refund failed",
            )
            logger.warning("PhonePe Refund Failed: refund=%s", data.get("merchantRefundId"))

        # Keep whatever the record already has when the payload omits a field.
        changes = {key: value for key, value in changes.items() if value is not None}
        return self.audit_log.update(record.id, **changes)

    def _settle_origin(self, record: TransactionRecord, event_type: WebhookEventType) -> Optional[TransactionRecord]:
        """Move the attempt that started this payment or refund to the same terminal status."""
        origin = self._find_origin(record, event_type)
        if origin is None:
            return None

        changes: Dict[str, Any] = {"status": record.status, "processed_at": record.processed_at}
        if event_type is WebhookEventType.PAYMENT_SUCCESS:
            changes.update(
                transaction_id=record.transaction_id,
                gateway_order_id=origin.gateway_order_id or record.gateway_order_id,
                payment_instrument_type=record.payment_instrument_type,
            )
        elif event_type is WebhookEventType.REFUND_SUCCESS:
            changes["refund_id"] = origin.refund_id or record.refund_id
        else:
            changes["error_message"] = record.error_message

        changes = {key: value for key, value in changes.items() if value is not None}
        settled = self.audit_log.update(origin.id, **changes)
        logger.info("PhonePe record %s settled as %s", origin.id, settled.status.value)
        return settled

    def _find_origin(self, record: TransactionRecord, event_type: WebhookEventType) -> Optional[TransactionRecord]:
        if event_type in (WebhookEventType.PAYMENT_SUCCESS, WebhookEventType.PAYMENT_FAILED):
            if not record.merchant_order_id:
                return None
            candidates = [
                r
                for r in self.audit_log.find_by_merchant_order_id(record.merchant_order_id)
                if r.event_type in PAYMENT_ORIGIN_EVENTS and r.status is TransactionStatus.PENDING
            ]
        else:
            if not record.merchant_refund_id:
                return None
            candidates = [
                r
                for r in self.audit_log.find_by_merchant_refund_id(record.merchant_refund_id)
                if r.event_type == AuditEvent.REFUND_INITIATED.value and r.status is TransactionStatus.PENDING
            ]
        return candidates[-1] if candidates else None
