"""
PhonePe checkout gateway client.

Payment initiation, order status and refund calls. Every call is traced in the
audit log and returns a tagged result (``PaymentInitiation``, ``OrderStatus``,
``RefundInitiation`` or ``Failure``); transport and parsing failures never
escape as exceptions. Audit log failures do, since they break the audit trail.
"""

import logging
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import requests

from .config import GatewayConfig
from .exceptions import AuthError, GatewayError, PhonePePaymentsError, ValidationError
from .models import (
    AuditEvent,
    Failure,
    OrderStatus,
    PaymentInitiation,
    RefundInitiation,
    TransactionRecord,
    TransactionStatus,
)
from .storage.base import AuditLog
from .storage.credentials import CredentialStore
from .storage.memory import MemoryAuditLog
from .token_manager import TokenManager
from .utils import deep_merge, generate_merchant_order_id, generate_merchant_refund_id, redact_message

logger = logging.getLogger(__name__)

PAY_PATH = "/checkout/v2/pay"
ORDER_STATUS_PATH = "/checkout/v2/order/{merchant_order_id}/status"
REFUND_PATH = "/payments/v2/refund"


class PhonePeClient:
    """
    Authenticated client for the PhonePe checkout API.

    Build one per environment at process start and share it; the token
    manager inside it is safe to use from several threads.

    Example:
        client = PhonePeClient(GatewayConfig.from_env(), audit_log=SQLiteAuditLog("phonepe.db"))
        result = client.initiate_payment(10000, "ORDER-1")
        if result.success:
            redirect(result.redirect_url)
    """

    def __init__(
        self,
        config: GatewayConfig,
        audit_log: Optional[AuditLog] = None,
        token_manager: Optional[TokenManager] = None,
        credential_store: Optional[CredentialStore] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.audit_log = audit_log or MemoryAuditLog()
        self.token_manager = token_manager or TokenManager(config, store=credential_store, session=self.session)
        logger.info("PhonePeClient initialized for %s environment", config.environment)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _headers(self, access_token: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"O-Bearer {access_token}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, path: str, access_token: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send an authenticated request and return the decoded JSON object.

        Raises:
            GatewayError: On transport failure, non-2xx status or a body that is
                not a JSON object
        """
        url = self._url(path)
        headers = self._headers(access_token, kwargs.pop("headers", None))
        try:
            send = self.session.get if method == "GET" else self.session.post
            resp = send(url, headers=headers, timeout=self.config.timeout, **kwargs)
        except requests.exceptions.Timeout:
            logger.error("PhonePe API request timed out: %s %s", method, path)
            raise GatewayError("PhonePe API request timed out", endpoint=path)
        except requests.exceptions.RequestException as e:
            logger.error("PhonePe API request failed: %s %s: %s", method, path, e)
            raise GatewayError(f"PhonePe API request failed: {redact_message(str(e))}", endpoint=path)

        status = resp.status_code
        try:
            data = resp.json()
        except ValueError:
            data = None

        if not 200 <= status < 300:
            if status == 401:
                # The gateway no longer accepts our token; force a fresh exchange next time.
                self.token_manager.invalidate()
            body = data if isinstance(data, dict) else {}
            message = body.get("message") or f"PhonePe API returned HTTP {status}"
            raise GatewayError(
                message,
                endpoint=path,
                status_code=status,
                gateway_error_code=body.get("code") or body.get("errorCode"),
                response=data if data is not None else str(getattr(resp, "text", ""))[:500],
            )

        if not isinstance(data, dict):
            raise GatewayError("PhonePe API response is not a JSON object", endpoint=path, status_code=status)
        return data

    def initiate_payment(
        self, amount: int, order_ref: str, extra: Optional[Dict[str, Any]] = None
    ) -> Union[PaymentInitiation, Failure]:
        """
        Create a checkout session and return where to send the end user.

        Args:
            amount: Amount in minor units (paise), positive integer
            order_ref: Host order reference, shown in the checkout message
            extra: Additional request fields; ``merchantOrderId`` and
                ``metaInfo`` are honoured, nested dicts are merged into the
                payment flow block

        Returns:
            PaymentInitiation on success, Failure otherwise
        """
        extra = dict(extra or {})
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            error = ValidationError("Amount must be a positive integer in minor units", field="amount", value=amount)
            return Failure.from_exception(error)
        if not order_ref or not isinstance(order_ref, str):
            error = ValidationError("order_ref must be a non-empty string", field="order_ref", value=order_ref)
            return Failure.from_exception(error)

        merchant_order_id = extra.pop("merchantOrderId", None) or generate_merchant_order_id()
        if not isinstance(merchant_order_id, str) or not merchant_order_id.strip():
            error = ValidationError(
                "merchantOrderId must be a non-empty string", field="merchantOrderId", value=merchant_order_id
            )
            return Failure.from_exception(error)
        meta_info = extra.pop("metaInfo", None) or {}
        payload = self._build_payment_payload(merchant_order_id, amount, order_ref, extra, meta_info)

        record = self.audit_log.create(
            TransactionRecord(
                merchant_order_id=merchant_order_id,
                amount=amount,
                currency=self.config.currency,
                status=TransactionStatus.PENDING,
                event_type=AuditEvent.PAYMENT_INITIATED,
                raw_request={"order_id": order_ref, "payload": payload},
            )
        )

        try:
            token = self.token_manager.get_access_token()
            data = self._send("POST", PAY_PATH, token.access_token, json=payload)
            redirect_url = data.get("redirectUrl")
            if not redirect_url:
                raise GatewayError(
                    "PhonePe checkout response has no redirectUrl",
                    endpoint=PAY_PATH,
                    gateway_error_code=data.get("code") or data.get("errorCode"),
                    response=data,
                )
        except (AuthError, GatewayError) as e:
            self.audit_log.update(
                record.id,
                status=TransactionStatus.FAILED,
                event_type=AuditEvent.PAYMENT_INITIATED_FAILED,
                error_message=e.message,
                raw_response=getattr(e, "response", None),
            )
            logger.error("PhonePe payment initiation failed for %s: %s", merchant_order_id, e.message)
            return Failure.from_exception(e, merchant_order_id=merchant_order_id)

        self.audit_log.update(
            record.id,
            event_type=AuditEvent.PAYMENT_INITIATED_SUCCESS,
            gateway_order_id=data.get("orderId"),
            raw_response=data,
        )
        logger.info("PhonePe payment initiated: %s (gateway order %s)", merchant_order_id, data.get("orderId"))
        return PaymentInitiation(
            merchant_order_id=merchant_order_id,
            redirect_url=redirect_url,
            order_id=data.get("orderId"),
            mode=self.config.payment_mode,
        )

    def _build_payment_payload(
        self, merchant_order_id: str, amount: int, order_ref: str, extra: Dict[str, Any], meta_info: Dict[str, Any]
    ) -> Dict[str, Any]:
        separator = "&" if "?" in self.config.redirect_url else "?"
        flow = {
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": f"Payment for Order #{order_ref}",
                "merchantUrls": {
                    "redirectUrl": f"{self.config.redirect_url}{separator}merchantOrderId={quote(merchant_order_id)}",
                },
            }
        }
        payload = deep_merge(flow, extra)
        payload.update({"merchantOrderId": merchant_order_id, "amount": amount, "metaInfo": meta_info})
        return payload

    def check_status(self, merchant_order_id: str) -> Union[OrderStatus, Failure]:
        """Query the gateway for an order's current state (read-only)."""
        if not merchant_order_id or not isinstance(merchant_order_id, str):
            error = ValidationError("merchant_order_id is required", field="merchant_order_id", value=merchant_order_id)
            return Failure.from_exception(error)

        try:
            token = self.token_manager.get_access_token()
        except AuthError as e:
            return Failure.from_exception(e, merchant_order_id=merchant_order_id)

        path = ORDER_STATUS_PATH.format(merchant_order_id=quote(merchant_order_id, safe=""))
        try:
            data = self._send("GET", path, token.access_token)
        except GatewayError as e:
            self.audit_log.create(
                TransactionRecord(
                    merchant_order_id=merchant_order_id,
                    currency=self.config.currency,
                    status=TransactionStatus.FAILED,
                    event_type=AuditEvent.STATUS_CHECK,
                    raw_response=e.response,
                    error_message=e.message,
                )
            )
            return Failure.from_exception(e, merchant_order_id=merchant_order_id)

        self.audit_log.create(
            TransactionRecord(
                merchant_order_id=merchant_order_id,
                currency=self.config.currency,
                status=TransactionStatus.PENDING,
                event_type=AuditEvent.STATUS_CHECK,
                raw_response=data,
            )
        )
        logger.debug("PhonePe status for %s: %s", merchant_order_id, data.get("state"))
        return OrderStatus(merchant_order_id=merchant_order_id, data=data)

    def refund(
        self, original_merchant_order_id: str, amount: int, merchant_refund_id: Optional[str] = None
    ) -> Union[RefundInitiation, Failure]:
        """
        Ask the gateway to refund (part of) a completed order.

        A response state of ``PENDING`` means the refund was accepted; the
        final outcome arrives later as a REFUND_SUCCESS or REFUND_FAILED webhook.
        """
        if not original_merchant_order_id or not isinstance(original_merchant_order_id, str):
            error = ValidationError(
                "original_merchant_order_id is required",
                field="original_merchant_order_id",
                value=original_merchant_order_id,
            )
            return Failure.from_exception(error)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            error = ValidationError("Refund amount must be a positive integer in minor units", field="amount", value=amount)
            return Failure.from_exception(error, merchant_order_id=original_merchant_order_id)

        merchant_refund_id = merchant_refund_id or generate_merchant_refund_id()

        try:
            token = self.token_manager.get_access_token()
        except AuthError as e:
            return Failure.from_exception(
                e, merchant_order_id=original_merchant_order_id, merchant_refund_id=merchant_refund_id
            )

        payload = {
            "merchantRefundId": merchant_refund_id,
            "originalMerchantOrderId": original_merchant_order_id,
            "amount": amount,
        }
        record = self.audit_log.create(
            TransactionRecord(
                merchant_order_id=original_merchant_order_id,
                merchant_refund_id=merchant_refund_id,
                amount=amount,
                currency=self.config.currency,
                status=TransactionStatus.PENDING,
                event_type=AuditEvent.REFUND_INITIATED,
                raw_request=payload,
            )
        )

        headers = {"X-MERCHANT-ID": self.config.merchant_id} if self.config.merchant_id else None
        try:
            data = self._send("POST", REFUND_PATH, token.access_token, json=payload, headers=headers)
            if data.get("state") != "PENDING":
                raise GatewayError(
                    data.get("message") or f"PhonePe refund not accepted (state={data.get('state')})",
                    endpoint=REFUND_PATH,
                    gateway_error_code=data.get("errorCode") or data.get("code"),
                    response=data,
                )
        except GatewayError as e:
            self.audit_log.update(
                record.id,
                status=TransactionStatus.FAILED,
                raw_response=e.response,
                error_message=e.message,
            )
            logger.error("PhonePe refund %s failed: %s", merchant_refund_id, e.message)
            return Failure.from_exception(
                e, merchant_order_id=original_merchant_order_id, merchant_refund_id=merchant_refund_id
            )

        self.audit_log.update(record.id, refund_id=data.get("refundId"), raw_response=data)
        logger.info("PhonePe refund %s accepted for order %s", merchant_refund_id, original_merchant_order_id)
        return RefundInitiation(
            merchant_refund_id=data.get("merchantRefundId") or merchant_refund_id,
            original_merchant_order_id=original_merchant_order_id,
            state=data["state"],
            refund_id=data.get("refundId"),
        )

    def health_check(self) -> Dict[str, Any]:
        """Report token availability and audit log health without raising."""
        try:
            self.token_manager.get_access_token()
            token_ok, token_error = True, None
        except PhonePePaymentsError as e:
            token_ok, token_error = False, e.message
        storage = self.audit_log.health_check()
        return {
            "environment": self.config.environment,
            "token": {"available": token_ok, "error": token_error},
            "audit_log": storage.to_dict(),
        }
