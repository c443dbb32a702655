"""
Utility functions for the PhonePe payments package.

Identifier generation, webhook signature helpers, payload merging and other
small pieces shared by the client and the webhook processor.
"""

import base64
import hashlib
import hmac
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .logging_config import SecretRedactor

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/pg/v1/webhook/"


def redact_message(msg: str) -> str:
    """Mask bearer tokens, client secrets and salts in a free-form message."""
    return SecretRedactor.redact(msg)


def utc_now() -> datetime:
    """Get the current UTC datetime."""
    return datetime.now(timezone.utc)


def generate_merchant_order_id() -> str:
    """Generate a unique merchant order id, e.g. ``MO_5f0c...``."""
    return f"MO_{uuid.uuid4().hex[:24]}"


def generate_merchant_refund_id() -> str:
    """Generate a unique merchant refund id, e.g. ``REF_9a1b..._1700000000``."""
    return f"REF_{uuid.uuid4().hex[:13]}_{int(time.time())}"


def _to_bytes(value: Union[bytes, str]) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def compute_webhook_signature(raw_body: Union[bytes, str], salt_key: str, salt_index: Union[int, str] = 1) -> str:
    """
    Compute the X-VERIFY value the gateway sends with a webhook.

    ``sha256_hex(base64(raw_body) + "/pg/v1/webhook/" + salt_key + "#" + salt_index)``
    """
    encoded = base64.b64encode(_to_bytes(raw_body)).decode("ascii")
    material = f"{encoded}{WEBHOOK_PATH}{salt_key}#{salt_index}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def verify_webhook_signature(
    raw_body: Union[bytes, str], x_verify: str, salt_key: str, salt_index: Union[int, str] = 1
) -> bool:
    """Constant-time check of an X-VERIFY header against the raw body."""
    if not x_verify or not salt_key:
        return False
    expected = compute_webhook_signature(raw_body, salt_key, salt_index)
    return hmac.compare_digest(expected.encode("ascii"), x_verify.encode("utf-8"))


def body_fingerprint(raw_body: Union[bytes, str]) -> str:
    """Deduplication key for webhooks whose payload carries no signature."""
    return hashlib.sha256(_to_bytes(raw_body)).hexdigest()


def deep_merge(base: dict, overrides: Optional[dict]) -> dict:
    """
    Recursively merge ``overrides`` into a copy of ``base``.

    Nested dicts are merged key by key; any other value in ``overrides`` wins.
    """
    merged = dict(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def deep_get(data: dict, key_path: str, default: Any = None) -> Any:
    """Get a value from a nested dict using a dot-separated path."""
    current: Any = data
    for key in key_path.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def to_minor_units(value: Any) -> Optional[int]:
    """
    Coerce a gateway amount to an integer number of minor units.

    Returns None for values that are not a whole number (never rounds).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None
