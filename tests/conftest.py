"""
conftest.py: Shared pytest fixtures for the phonepe_payments test suite.

- Place fixtures here to make them available across all test subdirectories.
- HTTP is never performed: tests patch ``client.session.post``/``get`` with
  ``unittest.mock`` and hand back ``mock_response`` objects.

Usage:
    def test_something(client, mock_response):
        with mock.patch.object(client.session, "post", return_value=mock_response(200, {...})):
            ...
"""

import json
import time
from unittest import mock

import pytest

from phonepe_payments import GatewayConfig, MemoryAuditLog, MemoryCredentialStore, PhonePeClient, Token
from phonepe_payments.events import NotificationDispatcher
from phonepe_payments.utils import compute_webhook_signature
from phonepe_payments.webhooks import WebhookProcessor

SALT_KEY = "test-salt-key"
SALT_INDEX = 1


@pytest.fixture
def gateway_config():
    """A UAT configuration with webhook salt and merchant id set."""
    return GatewayConfig(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_url="https://merchant.example/payment/return",
        merchant_id="MERCHANTUAT",
        webhook_salt_key=SALT_KEY,
        webhook_salt_index=SALT_INDEX,
    )


@pytest.fixture
def valid_token():
    return Token(access_token="test-access-token", expires_at=time.time() + 3600)


@pytest.fixture
def credential_store(valid_token):
    """Token cache pre-seeded with a token that needs no refresh."""
    return MemoryCredentialStore(valid_token)


@pytest.fixture
def audit_log():
    return MemoryAuditLog()


@pytest.fixture
def client(gateway_config, audit_log, credential_store):
    """A PhonePeClient with in-memory audit log and a cached token."""
    return PhonePeClient(gateway_config, audit_log=audit_log, credential_store=credential_store)


@pytest.fixture
def dispatcher():
    return NotificationDispatcher()


@pytest.fixture
def processor(audit_log, dispatcher):
    return WebhookProcessor(audit_log, dispatcher=dispatcher, salt_key=SALT_KEY, salt_index=SALT_INDEX)


@pytest.fixture
def mock_response():
    """Factory for fake ``requests`` responses."""

    def _make(status_code=200, json_data=None, text=None):
        resp = mock.Mock()
        resp.status_code = status_code
        if json_data is None:
            resp.json.side_effect = ValueError("No JSON object could be decoded")
            resp.text = text or ""
        else:
            resp.json.return_value = json_data
            resp.text = text if text is not None else json.dumps(json_data)
        return resp

    return _make


@pytest.fixture
def signed_webhook():
    """Factory returning ``(raw_body, x_verify)`` for a webhook payload."""

    def _make(payload, salt_key=SALT_KEY, salt_index=SALT_INDEX):
        raw_body = json.dumps(payload).encode("utf-8")
        return raw_body, compute_webhook_signature(raw_body, salt_key, salt_index)

    return _make
