import json
import os
from unittest import mock

import pytest

from cli.main import main
from phonepe_payments.storage import SQLiteAuditLog
from phonepe_payments.utils import compute_webhook_signature

ENVIRON = {
    "PHONEPE_ENV": "uat",
    "PHONEPE_UAT_CLIENT_ID": "cli-client",
    "PHONEPE_UAT_CLIENT_SECRET": "cli-secret",
    "PHONEPE_UAT_MERCHANT_ID": "M-CLI",
    "PHONEPE_REDIRECT_URL": "https://shop.example/return",
    "PHONEPE_WEBHOOK_SALT_KEY": "cli-salt",
}


@pytest.fixture(autouse=True)
def phonepe_env(monkeypatch):
    for name in [n for n in os.environ if n.startswith("PHONEPE_")]:
        monkeypatch.delenv(name, raising=False)
    for name, value in ENVIRON.items():
        monkeypatch.setenv(name, value)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli_audit.db")


def test_cli_help(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--help"])
    assert exc.value.code == 0
    assert "usage:" in capsys.readouterr().out


def test_cli_without_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage:" in capsys.readouterr().out


def test_cli_config_masks_secrets(capsys):
    assert main(["config"]) == 0
    out = capsys.readouterr().out
    assert "client_id: cli-client" in out
    assert "cli-secret" not in out
    assert "cli-salt" not in out


def test_cli_config_error(monkeypatch, capsys):
    monkeypatch.delenv("PHONEPE_UAT_CLIENT_ID")
    assert main(["config"]) == 1
    assert "Missing config" in capsys.readouterr().out


def test_cli_token(mock_response, capsys):
    token_resp = mock_response(200, {"access_token": "cli-token", "expires_in": 3600})
    with mock.patch("requests.Session.post", return_value=token_resp):
        assert main(["token"]) == 0
    out = capsys.readouterr().out
    assert "Access token obtained" in out
    assert "cli-token" not in out


def test_cli_pay_and_logs(db_path, mock_response, capsys):
    token_resp = mock_response(200, {"access_token": "cli-token", "expires_in": 3600})
    checkout_resp = mock_response(200, {"orderId": "OMO9", "redirectUrl": "https://pay.example/OMO9"})
    with mock.patch("requests.Session.post", side_effect=[token_resp, checkout_resp]):
        assert main(["--db", db_path, "pay", "10000", "ORDER-1", "--merchant-order-id", "MO_CLI"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result == {
        "success": True,
        "mode": "iframe",
        "merchantOrderId": "MO_CLI",
        "orderId": "OMO9",
        "redirectUrl": "https://pay.example/OMO9",
    }

    assert main(["--db", db_path, "logs", "--order", "MO_CLI"]) == 0
    out = capsys.readouterr().out
    assert "PAYMENT_INITIATED_SUCCESS" in out
    assert "order=MO_CLI" in out


def test_cli_pay_failure_exit_code(db_path, mock_response, capsys):
    token_resp = mock_response(200, {"access_token": "cli-token"})
    error_resp = mock_response(400, {"code": "BAD_REQUEST", "message": "Invalid amount"})
    with mock.patch("requests.Session.post", side_effect=[token_resp, error_resp]):
        assert main(["--db", db_path, "pay", "10000", "ORDER-1"]) == 1
    result = json.loads(capsys.readouterr().out)
    assert result == {"success": False, "error": "Invalid amount", "errorCode": "BAD_REQUEST"}


def test_cli_status(db_path, mock_response, capsys):
    token_resp = mock_response(200, {"access_token": "cli-token"})
    status_resp = mock_response(200, {"state": "COMPLETED", "orderId": "OMO9"})
    with mock.patch("requests.Session.post", return_value=token_resp), mock.patch(
        "requests.Session.get", return_value=status_resp
    ):
        assert main(["--db", db_path, "status", "MO_CLI"]) == 0
    assert json.loads(capsys.readouterr().out)["data"]["state"] == "COMPLETED"
    assert SQLiteAuditLog(db_path).list_records()[0].event_type == "STATUS_CHECK"


def test_cli_refund(db_path, mock_response, capsys):
    token_resp = mock_response(200, {"access_token": "cli-token"})
    refund_resp = mock_response(200, {"state": "PENDING", "merchantRefundId": "REF-CLI"})
    with mock.patch("requests.Session.post", side_effect=[token_resp, refund_resp]) as mock_post:
        assert main(["--db", db_path, "refund", "MO_CLI", "5000", "--merchant-refund-id", "REF-CLI"]) == 0
    assert json.loads(capsys.readouterr().out) == {"success": True, "merchantRefundId": "REF-CLI", "state": "PENDING"}
    assert mock_post.call_args.kwargs["headers"]["X-MERCHANT-ID"] == "M-CLI"


def test_cli_sign(tmp_path, capsys):
    body = b'{"eventType":"PAYMENT_SUCCESS"}'
    body_file = tmp_path / "webhook.json"
    body_file.write_bytes(body)
    assert main(["sign", str(body_file), "--salt-index", "2"]) == 0
    assert capsys.readouterr().out.strip() == compute_webhook_signature(body, "cli-salt", 2)


def test_cli_sign_without_salt(monkeypatch, tmp_path, capsys):
    monkeypatch.delenv("PHONEPE_WEBHOOK_SALT_KEY")
    body_file = tmp_path / "webhook.json"
    body_file.write_bytes(b"{}")
    assert main(["sign", str(body_file)]) == 1


def test_cli_logs_empty(db_path, capsys):
    assert main(["--db", db_path, "logs"]) == 0
    assert "No audit records found" in capsys.readouterr().out


@pytest.mark.parametrize("limit", ["0", "-3"])
def test_cli_logs_rejects_non_positive_limit(db_path, limit, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--db", db_path, "logs", "--order", "MO_CLI", "--limit", limit])
    assert exc.value.code == 2
    assert "must be at least 1" in capsys.readouterr().err
