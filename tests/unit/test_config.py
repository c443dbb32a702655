import dataclasses

import pytest

from phonepe_payments.config import DEFAULT_ENDPOINTS, GatewayConfig
from phonepe_payments.exceptions import ConfigurationError


def make_config(**overrides):
    values = {
        "client_id": "cid",
        "client_secret": "secret",
        "redirect_url": "https://merchant.example/return",
    }
    values.update(overrides)
    return GatewayConfig(**values)


def test_defaults_fill_environment_endpoints():
    config = make_config()
    assert config.environment == "uat"
    assert config.base_url == DEFAULT_ENDPOINTS["uat"]["base_url"]
    assert config.auth_url == DEFAULT_ENDPOINTS["uat"]["auth_url"]
    assert config.client_version == "1.0"
    assert config.timeout == 30
    assert config.token_safety_margin == 120


def test_prod_uses_prod_endpoints():
    config = make_config(environment="prod")
    assert config.is_production
    assert config.base_url == "https://api.phonepe.com"


def test_trailing_slash_is_stripped():
    config = make_config(base_url="https://gateway.example/apis/pg/")
    assert config.base_url == "https://gateway.example/apis/pg"


def test_config_is_immutable():
    config = make_config()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.client_id = "other"


@pytest.mark.parametrize("field_name", ["client_id", "client_secret", "redirect_url", "client_version"])
def test_missing_required_field_fails(field_name):
    with pytest.raises(ConfigurationError) as exc:
        make_config(**{field_name: ""})
    assert exc.value.details["config_key"] == field_name


def test_unknown_environment_fails():
    with pytest.raises(ConfigurationError):
        make_config(environment="staging")


def test_prod_requires_https_redirect():
    with pytest.raises(ConfigurationError) as exc:
        make_config(environment="prod", redirect_url="http://merchant.example/return")
    assert exc.value.details["config_key"] == "redirect_url"


def test_uat_allows_http_redirect():
    config = make_config(redirect_url="http://localhost:8000/return")
    assert config.redirect_url == "http://localhost:8000/return"


def test_invalid_url_fails():
    with pytest.raises(ConfigurationError):
        make_config(base_url="not-a-url")


def test_control_characters_rejected():
    with pytest.raises(ConfigurationError):
        make_config(client_id="bad\nid")


def test_safety_margin_minimum():
    with pytest.raises(ConfigurationError):
        make_config(token_safety_margin=30)
    assert make_config(token_safety_margin=60).token_safety_margin == 60


def test_invalid_payment_mode_and_timeout():
    with pytest.raises(ConfigurationError):
        make_config(payment_mode="popup")
    with pytest.raises(ConfigurationError):
        make_config(timeout=0)


def test_invalid_salt_index():
    with pytest.raises(ConfigurationError):
        make_config(webhook_salt_index=0)


def test_from_env_reads_environment_specific_credentials():
    environ = {
        "PHONEPE_ENV": "prod",
        "PHONEPE_PROD_CLIENT_ID": "prod-id",
        "PHONEPE_PROD_CLIENT_SECRET": "prod-secret",
        "PHONEPE_PROD_MERCHANT_ID": "M1",
        "PHONEPE_UAT_CLIENT_ID": "uat-id",
        "PHONEPE_REDIRECT_URL": "https://shop.example/return",
        "PHONEPE_WEBHOOK_SALT_KEY": "salt",
        "PHONEPE_WEBHOOK_SALT_INDEX": "2",
        "PHONEPE_PAYMENT_MODE": "redirect",
        "PHONEPE_TIMEOUT": "10",
    }
    config = GatewayConfig.from_env(environ)
    assert config.environment == "prod"
    assert config.client_id == "prod-id"
    assert config.merchant_id == "M1"
    assert config.webhook_salt_index == 2
    assert config.payment_mode == "redirect"
    assert config.timeout == 10.0


def test_from_env_missing_credentials_fails():
    with pytest.raises(ConfigurationError):
        GatewayConfig.from_env({"PHONEPE_REDIRECT_URL": "https://shop.example/return"})


def test_from_env_bad_salt_index():
    environ = {
        "PHONEPE_UAT_CLIENT_ID": "id",
        "PHONEPE_UAT_CLIENT_SECRET": "secret",
        "PHONEPE_REDIRECT_URL": "https://shop.example/return",
        "PHONEPE_WEBHOOK_SALT_INDEX": "one",
    }
    with pytest.raises(ConfigurationError):
        GatewayConfig.from_env(environ)


def test_summary_masks_secrets():
    config = make_config(webhook_salt_key="salt", token_encryption_key="k" * 44)
    summary = config.summary()
    assert summary["client_secret"] == "***"
    assert summary["webhook_salt_key"] == "***"
    assert summary["token_encryption_key"] == "***"
    assert summary["client_id"] == "cid"
