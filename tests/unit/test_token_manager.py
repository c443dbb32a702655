import threading
import time
from unittest import mock

import pytest
import requests
from cryptography.fernet import Fernet

from phonepe_payments.exceptions import AuthError, StorageError
from phonepe_payments.models import Token
from phonepe_payments.storage.credentials import EncryptedFileCredentialStore, MemoryCredentialStore
from phonepe_payments.token_manager import TokenManager

NOW = 1_700_000_000.0


def make_manager(gateway_config, store=None, now=NOW):
    return TokenManager(gateway_config, store=store or MemoryCredentialStore(), clock=lambda: now)


def token_response(mock_response, access_token="fresh-token", expires_in=3600):
    data = {"access_token": access_token}
    if expires_in is not None:
        data["expires_in"] = expires_in
    return mock_response(200, data)


def test_valid_cached_token_makes_no_network_call(gateway_config):
    store = MemoryCredentialStore(Token("cached", NOW + 3600))
    manager = make_manager(gateway_config, store)
    with mock.patch.object(manager.session, "post") as mock_post:
        assert manager.get_access_token().access_token == "cached"
        assert manager.get_access_token().access_token == "cached"
    mock_post.assert_not_called()
    assert manager.refresh_count == 0


def test_token_inside_safety_margin_is_refreshed(gateway_config, mock_response):
    # Still technically valid, but within the 120s margin.
    store = MemoryCredentialStore(Token("stale", NOW + 100))
    manager = make_manager(gateway_config, store)
    with mock.patch.object(manager.session, "post", return_value=token_response(mock_response)) as mock_post:
        token = manager.get_access_token()
    assert token.access_token == "fresh-token"
    assert token.expires_at == NOW + 3600
    assert store.load() == token
    assert mock_post.call_count == 1


def test_missing_token_exchanges_once_with_form_fields(gateway_config, mock_response):
    manager = make_manager(gateway_config)
    with mock.patch.object(manager.session, "post", return_value=token_response(mock_response)) as mock_post:
        manager.get_access_token()
    args, kwargs = mock_post.call_args
    assert args[0] == "https://api-uat.phonepe.com/v1/oauth/token"
    assert kwargs["data"] == {
        "client_id": "test_client_id",
        "client_version": "1.0",
        "client_secret": "test_client_secret",
        "grant_type": "client_credentials",
    }
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
    assert kwargs["timeout"] == 30


def test_missing_expires_in_defaults_to_one_hour(gateway_config, mock_response):
    manager = make_manager(gateway_config)
    with mock.patch.object(manager.session, "post", return_value=token_response(mock_response, expires_in=None)):
        token = manager.get_access_token()
    assert token.expires_at == NOW + 3600


def test_corrupt_cache_triggers_exactly_one_exchange(gateway_config, mock_response, tmp_path):
    key = Fernet.generate_key()
    path = tmp_path / "token.bin"
    path.write_bytes(b"garbage")
    store = EncryptedFileCredentialStore(str(path), key=key)
    manager = make_manager(gateway_config, store)
    with mock.patch.object(manager.session, "post", return_value=token_response(mock_response)) as mock_post:
        token = manager.get_access_token()
    assert mock_post.call_count == 1
    assert EncryptedFileCredentialStore(str(path), key=key).load() == token


def test_non_2xx_raises_auth_error(gateway_config, mock_response):
    manager = make_manager(gateway_config)
    with mock.patch.object(manager.session, "post", return_value=mock_response(401, {"message": "Unauthorized"})):
        with pytest.raises(AuthError) as exc:
            manager.get_access_token()
    assert exc.value.status_code == 401
    assert manager.store.load() is None


def test_network_error_raises_auth_error_without_retry(gateway_config):
    manager = make_manager(gateway_config)
    with mock.patch.object(
        manager.session, "post", side_effect=requests.exceptions.ConnectionError("refused")
    ) as mock_post:
        with pytest.raises(AuthError):
            manager.get_access_token()
    assert mock_post.call_count == 1


def test_timeout_raises_auth_error(gateway_config):
    manager = make_manager(gateway_config)
    with mock.patch.object(manager.session, "post", side_effect=requests.exceptions.Timeout()):
        with pytest.raises(AuthError) as exc:
            manager.get_access_token()
    assert exc.value.cause == "timeout"


@pytest.mark.parametrize("body", [None, {"token_type": "O-Bearer"}, {"access_token": ""}])
def test_malformed_response_raises_auth_error(gateway_config, mock_response, body):
    manager = make_manager(gateway_config)
    with mock.patch.object(manager.session, "post", return_value=mock_response(200, body)):
        with pytest.raises(AuthError):
            manager.get_access_token()


@pytest.mark.parametrize("expires_in", [30, 120, 0, -10, "nan"])
def test_lifetime_within_safety_margin_raises_auth_error(gateway_config, mock_response, expires_in):
    manager = make_manager(gateway_config)
    with mock.patch.object(
        manager.session, "post", return_value=token_response(mock_response, access_token="short", expires_in=expires_in)
    ):
        with pytest.raises(AuthError) as exc:
            manager.get_access_token()
    assert "safety margin" in exc.value.message
    assert manager.store.load() is None
    assert manager.refresh_count == 0


def test_cache_write_failure_still_returns_token(gateway_config, mock_response):
    store = mock.Mock()
    store.load.return_value = None
    store.save.side_effect = StorageError("disk full", storage_type="file", operation="save")
    manager = make_manager(gateway_config, store)
    with mock.patch.object(manager.session, "post", return_value=token_response(mock_response)):
        assert manager.get_access_token().access_token == "fresh-token"


def test_invalidate_clears_store(gateway_config):
    store = MemoryCredentialStore(Token("cached", NOW + 3600))
    manager = make_manager(gateway_config, store)
    manager.invalidate()
    assert store.load() is None


def test_concurrent_callers_share_a_single_refresh(gateway_config, mock_response):
    manager = TokenManager(gateway_config, store=MemoryCredentialStore())
    calls = []

    def slow_exchange(*args, **kwargs):
        calls.append(1)
        time.sleep(0.2)
        return token_response(mock_response, access_token=f"token-{len(calls)}")

    barrier = threading.Barrier(10)
    tokens = []

    def worker():
        barrier.wait()
        tokens.append(manager.get_access_token().access_token)

    with mock.patch.object(manager.session, "post", side_effect=slow_exchange):
        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    assert len(calls) == 1
    assert manager.refresh_count == 1
    assert tokens == ["token-1"] * 10


def test_default_store_is_encrypted_file_when_cache_path_set(gateway_config, tmp_path):
    config = type(gateway_config)(
        client_id="id",
        client_secret="secret",
        redirect_url="https://merchant.example/return",
        token_cache_path=str(tmp_path / "token.bin"),
        token_encryption_key=Fernet.generate_key().decode(),
    )
    assert isinstance(TokenManager(config).store, EncryptedFileCredentialStore)
    assert isinstance(TokenManager(gateway_config).store, MemoryCredentialStore)
