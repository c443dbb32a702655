import os
import stat
import sys
import time
from unittest import mock

import pytest
from cryptography.fernet import Fernet

from phonepe_payments.exceptions import ConfigurationError, StorageError
from phonepe_payments.models import Token
from phonepe_payments.storage.credentials import EncryptedFileCredentialStore, MemoryCredentialStore


@pytest.fixture
def token():
    return Token(access_token="cached-token", expires_at=time.time() + 3600)


@pytest.fixture
def key():
    return Fernet.generate_key()


def test_memory_store_round_trip(token):
    store = MemoryCredentialStore()
    assert store.load() is None
    store.save(token)
    assert store.load() == token
    store.clear()
    assert store.load() is None


def test_file_store_missing_file_is_empty(tmp_path, key):
    store = EncryptedFileCredentialStore(str(tmp_path / "token.bin"), key=key)
    assert store.load() is None


def test_file_store_round_trip(tmp_path, key, token):
    path = tmp_path / "cache" / "token.bin"
    store = EncryptedFileCredentialStore(str(path), key=key)
    store.save(token)
    assert store.load() == token
    # Same key in a new instance reads the same cache.
    assert EncryptedFileCredentialStore(str(path), key=key).load() == token


def test_file_store_is_encrypted_at_rest(tmp_path, key, token):
    path = tmp_path / "token.bin"
    EncryptedFileCredentialStore(str(path), key=key).save(token)
    assert b"cached-token" not in path.read_bytes()


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions only")
def test_file_store_restricts_permissions(tmp_path, key, token):
    path = tmp_path / "token.bin"
    EncryptedFileCredentialStore(str(path), key=key).save(token)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_file_store_save_leaves_no_temp_files(tmp_path, key, token):
    store = EncryptedFileCredentialStore(str(tmp_path / "token.bin"), key=key)
    store.save(token)
    store.save(Token(access_token="newer", expires_at=token.expires_at + 10))
    assert sorted(os.listdir(tmp_path)) == ["token.bin"]
    assert store.load().access_token == "newer"


def test_corrupt_cache_is_deleted_and_treated_as_empty(tmp_path, key):
    path = tmp_path / "token.bin"
    path.write_bytes(b"definitely not a fernet token")
    store = EncryptedFileCredentialStore(str(path), key=key)
    assert store.load() is None
    assert not path.exists()


def test_cache_written_with_other_key_is_discarded(tmp_path, token):
    path = tmp_path / "token.bin"
    EncryptedFileCredentialStore(str(path), key=Fernet.generate_key()).save(token)
    assert EncryptedFileCredentialStore(str(path), key=Fernet.generate_key()).load() is None
    assert not path.exists()


def test_decryptable_but_malformed_payload_is_discarded(tmp_path, key):
    path = tmp_path / "token.bin"
    path.write_bytes(Fernet(key).encrypt(b'{"unexpected": true}'))
    store = EncryptedFileCredentialStore(str(path), key=key)
    assert store.load() is None
    assert not path.exists()


def test_clear_removes_file(tmp_path, key, token):
    path = tmp_path / "token.bin"
    store = EncryptedFileCredentialStore(str(path), key=key)
    store.save(token)
    store.clear()
    assert not path.exists()
    store.clear()


def test_invalid_key_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        EncryptedFileCredentialStore(str(tmp_path / "token.bin"), key="not-a-valid-key")


def test_save_failure_raises_storage_error(tmp_path, key, token):
    store = EncryptedFileCredentialStore(str(tmp_path / "token.bin"), key=key)
    with mock.patch("phonepe_payments.storage.credentials.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StorageError):
            store.save(token)
    assert os.listdir(tmp_path) == []
