"""
Pytest configuration and path setup
Automatically adds project root to Python path for all tests
"""
import hashlib
import sys
import os

import pytest

# Add project root to Python path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, project_root)

from able_account.blob_store import BlobStoreError, MemoryBlobStore
from able_account.repository import AccountRepository
from able_account.store_state import EncryptedStore

PASSPHRASE = "correct horse battery"


def _fast_derive(passphrase, salt, kdf):
    """Stand-in for the real KDF: deterministic, salt-sensitive, instant."""
    if kdf.get("algorithm", "pbkdf2-sha256") not in ("pbkdf2-sha256", "argon2id"):
        raise ValueError(f"Unsupported KDF algorithm: {kdf.get('algorithm')}")
    return hashlib.sha256(passphrase.encode("utf-8") + b"|" + bytes(salt)).digest()


@pytest.fixture(autouse=True)
def fast_kdf(monkeypatch):
    """
    600k PBKDF2 rounds per unlock would make the store tests crawl.
    Crypto tests import the real derivation from crypto_engine directly.
    """
    monkeypatch.setattr("able_account.store_state.derive_key_from_params", _fast_derive)
    return _fast_derive


class FlakyBlobStore(MemoryBlobStore):
    """MemoryBlobStore that records operations and can be told to fail."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.ops = []
        self.fail_set = set()
        self.fail_remove = set()

    def set(self, key, value):
        self.ops.append(("set", key))
        if key in self.fail_set:
            raise BlobStoreError(f"disk full while writing {key}")
        super().set(key, value)

    def remove(self, key):
        self.ops.append(("remove", key))
        if key in self.fail_remove:
            raise BlobStoreError(f"cannot remove {key}")
        super().remove(key)


@pytest.fixture
def blob_store():
    return FlakyBlobStore()

@pytest.fixture
def store(blob_store):
    return EncryptedStore(blob_store)

@pytest.fixture
def session(store):
    s = store.unlock(PASSPHRASE)
    yield s
    s.lock()

@pytest.fixture
def repo(session):
    return AccountRepository(session)
