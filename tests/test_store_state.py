"""
tests/test_store_state.py
Store state machine: creation, unlock, legacy migration, re-keying, locking.
"""

import base64
import pytest

from able_account.account_db import create_database, dump_database
from able_account.crypto_engine import MIN_MEMORY_KB, derive_key_from_params
from able_account.repository import AccountRepository
from able_account.store_state import (
    CORRUPT_LEGACY_KEY,
    ENCRYPTED_KEY,
    LEGACY_KEY,
    CorruptData,
    EncryptedStore,
    PersistenceFailure,
    SessionLockedError,
    StoreState,
    WrongPassphrase,
    decode_bytes,
    encode_bytes,
)

from conftest import PASSPHRASE, FlakyBlobStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def legacy_image(*names):
    """Plaintext SQLite image as the unencrypted version stored it."""
    conn = create_database()
    for name in names:
        conn.execute(
            "INSERT INTO accounts (service_name, url, last_password_change, date_added) "
            "VALUES (?, ?, ?, ?)",
            (name, f"https://{name.lower()}.com", "2024-01-01T00:00:00Z", "2024-01-01T00:00:00Z")
        )
    image = dump_database(conn)
    conn.close()
    return image

def names_in(session):
    return [a.service_name for a in AccountRepository(session).list()]


# ---------------------------------------------------------------------------
# Envelope encoding
# ---------------------------------------------------------------------------

def test_decode_bytes_accepts_base64_and_int_lists():
    raw = bytes(range(10))
    assert decode_bytes(encode_bytes(raw)) == raw
    assert decode_bytes(list(raw)) == raw

def test_decode_bytes_rejects_garbage():
    with pytest.raises(ValueError):
        decode_bytes("%%% not base64 %%%")
    with pytest.raises(ValueError):
        decode_bytes([1, 2, 999])
    with pytest.raises(ValueError):
        decode_bytes(12)


# ---------------------------------------------------------------------------
# State detection
# ---------------------------------------------------------------------------

def test_detect_state_new(store):
    assert store.detect_state() is StoreState.NEW

def test_detect_state_legacy():
    store = EncryptedStore(FlakyBlobStore({LEGACY_KEY: encode_bytes(legacy_image())}))
    assert store.detect_state() is StoreState.LEGACY_UNENCRYPTED

def test_encrypted_wins_over_legacy(store, session, blob_store):
    blob_store.set(LEGACY_KEY, encode_bytes(legacy_image("Stale")))
    assert store.detect_state() is StoreState.ENCRYPTED


# ---------------------------------------------------------------------------
# New store
# ---------------------------------------------------------------------------

def test_unlock_new_store_creates_empty_encrypted_store(store, blob_store):
    session = store.unlock(PASSPHRASE)
    assert names_in(session) == []
    assert store.detect_state() is StoreState.ENCRYPTED

    envelope = blob_store.get(ENCRYPTED_KEY)
    assert envelope["version"] == 1
    assert set(envelope) >= {"salt", "iv", "data", "kdf"}
    assert len(decode_bytes(envelope["salt"])) == 16
    assert len(decode_bytes(envelope["iv"])) == 12
    session.lock()

def test_unlock_rejects_empty_passphrase(store):
    with pytest.raises(ValueError):
        store.unlock("")

def test_new_store_write_failure(store, blob_store):
    blob_store.fail_set.add(ENCRYPTED_KEY)
    with pytest.warns(RuntimeWarning):
        with pytest.raises(PersistenceFailure):
            store.unlock(PASSPHRASE)
    assert store.detect_state() is StoreState.NEW


# ---------------------------------------------------------------------------
# Encrypted store
# ---------------------------------------------------------------------------

def test_reopen_with_same_passphrase_sees_data(store, session):
    AccountRepository(session).add("GitHub")
    session.lock()

    reopened = store.unlock(PASSPHRASE)
    assert names_in(reopened) == ["GitHub"]
    reopened.lock()

def test_wrong_passphrase_fails_and_leaves_blob(store, session, blob_store):
    session.lock()
    before = blob_store.get(ENCRYPTED_KEY)
    with pytest.raises(WrongPassphrase):
        store.unlock("not the passphrase")
    assert blob_store.get(ENCRYPTED_KEY) == before

def test_tampered_ciphertext_reads_as_wrong_passphrase(store, session, blob_store):
    session.lock()
    envelope = blob_store.get(ENCRYPTED_KEY)
    data = bytearray(decode_bytes(envelope["data"]))
    data[-1] ^= 0x01
    envelope["data"] = encode_bytes(bytes(data))
    blob_store.set(ENCRYPTED_KEY, envelope)
    with pytest.raises(WrongPassphrase):
        store.unlock(PASSPHRASE)

def test_envelope_with_int_list_fields_unlocks(store, session, blob_store):
    AccountRepository(session).add("Bank")
    session.lock()
    envelope = blob_store.get(ENCRYPTED_KEY)
    for field in ("salt", "iv", "data"):
        envelope[field] = list(decode_bytes(envelope[field]))
    blob_store.set(ENCRYPTED_KEY, envelope)

    reopened = store.unlock(PASSPHRASE)
    assert names_in(reopened) == ["Bank"]
    reopened.lock()

def test_envelope_missing_field_is_corrupt(store, blob_store):
    blob_store.set(ENCRYPTED_KEY, {"version": 1, "salt": encode_bytes(b"x" * 16)})
    with pytest.raises(CorruptData):
        store.unlock(PASSPHRASE)

def test_envelope_unknown_kdf_is_corrupt(store, session, blob_store):
    session.lock()
    envelope = blob_store.get(ENCRYPTED_KEY)
    envelope["kdf"] = {"algorithm": "rot13"}
    blob_store.set(ENCRYPTED_KEY, envelope)
    with pytest.raises(CorruptData):
        store.unlock(PASSPHRASE)

@pytest.mark.parametrize("kdf", [
    {"algorithm": "pbkdf2-sha256", "iterations": None},
    {"algorithm": "pbkdf2-sha256", "iterations": [1]},
    {"algorithm": "pbkdf2-sha256", "iterations": {"a": 1}},
    {"algorithm": "pbkdf2-sha256", "iterations": "many"},
    {"algorithm": "argon2id", "time_cost": 0, "memory_cost": MIN_MEMORY_KB, "parallelism": 1},
])
def test_envelope_bad_kdf_values_are_corrupt(store, session, blob_store, monkeypatch, kdf):
    monkeypatch.setattr("able_account.store_state.derive_key_from_params", derive_key_from_params)
    session.lock()
    envelope = blob_store.get(ENCRYPTED_KEY)
    envelope["kdf"] = kdf
    blob_store.set(ENCRYPTED_KEY, envelope)
    with pytest.raises(CorruptData, match="unusable KDF"):
        store.unlock(PASSPHRASE)


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------

def test_legacy_migration_keeps_records_and_removes_plaintext():
    blob_store = FlakyBlobStore({LEGACY_KEY: encode_bytes(legacy_image("Foo", "Bar"))})
    store = EncryptedStore(blob_store)

    session = store.unlock(PASSPHRASE)
    assert names_in(session) == ["Bar", "Foo"]
    assert blob_store.get(LEGACY_KEY) is None
    assert store.detect_state() is StoreState.ENCRYPTED
    session.lock()

def test_legacy_migration_writes_encrypted_before_removing_plaintext():
    blob_store = FlakyBlobStore({LEGACY_KEY: encode_bytes(legacy_image("Foo"))})
    EncryptedStore(blob_store).unlock(PASSPHRASE).lock()
    assert blob_store.ops.index(("set", ENCRYPTED_KEY)) < blob_store.ops.index(("remove", LEGACY_KEY))

def test_legacy_migration_accepts_int_list_image():
    blob_store = FlakyBlobStore({LEGACY_KEY: list(legacy_image("Foo"))})
    session = EncryptedStore(blob_store).unlock(PASSPHRASE)
    assert names_in(session) == ["Foo"]
    session.lock()

def test_legacy_migration_write_failure_keeps_plaintext():
    blob_store = FlakyBlobStore({LEGACY_KEY: encode_bytes(legacy_image("Foo"))})
    blob_store.fail_set.add(ENCRYPTED_KEY)
    store = EncryptedStore(blob_store)

    with pytest.warns(RuntimeWarning):
        with pytest.raises(PersistenceFailure):
            store.unlock(PASSPHRASE)
    assert blob_store.get(LEGACY_KEY) is not None
    assert store.detect_state() is StoreState.LEGACY_UNENCRYPTED

def test_interrupted_migration_is_finished_on_next_unlock():
    blob_store = FlakyBlobStore({LEGACY_KEY: encode_bytes(legacy_image("Foo"))})
    blob_store.fail_remove.add(LEGACY_KEY)
    store = EncryptedStore(blob_store)

    with pytest.warns(RuntimeWarning, match="legacy"):
        first = store.unlock(PASSPHRASE)
    first.lock()
    assert blob_store.get(LEGACY_KEY) is not None
    assert store.detect_state() is StoreState.ENCRYPTED

    blob_store.fail_remove.clear()
    second = store.unlock(PASSPHRASE)
    assert names_in(second) == ["Foo"]
    assert blob_store.get(LEGACY_KEY) is None
    second.lock()

def test_corrupt_legacy_is_preserved_and_store_starts_empty():
    raw = encode_bytes(b"this is not a sqlite database" * 200)
    blob_store = FlakyBlobStore({LEGACY_KEY: raw})
    store = EncryptedStore(blob_store)

    with pytest.warns(RuntimeWarning, match="could not be loaded"):
        session = store.unlock(PASSPHRASE)
    assert names_in(session) == []
    assert blob_store.get(CORRUPT_LEGACY_KEY) == raw
    assert blob_store.get(LEGACY_KEY) is None
    session.lock()

def test_undecodable_legacy_is_preserved():
    blob_store = FlakyBlobStore({LEGACY_KEY: {"unexpected": "shape"}})
    with pytest.warns(RuntimeWarning):
        session = EncryptedStore(blob_store).unlock(PASSPHRASE)
    assert blob_store.get(CORRUPT_LEGACY_KEY) == {"unexpected": "shape"}
    session.lock()


# ---------------------------------------------------------------------------
# Passphrase change
# ---------------------------------------------------------------------------

def test_change_passphrase_rekeys_store(store, session):
    AccountRepository(session).add("Mail")
    old_salt = session.salt
    session.change_passphrase("brand new passphrase")
    assert session.salt != old_salt
    session.lock()

    with pytest.raises(WrongPassphrase):
        store.unlock(PASSPHRASE)
    reopened = store.unlock("brand new passphrase")
    assert names_in(reopened) == ["Mail"]
    reopened.lock()

def test_change_passphrase_failure_keeps_old_key(store, session, blob_store):
    repo = AccountRepository(session)
    repo.add("Mail")
    old_salt = session.salt
    blob_store.fail_set.add(ENCRYPTED_KEY)

    with pytest.warns(RuntimeWarning):
        with pytest.raises(PersistenceFailure):
            session.change_passphrase("brand new passphrase")
    assert session.salt == old_salt

    # Session still writes under the old key once storage recovers
    blob_store.fail_set.clear()
    repo.add("Bank")
    session.lock()
    reopened = store.unlock(PASSPHRASE)
    assert names_in(reopened) == ["Bank", "Mail"]
    reopened.lock()


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------

def test_lock_discards_session(store, blob_store):
    session = store.unlock(PASSPHRASE)
    before = blob_store.get(ENCRYPTED_KEY)
    session.lock()
    session.lock()

    assert session.is_locked
    with pytest.raises(SessionLockedError):
        session.connection
    with pytest.raises(SessionLockedError):
        session.persist()
    assert blob_store.get(ENCRYPTED_KEY) == before

def test_session_context_manager_locks(store):
    with store.unlock(PASSPHRASE) as session:
        assert not session.is_locked
    assert session.is_locked
