"""
Able Account Store State Machine
Resolves the persisted state (new / legacy plaintext / encrypted), unlocks it
with a passphrase, migrates legacy data, and owns the unlocked session.
"""

import base64
import binascii
import threading
import warnings
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from able_account import config
from able_account.account_db import (
    DatabaseError,
    create_database,
    dump_database,
    load_database,
)
from able_account.blob_store import BlobStore, BlobStoreError
from able_account.crypto_engine import (
    AuthenticationFailure,
    decrypt_blob,
    derive_key_from_params,
    encrypt_blob,
    generate_salt,
)

ENCRYPTED_KEY = "accountDB_encrypted"
LEGACY_KEY = "accountDB"
CORRUPT_LEGACY_KEY = "accountDB_corrupt"
ENVELOPE_VERSION = 1
SALT_LENGTH = 16


class StoreError(Exception):
    """Base exception for store operations"""
    pass

class WrongPassphrase(StoreError):
    """Raised when the passphrase does not open the encrypted store"""
    pass

class CorruptData(StoreError):
    """Raised when a persisted blob is structurally unreadable"""
    pass

class PersistenceFailure(StoreError):
    """Raised when the blob store rejects a write"""
    pass

class SessionLockedError(StoreError):
    """Raised when a locked session is used"""
    pass


class StoreState(Enum):
    NEW = "new"
    LEGACY_UNENCRYPTED = "unencrypted"
    ENCRYPTED = "encrypted"


"""
==========================================================================
Envelope encoding
==========================================================================
"""

def encode_bytes(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")

def decode_bytes(value: Any) -> bytes:
    """
    Decode a stored byte field.

    Accepts base64 strings and integer lists (the browser extension's
    Array.from(Uint8Array) encoding).
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 byte field: {e}") from e
    if isinstance(value, list):
        # bytes() raises ValueError / TypeError for out-of-range or non-int items
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid byte array: {e}") from e
    raise ValueError(f"Unsupported byte field type: {type(value).__name__}")

def build_envelope(key: bytes, salt: bytes, kdf: Dict, image: bytes) -> Dict:
    """Encrypt a database image and wrap it with everything needed to reopen it."""
    nonce, ciphertext = encrypt_blob(image, key)
    return {
        "version": ENVELOPE_VERSION,
        "salt": encode_bytes(salt),
        "iv": encode_bytes(nonce),
        "data": encode_bytes(ciphertext),
        "kdf": dict(kdf),
    }

def parse_envelope(value: Any, default_kdf: Dict) -> Tuple[bytes, bytes, bytes, Dict]:
    """
    Returns:
        (salt, nonce, ciphertext, kdf)

    Raises:
        CorruptData: envelope missing fields or holding undecodable bytes
    """
    if not isinstance(value, dict):
        raise CorruptData("Encrypted store envelope is not an object")
    try:
        salt = decode_bytes(value["salt"])
        nonce = decode_bytes(value["iv"])
        ciphertext = decode_bytes(value["data"])
    except KeyError as e:
        raise CorruptData(f"Encrypted store envelope missing field {e}") from e
    except ValueError as e:
        raise CorruptData(f"Encrypted store envelope is malformed: {e}") from e

    if not salt or not nonce or not ciphertext:
        raise CorruptData("Encrypted store envelope has empty fields")

    kdf = value.get("kdf") or default_kdf
    if not isinstance(kdf, dict):
        raise CorruptData("Encrypted store envelope has invalid KDF parameters")
    return salt, nonce, ciphertext, kdf


def _wipe(buf: Optional[bytearray]) -> None:
    if buf:
        buf[:] = b"\x00" * len(buf)


class UnlockedSession:
    """
    In-memory unlocked state: derived key, salt, KDF parameters and the
    database connection. Exists between a successful unlock and lock().

    All mutations and persist() run under `write_lock`, so the stored blob
    always reflects the most recently completed persist().
    """

    def __init__(self, store: "EncryptedStore", key: bytes, salt: bytes, kdf: Dict, connection):
        self._store = store
        self._key: Optional[bytearray] = bytearray(key)
        self._salt: Optional[bytes] = bytes(salt)
        self._kdf: Dict = dict(kdf)
        self._connection = connection
        self.write_lock = threading.RLock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.lock()

    @property
    def is_locked(self) -> bool:
        return self._key is None

    def _check_unlocked(self) -> None:
        if self.is_locked:
            raise SessionLockedError("Session is locked. Unlock the store first.")

    @property
    def connection(self):
        self._check_unlocked()
        return self._connection

    @property
    def salt(self) -> bytes:
        self._check_unlocked()
        return self._salt

    @property
    def kdf(self) -> Dict:
        self._check_unlocked()
        return dict(self._kdf)

    def persist(self) -> None:
        """
        Serialize the whole database, encrypt it under the session key and
        overwrite the encrypted blob in a single write.

        Raises:
            PersistenceFailure: serialization or blob write failed. The
                in-memory database is left as it is.
        """
        with self.write_lock:
            self._check_unlocked()
            try:
                image = dump_database(self._connection)
            except DatabaseError as e:
                warnings.warn(f"persist() failed to serialize database: {e}", RuntimeWarning)
                raise PersistenceFailure(f"Failed to serialize database: {e}") from e

            envelope = build_envelope(bytes(self._key), self._salt, self._kdf, image)
            self._store._write_envelope(envelope)

    def change_passphrase(self, new_passphrase: str) -> None:
        """
        Re-key the store: new salt, new key, re-encrypted image.

        The new envelope is written first; the in-memory key and salt are only
        swapped after the write succeeded, so a failed write leaves the old
        salt/key/ciphertext fully in place.
        """
        if not new_passphrase or not isinstance(new_passphrase, str):
            raise ValueError("Passphrase must be a non-empty string")

        with self.write_lock:
            self._check_unlocked()
            kdf = self._store.kdf_params
            salt = generate_salt(SALT_LENGTH)
            new_key = bytearray(derive_key_from_params(new_passphrase, salt, kdf))
            try:
                image = dump_database(self._connection)
                envelope = build_envelope(bytes(new_key), salt, kdf, image)
                self._store._write_envelope(envelope)
            except DatabaseError as e:
                _wipe(new_key)
                raise PersistenceFailure(f"Failed to serialize database: {e}") from e
            except PersistenceFailure:
                _wipe(new_key)
                raise

            old_key = self._key
            self._key = new_key
            self._salt = salt
            self._kdf = dict(kdf)
            _wipe(old_key)

    def lock(self) -> None:
        """
        Discard key material and release the database. Does not touch the
        persisted blob. Safe to call more than once.
        """
        with self.write_lock:
            if self._key is None:
                return
            _wipe(self._key)
            self._key = None
            self._salt = None
            try:
                if self._connection is not None:
                    self._connection.close()
            finally:
                self._connection = None


class EncryptedStore:
    """
    Store state machine over a blob store.

    State Machine:
        - NEW: nothing persisted; unlock() creates an empty encrypted store
        - LEGACY_UNENCRYPTED: plaintext image present; unlock() migrates it
        - ENCRYPTED: envelope present; unlock() decrypts and verifies it
    """

    def __init__(self, blob_store: BlobStore, kdf_params: Optional[Dict] = None):
        self.blob_store = blob_store
        self.kdf_params = dict(kdf_params) if kdf_params else config.default_kdf_params()

    def _read(self, key: str) -> Any:
        try:
            return self.blob_store.get(key)
        except BlobStoreError as e:
            raise StoreError(f"Failed to read blob store: {e}") from e

    def _write_envelope(self, envelope: Dict) -> None:
        try:
            self.blob_store.set(ENCRYPTED_KEY, envelope)
        except BlobStoreError as e:
            warnings.warn(f"Failed to persist encrypted store: {e}", RuntimeWarning)
            raise PersistenceFailure(f"Failed to persist encrypted store: {e}") from e

    def detect_state(self) -> StoreState:
        """Encrypted envelope wins over a legacy image; nothing at all means NEW."""
        if self._read(ENCRYPTED_KEY) is not None:
            return StoreState.ENCRYPTED
        if self._read(LEGACY_KEY) is not None:
            return StoreState.LEGACY_UNENCRYPTED
        return StoreState.NEW

    def unlock(self, passphrase: str) -> UnlockedSession:
        """
        Open the store with a passphrase.

        Raises:
            ValueError: empty passphrase
            WrongPassphrase: decryption or integrity check failed
            CorruptData: encrypted envelope is structurally unreadable
            PersistenceFailure: first encrypted write failed (new/legacy paths)
        """
        if not passphrase or not isinstance(passphrase, str):
            raise ValueError("Passphrase must be a non-empty string")

        state = self.detect_state()
        if state is StoreState.ENCRYPTED:
            return self._unlock_encrypted(passphrase)
        if state is StoreState.LEGACY_UNENCRYPTED:
            return self._migrate_legacy(passphrase)
        return self._create_new(passphrase)

    def _unlock_encrypted(self, passphrase: str) -> UnlockedSession:
        salt, nonce, ciphertext, kdf = parse_envelope(
            self._read(ENCRYPTED_KEY), self.kdf_params
        )
        try:
            key = bytearray(derive_key_from_params(passphrase, salt, kdf))
        except (TypeError, ValueError, RuntimeError) as e:
            raise CorruptData(f"Encrypted store has unusable KDF parameters: {e}") from e

        try:
            image = decrypt_blob(ciphertext, nonce, bytes(key))
            connection = load_database(image)
        except (AuthenticationFailure, DatabaseError) as e:
            _wipe(key)
            raise WrongPassphrase("Wrong passphrase or corrupted data") from e

        session = UnlockedSession(self, bytes(key), salt, kdf, connection)
        _wipe(key)

        # An interrupted migration can leave the plaintext image behind
        try:
            if self.blob_store.get(LEGACY_KEY) is not None:
                self.blob_store.remove(LEGACY_KEY)
        except BlobStoreError as e:
            warnings.warn(f"Failed to remove stale legacy store: {e}", RuntimeWarning)
        return session

    def _migrate_legacy(self, passphrase: str) -> UnlockedSession:
        raw = self._read(LEGACY_KEY)
        salt = generate_salt(SALT_LENGTH)
        key = bytearray(derive_key_from_params(passphrase, salt, self.kdf_params))

        try:
            connection = load_database(decode_bytes(raw), ensure_schema=True)
        except (ValueError, DatabaseError) as e:
            warnings.warn(
                f"Legacy store could not be loaded ({e}); starting with an empty "
                f"database and keeping the original under '{CORRUPT_LEGACY_KEY}'.",
                RuntimeWarning
            )
            try:
                self.blob_store.set(CORRUPT_LEGACY_KEY, raw)
            except BlobStoreError as write_error:
                _wipe(key)
                raise PersistenceFailure(
                    f"Failed to preserve unreadable legacy store: {write_error}"
                ) from write_error
            connection = create_database()

        session = UnlockedSession(self, bytes(key), salt, self.kdf_params, connection)
        _wipe(key)
        try:
            session.persist()
        except PersistenceFailure:
            session.lock()
            raise

        # Only now that the encrypted copy is durable may the plaintext go
        try:
            self.blob_store.remove(LEGACY_KEY)
        except BlobStoreError as e:
            warnings.warn(f"Failed to remove legacy plaintext store: {e}", RuntimeWarning)
        return session

    def _create_new(self, passphrase: str) -> UnlockedSession:
        salt = generate_salt(SALT_LENGTH)
        key = bytearray(derive_key_from_params(passphrase, salt, self.kdf_params))
        session = UnlockedSession(self, bytes(key), salt, self.kdf_params, create_database())
        _wipe(key)
        try:
            session.persist()
        except PersistenceFailure:
            session.lock()
            raise
        return session
