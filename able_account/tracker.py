"""
Able Account Tracker
Caller-side facade: owns the encrypted store, the unlock throttle and the
current session, and wires the post-unlock reminder steps.
"""

import threading
import warnings
from datetime import datetime
from typing import Dict, Optional

from able_account import config
from able_account.account_db import DatabaseError
from able_account.blob_store import BlobStore, BlobStoreError, FileBlobStore
from able_account.lockout import UnlockThrottle
from able_account.models import ValidationError
from able_account.reminders import import_pending_accounts, publish_overdue_summary
from able_account.repository import AccountRepository
from able_account.store_state import (
    EncryptedStore,
    PersistenceFailure,
    StoreState,
    UnlockedSession,
    WrongPassphrase,
)


class TrackerError(Exception):
    """Base exception for tracker operations"""
    pass

class TrackerLockedError(TrackerError):
    """Raised when the repository is used while locked"""
    pass

class TrackerAlreadyUnlockedError(TrackerError):
    """Raised when unlock() is called on an unlocked tracker"""
    pass


class AccountTracker:
    """
    State Machine:
        - LOCKED: only state(), unlock() allowed
        - UNLOCKED: repository, change_passphrase(), lock()
        - After lock(): back to LOCKED
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        settings: Optional[Dict] = None,
        kdf_params: Optional[Dict] = None
    ):
        self.blob_store = blob_store if blob_store is not None else FileBlobStore(config.STORE_PATH)
        self.settings = settings or {}
        self.store = EncryptedStore(self.blob_store, kdf_params)
        self.throttle = UnlockThrottle(self.settings)
        self.min_passphrase_length = int(
            self.settings.get("min_passphrase_length", config.MIN_PASSPHRASE_LENGTH)
        )

        self._session: Optional[UnlockedSession] = None
        self._repository: Optional[AccountRepository] = None
        self._state_lock = threading.RLock()

    @property
    def is_unlocked(self) -> bool:
        return self._session is not None and not self._session.is_locked

    def state(self) -> StoreState:
        return self.store.detect_state()

    def _check_unlocked(self) -> None:
        if not self.is_unlocked:
            raise TrackerLockedError("Tracker is locked. Call unlock() first.")

    @property
    def session(self) -> UnlockedSession:
        with self._state_lock:
            self._check_unlocked()
            return self._session

    @property
    def repository(self) -> AccountRepository:
        with self._state_lock:
            self._check_unlocked()
            return self._repository

    def _validate_passphrase(self, passphrase: str, confirm: Optional[str]) -> None:
        if not isinstance(passphrase, str) or len(passphrase) < self.min_passphrase_length:
            raise TrackerError(
                f"Passphrase must be at least {self.min_passphrase_length} characters."
            )
        if confirm is not None and confirm != passphrase:
            raise TrackerError("Passphrases do not match.")

    def unlock(self, passphrase: str, confirm: Optional[str] = None, now: Optional[datetime] = None) -> StoreState:
        """
        Unlock (creating or migrating the store when needed).

        Args:
            confirm: repeat of the passphrase; checked only when the store is
                not yet encrypted (creation / migration)

        Returns:
            The state the store was in before unlocking

        Raises:
            TrackerError: passphrase too short / confirmation mismatch
            WrongPassphrase: passphrase rejected (counted by the throttle)
        """
        with self._state_lock:
            if self.is_unlocked:
                raise TrackerAlreadyUnlockedError("Tracker is already unlocked. Call lock() first.")

            previous_state = self.store.detect_state()
            self._validate_passphrase(
                passphrase,
                confirm if previous_state is not StoreState.ENCRYPTED else None
            )

            self.throttle.wait()
            try:
                session = self.store.unlock(passphrase)
            except WrongPassphrase:
                self.throttle.record_failure()
                raise

            self.throttle.reset()
            self._session = session
            self._repository = AccountRepository(session)

            try:
                try:
                    import_pending_accounts(self._repository, self.blob_store, now)
                except (BlobStoreError, PersistenceFailure, DatabaseError, ValidationError) as e:
                    warnings.warn(f"Pending account import failed: {e}", RuntimeWarning)
                self.refresh_summary(now)
            except Exception:
                # never leave a half-initialised session unlocked
                self.lock()
                raise
            return previous_state

    def refresh_summary(self, now: Optional[datetime] = None) -> Dict:
        """Recompute the overdue cache read by the notification scheduler."""
        return publish_overdue_summary(self.repository, self.blob_store, now)

    def change_passphrase(self, new_passphrase: str, confirm: Optional[str] = None) -> None:
        with self._state_lock:
            self._check_unlocked()
            self._validate_passphrase(new_passphrase, confirm)
            self._session.change_passphrase(new_passphrase)

    def lock(self) -> bool:
        with self._state_lock:
            if self._session is not None:
                self._session.lock()
            self._session = None
            self._repository = None
            return True
