"""
Able Account - encrypted local tracker for password rotation reminders.
"""

from able_account.models import Account, AccountUpdate, Category, ValidationError
from able_account.status import RotationStatus
from able_account.store_state import (
    CorruptData,
    EncryptedStore,
    PersistenceFailure,
    SessionLockedError,
    StoreError,
    StoreState,
    UnlockedSession,
    WrongPassphrase,
)
from able_account.repository import AccountRepository
from able_account.tracker import AccountTracker, TrackerError, TrackerLockedError

__version__ = "0.1.0"
