"""
Rotation status: pure functions of an account and the current instant.
"""

import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from able_account.models import Account, coerce_interval, parse_timestamp, utc_now

DUE_SOON_WINDOW = timedelta(days=7)
SECONDS_PER_DAY = 24 * 60 * 60


class RotationStatus(str, Enum):
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    GOOD = "good"


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utc_now()
    return parse_timestamp(now)

def last_change(account: Account) -> Optional[datetime]:
    return parse_timestamp(account.last_password_change)

def due_date(account: Account) -> Optional[datetime]:
    """last_password_change + refresh_interval_days, or None if never changed."""
    changed = last_change(account)
    if changed is None:
        return None
    return changed + timedelta(days=coerce_interval(account.refresh_interval_days))

def status(account: Account, now: Optional[datetime] = None) -> RotationStatus:
    due = due_date(account)
    if due is None:
        return RotationStatus.OVERDUE

    now = _now(now)
    if now >= due:
        return RotationStatus.OVERDUE
    if now >= due - DUE_SOON_WINDOW:
        return RotationStatus.DUE_SOON
    return RotationStatus.GOOD

def days_until_due(account: Account, now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left (rounded up); negative once overdue. None if never changed."""
    due = due_date(account)
    if due is None:
        return None
    delta = (due - _now(now)).total_seconds()
    return math.ceil(delta / SECONDS_PER_DAY)

def days_since_change(account: Account, now: Optional[datetime] = None) -> Optional[int]:
    """Whole days since the last change (rounded down). None if never changed."""
    changed = last_change(account)
    if changed is None:
        return None
    delta = (_now(now) - changed).total_seconds()
    return math.floor(delta / SECONDS_PER_DAY)

def status_label(value: RotationStatus) -> str:
    return {
        RotationStatus.OVERDUE: "Password overdue for refresh",
        RotationStatus.DUE_SOON: "Password refresh due soon",
        RotationStatus.GOOD: "Password recently changed",
    }.get(value, "")
