"""
Reminder plumbing between the repository and its outside collaborators:
the badge/notification scheduler (reads the overdue cache) and the signup
detector (writes pending accounts).
"""

import warnings
from datetime import datetime
from typing import Dict, List, Optional

from able_account.blob_store import BlobStore, BlobStoreError
from able_account.models import (
    DEFAULT_INTERVAL_DAYS,
    MAX_URL_LEN,
    Category,
    clean_text,
    normalize_timestamp,
    to_iso,
    utc_now,
)
from able_account.repository import AccountRepository
from able_account.status import RotationStatus, status

OVERDUE_COUNT_KEY = "overdueCount"
OVERDUE_NAMES_KEY = "overdueNames"
PENDING_ACCOUNTS_KEY = "pendingAccounts"
AUTO_DETECTED_NOTE = "Auto-detected signup"


def publish_overdue_summary(
    repository: AccountRepository,
    blob_store: BlobStore,
    now: Optional[datetime] = None
) -> Dict:
    """
    Recompute overdue accounts and push count + names to the blob store.

    Returns:
        {"count": int, "names": [str, ...]}
    """
    now = now or utc_now()
    names = [
        a.service_name for a in repository.list()
        if status(a, now) is RotationStatus.OVERDUE
    ]
    summary = {"count": len(names), "names": names}
    try:
        blob_store.set(OVERDUE_COUNT_KEY, summary["count"])
        blob_store.set(OVERDUE_NAMES_KEY, summary["names"])
    except BlobStoreError as e:
        warnings.warn(f"Failed to publish overdue summary: {e}", RuntimeWarning)
    return summary

def reminder_message(count: int) -> str:
    if count == 1:
        return "1 account needs a password refresh."
    return f"{count} accounts need a password refresh."

def import_pending_accounts(
    repository: AccountRepository,
    blob_store: BlobStore,
    now: Optional[datetime] = None
) -> int:
    """
    Add detected signups that are not tracked yet, then clear the pending list.

    A pending entry is skipped when its URL (lower-cased) is already tracked.
    Entries without a service name or with non-string url/username are dropped.

    Returns:
        Number of accounts added
    """
    pending = blob_store.get(PENDING_ACCOUNTS_KEY)
    if not pending:
        return 0
    if not isinstance(pending, list):
        warnings.warn("Ignoring malformed pending account list", RuntimeWarning)
        blob_store.remove(PENDING_ACCOUNTS_KEY)
        return 0

    tracked_urls = {(a.url or "").lower() for a in repository.list()}
    records: List[Dict] = []
    for item in pending:
        if not isinstance(item, dict):
            continue
        name = item.get("service_name")
        if not isinstance(name, str) or not name.strip():
            continue
        url = item.get("url") or ""
        username = item.get("username") or ""
        if not isinstance(url, str) or not isinstance(username, str):
            continue
        url = clean_text(url, MAX_URL_LEN)
        if url.lower() in tracked_urls:
            continue
        tracked_urls.add(url.lower())
        records.append({
            "service_name": name,
            "url": url,
            "username": username,
            "category": Category.GENERAL.value,
            "refresh_interval_days": DEFAULT_INTERVAL_DAYS,
            "last_password_change": normalize_timestamp(item.get("detected_at")) or to_iso(now or utc_now()),
            "notes": AUTO_DETECTED_NOTE,
        })

    added = repository.import_many(records) if records else 0
    blob_store.remove(PENDING_ACCOUNTS_KEY)
    return added
