"""
Able Account Backup Codec
Versioned JSON export / validation / import of account records.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from able_account.config import APP_IDENTIFIER, BACKUP_VERSION
from able_account.models import (
    DEFAULT_INTERVAL_DAYS,
    MAX_NAME_LEN,
    MAX_URL_LEN,
    MAX_USERNAME_LEN,
    Category,
    ValidationError,
    clean_text,
    clean_timestamp,
    coerce_interval,
    to_iso,
    utc_now,
)
from able_account.repository import AccountRepository

MAX_BACKUP_SIZE = 5 * 1024 * 1024  # 5 MB
IMPORT_MODES = ("merge", "replace")


class BackupValidationError(ValueError):
    """Raised when a backup document is rejected before import"""
    pass


@dataclass
class ImportResult:
    added: int
    skipped: int


def dedup_key(service_name: Any, url: Any) -> str:
    name = (service_name or "").strip().lower() if isinstance(service_name, str) else ""
    link = (url or "").strip().lower() if isinstance(url, str) else ""
    return f"{name}|{link}"


"""
==========================================================================
Export
==========================================================================
"""

def export_document(repository: AccountRepository, now: Optional[datetime] = None) -> Dict:
    """
    Build the backup document. Every field carries a concrete default so no
    null ever reaches the file.
    """
    accounts = []
    for account in repository.list():
        accounts.append({
            "service_name": account.service_name or "",
            "url": account.url or "",
            "username": account.username or "",
            "category": account.category.value if account.category else Category.GENERAL.value,
            "refresh_interval_days": account.refresh_interval_days or DEFAULT_INTERVAL_DAYS,
            "last_password_change": account.last_password_change or "",
            "date_added": account.date_added or "",
            "notes": account.notes or "",
        })

    return {
        "version": BACKUP_VERSION,
        "app": APP_IDENTIFIER,
        "exported_at": to_iso(now or utc_now()),
        "count": len(accounts),
        "accounts": accounts,
    }


"""
==========================================================================
Validation
==========================================================================
"""

def validate_document(document: Any) -> Optional[str]:
    """
    Check a parsed backup document.

    Returns:
        The first problem found as a human-readable message, or None.

    Note:
        Invalid `category` and `refresh_interval_days` values are not errors;
        they are coerced in place (to 'general' / 90).
    """
    if not isinstance(document, dict):
        return "Invalid backup file: expected a JSON object"
    if document.get("app") != APP_IDENTIFIER:
        return "Invalid backup file: not an Able Account backup"
    version = document.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version > BACKUP_VERSION:
        return "Unsupported backup version"

    accounts = document.get("accounts")
    if not isinstance(accounts, list) or not accounts:
        return "Backup contains no accounts"

    for index, record in enumerate(accounts, start=1):
        prefix = f"Account #{index}"
        if not isinstance(record, dict):
            return f"{prefix}: invalid record"

        name = record.get("service_name")
        if not isinstance(name, str) or not name.strip():
            return f"{prefix}: missing service_name"
        if len(name) > MAX_NAME_LEN:
            return f"{prefix}: service_name exceeds {MAX_NAME_LEN} characters"

        for field_name, limit in (("url", MAX_URL_LEN), ("username", MAX_USERNAME_LEN)):
            value = record.get(field_name)
            if value is None:
                continue
            if not isinstance(value, str):
                return f"{prefix}: {field_name} must be text"
            if len(value) > limit:
                return f"{prefix}: {field_name} exceeds {limit} characters"

        for field_name in ("last_password_change", "date_added"):
            try:
                clean_timestamp(record.get(field_name), field_name)
            except ValidationError:
                return f"{prefix}: {field_name} is not a valid date"

        record["category"] = Category.coerce(record.get("category")).value
        record["refresh_interval_days"] = coerce_interval(record.get("refresh_interval_days"))

    return None


"""
==========================================================================
Import
==========================================================================
"""

def import_accounts(
    repository: AccountRepository,
    accounts: List[Dict[str, Any]],
    mode: str = "merge"
) -> ImportResult:
    """
    Insert backup records into the repository.

    Args:
        mode: 'merge' skips records whose dedup key is already stored or was
              already accepted from this batch; 'replace' clears the store and
              takes the batch as-is.
    """
    if mode not in IMPORT_MODES:
        raise ValueError(f"Unknown import mode: {mode}")

    accepted = []
    skipped = 0
    if mode == "merge":
        seen = {dedup_key(a.service_name, a.url) for a in repository.list()}
        for record in accounts:
            key = dedup_key(record.get("service_name"), record.get("url"))
            if key in seen:
                skipped += 1
                continue
            seen.add(key)
            accepted.append(record)
    else:
        accepted = list(accounts)

    records = []
    for r in accepted:
        record = {
            "service_name": clean_text(r.get("service_name"), MAX_NAME_LEN),
            "url": r.get("url"),
            "username": r.get("username"),
            "category": r.get("category"),
            "refresh_interval_days": r.get("refresh_interval_days"),
            "date_added": r.get("date_added"),
            "notes": r.get("notes"),
        }
        # "" is how export writes a never-changed account; absent falls back to date_added
        if "last_password_change" in r:
            record["last_password_change"] = r["last_password_change"]
        records.append(record)
    added = repository.import_many(records, replace=(mode == "replace"))
    return ImportResult(added=added, skipped=skipped)

def import_document(
    repository: AccountRepository,
    document: Any,
    mode: str = "merge"
) -> ImportResult:
    """Validate then import; nothing is written when validation fails."""
    error = validate_document(document)
    if error:
        raise BackupValidationError(error)
    return import_accounts(repository, document["accounts"], mode)


"""
==========================================================================
Files
==========================================================================
"""

def default_backup_filename(now: Optional[datetime] = None) -> str:
    return f"able-account-backup-{(now or utc_now()).date().isoformat()}.json"

def write_backup_file(document: Dict, path: str) -> str:
    """Write the document as pretty JSON and fsync it."""
    target = Path(path)
    try:
        with open(target, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise RuntimeError(f"Backup failed: {e}") from e
    return str(target)

def read_backup_file(path: str) -> Any:
    """
    Load a backup document from disk.

    Raises:
        BackupValidationError: wrong extension, too large, or not JSON
    """
    target = Path(path)
    if target.suffix.lower() != ".json":
        raise BackupValidationError("Please select a .json backup file")
    try:
        if target.stat().st_size > MAX_BACKUP_SIZE:
            raise BackupValidationError("File too large (max 5MB)")
        with open(target, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise BackupValidationError(f"Could not access backup file: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BackupValidationError("Invalid JSON file")
