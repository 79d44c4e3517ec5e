"""
Able Account Record Repository
CRUD, search and status filtering over the unlocked session's in-memory
database. Every mutation is persisted (encrypted) before it returns.
"""

import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from able_account.account_db import DatabaseError
from able_account.models import (
    MAX_NOTES_LEN,
    MAX_URL_LEN,
    MAX_USERNAME_LEN,
    UNSET,
    Account,
    AccountUpdate,
    Category,
    clean_service_name,
    clean_text,
    clean_timestamp,
    coerce_interval,
    to_iso,
    utc_now,
)
from able_account.status import RotationStatus, days_since_change, days_until_due, status
from able_account.store_state import UnlockedSession

SORT_ORDERS = ("name_asc", "name_desc", "urgency", "oldest_change", "date_added")
STATUS_FILTERS = ("all",) + tuple(s.value for s in RotationStatus)

_SELECT_COLUMNS = """
    id, service_name, url, username, category, refresh_interval_days,
    last_password_change, date_added, notes
"""


class AccountRepository:
    """
    Repository over the `accounts` table of an unlocked session.

    Persistence contract:
        - Mutations run under the session write lock, then call persist()
        - If persist() fails the in-memory change stays and PersistenceFailure
          propagates; callers may retry session.persist()
    """

    def __init__(self, session: UnlockedSession):
        self.session = session

    def _conn(self) -> sqlite3.Connection:
        return self.session.connection

    @staticmethod
    def _prepare_row(fields: Dict[str, Any]) -> tuple:
        """
        Trim, clamp and default one record for INSERT.

        A missing last_password_change defaults to date_added; an explicit
        None or "" keeps the account as never changed.
        """
        date_added = clean_timestamp(fields.get("date_added"), "date_added") or to_iso(utc_now())
        last_change = fields.get("last_password_change", UNSET)
        if last_change is UNSET:
            last_change = date_added
        else:
            last_change = clean_timestamp(last_change, "last_password_change")
        return (
            clean_service_name(fields.get("service_name")),
            clean_text(fields.get("url"), MAX_URL_LEN),
            clean_text(fields.get("username"), MAX_USERNAME_LEN),
            Category.coerce(fields.get("category")).value,
            coerce_interval(fields.get("refresh_interval_days")),
            last_change,
            date_added,
            clean_text(fields.get("notes"), MAX_NOTES_LEN),
        )

    def _insert(self, conn: sqlite3.Connection, row: tuple) -> int:
        cursor = conn.execute(
            """
            INSERT INTO accounts (
                service_name, url, username, category, refresh_interval_days,
                last_password_change, date_added, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            row
        )
        return cursor.lastrowid

    # ============ Mutations ============

    def add(
        self,
        service_name: str,
        url: Optional[str] = None,
        username: Optional[str] = None,
        category: Optional[str] = None,
        refresh_interval_days: Optional[int] = None,
        last_password_change: Any = UNSET,
        notes: Optional[str] = None,
        date_added: Optional[str] = None
    ) -> int:
        """
        Insert a new account and persist.

        Args:
            last_password_change: omitted means "changed when added"; None or
                "" records the account as never changed

        Returns:
            The id assigned to the new account

        Raises:
            ValidationError: service_name empty after trimming, or a date
                that is not ISO-8601
        """
        row = self._prepare_row({
            "service_name": service_name,
            "url": url,
            "username": username,
            "category": category,
            "refresh_interval_days": refresh_interval_days,
            "last_password_change": last_password_change,
            "notes": notes,
            "date_added": date_added,
        })
        with self.session.write_lock:
            conn = self._conn()
            new_id = self._insert(conn, row)
            conn.commit()
            self.session.persist()
        return new_id

    def update(self, account_id: int, changes: AccountUpdate) -> int:
        """
        Apply a partial update.

        Returns:
            Rows affected (0 for an unknown id or an empty change set).
            An empty change set does not persist.
        """
        values = changes.changes()
        if not values:
            return 0

        assignments = ", ".join(f"{column} = ?" for column in values)
        params = list(values.values()) + [int(account_id)]

        with self.session.write_lock:
            conn = self._conn()
            cursor = conn.execute(f"UPDATE accounts SET {assignments} WHERE id = ?", params)
            count = cursor.rowcount
            conn.commit()
            self.session.persist()
        return count

    def delete(self, account_id: int) -> bool:
        """Delete an account; persists whether or not the row existed."""
        with self.session.write_lock:
            conn = self._conn()
            cursor = conn.execute("DELETE FROM accounts WHERE id = ?", (int(account_id),))
            conn.commit()
            self.session.persist()
        return cursor.rowcount > 0

    def mark_refreshed(self, account_id: int, now: Optional[datetime] = None) -> int:
        """Set last_password_change to now; nothing else changes."""
        stamp = to_iso(now or utc_now())
        with self.session.write_lock:
            conn = self._conn()
            cursor = conn.execute(
                "UPDATE accounts SET last_password_change = ? WHERE id = ?",
                (stamp, int(account_id))
            )
            conn.commit()
            self.session.persist()
        return cursor.rowcount

    def import_many(self, records: Iterable[Dict[str, Any]], replace: bool = False) -> int:
        """
        Insert a batch of records with a single persist.

        Args:
            records: dicts with Account fields (id is ignored)
            replace: delete every existing account first

        Returns:
            Number of inserted rows
        """
        rows = [self._prepare_row(record) for record in records]
        with self.session.write_lock:
            conn = self._conn()
            try:
                if replace:
                    conn.execute("DELETE FROM accounts")
                for row in rows:
                    self._insert(conn, row)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise DatabaseError(f"Import failed: {e}") from e
            self.session.persist()
        return len(rows)

    def clear(self) -> None:
        with self.session.write_lock:
            conn = self._conn()
            conn.execute("DELETE FROM accounts")
            conn.commit()
            self.session.persist()

    # ============ Queries ============

    def get(self, account_id: int) -> Optional[Account]:
        row = self._conn().execute(
            f"SELECT {_SELECT_COLUMNS} FROM accounts WHERE id = ?",
            (int(account_id),)
        ).fetchone()
        return Account.from_row(row) if row else None

    def list(self) -> List[Account]:
        """
        All accounts ordered by service_name, case-insensitive.

        Sorted in Python with casefold(): SQLite's NOCASE only folds ASCII.
        """
        cursor = self._conn().execute(
            f"SELECT {_SELECT_COLUMNS} FROM accounts ORDER BY id ASC"
        )
        accounts = [Account.from_row(row) for row in cursor.fetchall()]
        return sorted(accounts, key=lambda a: (a.service_name.casefold(), a.id))

    def search(self, query: str) -> List[Account]:
        """
        Case-insensitive substring match on service_name, url and username.

        Matching uses casefold() on both sides (LIKE only folds ASCII, so
        "ärzte" would miss "Ärztekammer"). Wildcard characters are literal.
        """
        needle = (query or "").strip().casefold()
        if not needle:
            return self.list()

        return [
            a for a in self.list()
            if any(needle in (value or "").casefold() for value in (a.service_name, a.url, a.username))
        ]

    def by_status(self, wanted: RotationStatus, now: Optional[datetime] = None) -> List[Account]:
        wanted = RotationStatus(wanted)
        now = now or utc_now()
        return [a for a in self.list() if status(a, now) is wanted]

    def overdue_count(self, now: Optional[datetime] = None) -> int:
        return len(self.by_status(RotationStatus.OVERDUE, now))


# ============ View helpers ============

def filter_accounts(
    accounts: List[Account],
    status_filter: str = "all",
    now: Optional[datetime] = None
) -> List[Account]:
    if status_filter == "all":
        return list(accounts)
    wanted = RotationStatus(status_filter)
    now = now or utc_now()
    return [a for a in accounts if status(a, now) is wanted]

def sort_accounts(
    accounts: List[Account],
    order: str = "name_asc",
    now: Optional[datetime] = None
) -> List[Account]:
    """
    Sort a list of accounts for display.

    Accounts that were never changed sort as the most urgent / oldest.
    """
    if order not in SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {order}")

    now = now or utc_now()
    if order == "name_asc":
        return sorted(accounts, key=lambda a: a.service_name.casefold())
    if order == "name_desc":
        return sorted(accounts, key=lambda a: a.service_name.casefold(), reverse=True)
    if order == "urgency":
        def urgency(account):
            days = days_until_due(account, now)
            return float("-inf") if days is None else days
        return sorted(accounts, key=urgency)
    if order == "oldest_change":
        def age(account):
            days = days_since_change(account, now)
            return float("inf") if days is None else days
        return sorted(accounts, key=age, reverse=True)
    # date_added: newest first
    return sorted(accounts, key=lambda a: a.date_added or "", reverse=True)
