"""
Able Account Database Image
In-memory SQLite database that is serialized to / deserialized from bytes.
The byte image is what gets encrypted into the blob store.
"""

import sqlite3

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service_name TEXT NOT NULL,
    url TEXT,
    username TEXT,
    category TEXT DEFAULT 'general',
    refresh_interval_days INTEGER DEFAULT 90,
    last_password_change TEXT,
    date_added TEXT,
    notes TEXT
);
"""


class DatabaseError(Exception):
    """Base Exception for database image operations"""
    pass


class DatabaseImageError(DatabaseError):
    """Raised when a byte image is not a usable accounts database"""
    pass


def _open_memory() -> sqlite3.Connection:
    # check_same_thread=False: access is serialized by the session lock
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn

def create_database() -> sqlite3.Connection:
    """
    Create an empty in-memory database with the base schema.
    """
    conn = _open_memory()
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    except sqlite3.Error as e:
        conn.close()
        raise DatabaseError(f"Critical: Database initialization failed: {e}") from e
    return conn

def integrity_check(conn: sqlite3.Connection) -> int:
    """
    Read-only integrity check against the expected schema.

    Returns:
        Number of account rows

    Raises:
        DatabaseImageError: if the accounts table cannot be queried
    """
    try:
        row = conn.execute(
            "SELECT COUNT(*), MAX(id), MIN(service_name) FROM accounts"
        ).fetchone()
        return int(row[0])
    except sqlite3.Error as e:
        raise DatabaseImageError(f"Integrity check failed: {e}") from e

def load_database(image: bytes, ensure_schema: bool = False) -> sqlite3.Connection:
    """
    Deserialize a SQLite byte image into a fresh in-memory connection.

    Args:
        image: raw SQLite database file contents
        ensure_schema: create the accounts table if the image lacks it
            (used for legacy images, never for decrypted ones)

    Raises:
        DatabaseImageError: image is empty, not SQLite, or fails the integrity check
    """
    if not image:
        raise DatabaseImageError("Database image is empty")

    conn = _open_memory()
    try:
        conn.deserialize(bytes(image))
        if ensure_schema:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        integrity_check(conn)
        return conn
    except DatabaseImageError:
        conn.close()
        raise
    except sqlite3.Error as e:
        conn.close()
        raise DatabaseImageError(f"Failed to load database image: {e}") from e

def dump_database(conn: sqlite3.Connection) -> bytes:
    """Serialize the whole in-memory database to bytes."""
    try:
        conn.commit()
        return conn.serialize()
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to serialize database: {e}") from e
