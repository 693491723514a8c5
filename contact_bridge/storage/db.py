"""
SQLite contact store.

Holds the raw contact records that are imported through the API or CLI and
later pushed to CardDAV. Records keep whatever field shape they arrived in;
normalization happens at sync time.
"""

import json
import sqlite3
import threading
import uuid
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from typing import Any, Optional

SCHEMA = """
CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class ContactStoreError(Exception):
    """Raised when a contact store operation fails."""

    pass


class ContactStore:
    """
    SQLite store for raw contact records.

    The store must be initialized explicitly before use; callers hold the
    instance and pass it to whatever needs it.

    Usage:
        store = ContactStore('/path/to/contacts.db')
        store.initialize()

        count = store.batch_insert([{"name": "Jane Doe", "phone": "555-1234"}])
        records = store.fetch_by_ids(["a1b2c3"])

        # Or use in-memory for testing:
        store = ContactStore(':memory:')
        store.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None
        # Serializes transactions on the shared in-memory connection
        self._shared_lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        In-memory databases share one connection so the schema persists;
        file databases open a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:", check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on error. Transactions on the shared
        in-memory connection run one at a time.

        Yields:
            sqlite3.Connection: Database connection
        """
        is_shared = self.db_path == ":memory:"
        if is_shared:
            self._shared_lock.acquire()
        try:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                if not is_shared:
                    conn.close()
        finally:
            if is_shared:
                self._shared_lock.release()

    def initialize(self) -> "ContactStore":
        """
        Create the schema if needed.

        Returns:
            The store itself, ready for use

        Raises:
            ContactStoreError: If the database cannot be opened
        """
        try:
            with self.connection() as conn:
                conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise ContactStoreError(f"Failed to initialize contact store: {e}") from e
        return self

    def batch_insert(self, records: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert records in a single transaction with generated ids.

        Args:
            records: Raw contact records

        Returns:
            Number of records inserted

        Raises:
            ContactStoreError: If the insert fails (nothing is written)
        """
        try:
            rows = []
            for record in records:
                data = {key: value for key, value in record.items() if key != "id"}
                rows.append((uuid.uuid4().hex, json.dumps(data)))

            with self.connection() as conn:
                conn.executemany("INSERT INTO contacts (id, data) VALUES (?, ?)", rows)
        except (sqlite3.Error, TypeError) as e:
            raise ContactStoreError(f"Failed to insert contacts: {e}") from e

        return len(rows)

    def fetch_by_ids(self, ids: Iterable[str]) -> list[dict[str, Any]]:
        """
        Fetch records by id.

        Args:
            ids: Record ids

        Returns:
            Records as {"id": ..., **fields} in the requested order.
            Unknown ids are omitted.

        Raises:
            ContactStoreError: If the query fails
        """
        ids = [str(i) for i in ids]
        if not ids:
            return []

        placeholders = ",".join("?" for _ in ids)
        try:
            with self.connection() as conn:
                cursor = conn.execute(
                    f"SELECT id, data FROM contacts WHERE id IN ({placeholders})", ids
                )
                rows = {row["id"]: row["data"] for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise ContactStoreError(f"Failed to fetch contacts: {e}") from e

        return [{"id": i, **json.loads(rows[i])} for i in ids if i in rows]

    def get(self, contact_id: str) -> Optional[dict[str, Any]]:
        """Fetch a single record, or None if it does not exist."""
        records = self.fetch_by_ids([contact_id])
        return records[0] if records else None

    def count(self) -> int:
        """Get the number of stored records."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM contacts")
            return cursor.fetchone()[0]

    def __repr__(self) -> str:
        return f"ContactStore(db_path={self.db_path!r})"
