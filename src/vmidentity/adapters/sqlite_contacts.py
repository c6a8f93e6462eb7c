"""SQLite contact store adapter.

Implements the core ContactStorePort using a simple SQLite database.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import contextmanager
from typing import FrozenSet, Iterable, Iterator, List, Optional

from vmidentity.core.models import PHONE_NUMBER_FIELD, ContactRecord, IdentityMarkerFilter


class SQLiteContactStore:
    """Thin SQLite wrapper that satisfies the ContactStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            # Commit on success, roll back on error, always close.
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - contacts: one row per contact, optionally tagged with a guid
        - phone_numbers: ordered phone numbers of each contact
        """

        with self._connect() as conn:
            # Fields:
            # - id: local contact id handed out to callers
            # - display_name: human-readable label, optional
            # - guid: identity marker; the voicemail contact carries a fixed value
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contacts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT,
                    guid TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_contacts_guid ON contacts (guid)")
            # position keeps numbers in the order they were stored on the card.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS phone_numbers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    contact_id INTEGER NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    number TEXT NOT NULL
                )
                """
            )

    def add_contact(
        self,
        phone_numbers: Iterable[str],
        guid: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> int:
        """Insert a contact with its numbers and return its id."""

        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO contacts (display_name, guid) VALUES (?, ?)",
                (display_name, guid),
            )
            contact_id = int(cur.lastrowid)
            self._insert_numbers(conn, contact_id, phone_numbers)
        return contact_id

    def replace_phone_numbers(self, contact_id: int, phone_numbers: Iterable[str]) -> None:
        """Replace all numbers of a contact."""

        with self._connect() as conn:
            conn.execute("DELETE FROM phone_numbers WHERE contact_id = ?", (contact_id,))
            self._insert_numbers(conn, contact_id, phone_numbers)

    def delete_contact(self, contact_id: int) -> bool:
        """Delete a contact and its numbers; return False if it did not exist."""

        with self._connect() as conn:
            cur = conn.execute("DELETE FROM contacts WHERE id = ?", (contact_id,))
            return cur.rowcount > 0

    def upsert_by_guid(
        self,
        guid: str,
        phone_numbers: Iterable[str],
        display_name: Optional[str] = None,
    ) -> int:
        """Replace the numbers of the first contact tagged with ``guid``, creating it if needed."""

        numbers = list(phone_numbers)
        existing = self.find_by_guid(guid, with_numbers=False)
        if not existing:
            return self.add_contact(numbers, guid=guid, display_name=display_name)
        contact_id = int(existing[0].contact_id)
        self.replace_phone_numbers(contact_id, numbers)
        return contact_id

    def find_by_guid(self, guid: str, with_numbers: bool = True) -> List[ContactRecord]:
        """Return contacts tagged with ``guid`` ordered by id."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, display_name FROM contacts WHERE guid = ? ORDER BY id",
                (guid,),
            ).fetchall()
            records: List[ContactRecord] = []
            for row in rows:
                numbers: tuple[str, ...] = ()
                if with_numbers:
                    number_rows = conn.execute(
                        "SELECT number FROM phone_numbers WHERE contact_id = ? ORDER BY position, id",
                        (row["id"],),
                    ).fetchall()
                    numbers = tuple(number_row["number"] for number_row in number_rows)
                records.append(
                    ContactRecord(
                        contact_id=int(row["id"]),
                        phone_numbers=numbers,
                        display_name=row["display_name"],
                    )
                )
        return records

    async def query(
        self,
        contact_filter: IdentityMarkerFilter,
        requested_fields: FrozenSet[str],
    ) -> List[ContactRecord]:
        """ContactStorePort lookup; SQLite work runs in a worker thread."""

        return await asyncio.to_thread(
            self.find_by_guid,
            contact_filter.value,
            PHONE_NUMBER_FIELD in requested_fields,
        )

    @staticmethod
    def _insert_numbers(conn: sqlite3.Connection, contact_id: int, phone_numbers: Iterable[str]) -> None:
        conn.executemany(
            "INSERT INTO phone_numbers (contact_id, position, number) VALUES (?, ?, ?)",
            [(contact_id, position, number) for position, number in enumerate(phone_numbers)],
        )
