from __future__ import annotations

import asyncio
from pathlib import Path

from vmidentity.adapters.sqlite_contacts import SQLiteContactStore
from vmidentity.core.models import PHONE_NUMBER_FIELD, ContactRecord, IdentityMarkerFilter

GUID = "voicemail-guid"


def _store(tmp_path: Path) -> SQLiteContactStore:
    store = SQLiteContactStore(str(tmp_path / "contacts.db"))
    store.init_db()
    return store


def test_query_returns_tagged_contact_with_ordered_numbers(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_contact(["555 0100"], display_name="Alice")
    contact_id = store.add_contact(["+358401234567", "040 7654321"], guid=GUID, display_name="Voicemail")

    records = asyncio.run(store.query(IdentityMarkerFilter(GUID), frozenset({PHONE_NUMBER_FIELD})))

    assert records == [
        ContactRecord(
            contact_id=contact_id,
            phone_numbers=("+358401234567", "040 7654321"),
            display_name="Voicemail",
        )
    ]


def test_query_without_phone_field_skips_numbers(tmp_path: Path) -> None:
    store = _store(tmp_path)
    contact_id = store.add_contact(["1234"], guid=GUID)

    records = asyncio.run(store.query(IdentityMarkerFilter(GUID), frozenset()))

    assert records == [ContactRecord(contact_id=contact_id, phone_numbers=())]


def test_query_for_unknown_marker_is_empty(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_contact(["1234"], guid="someone-else")

    assert asyncio.run(store.query(IdentityMarkerFilter(GUID), frozenset({PHONE_NUMBER_FIELD}))) == []


def test_upsert_replaces_numbers_of_existing_contact(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first_id = store.upsert_by_guid(GUID, ["1234"])
    second_id = store.upsert_by_guid(GUID, ["5001", "5002"])

    assert first_id == second_id
    assert store.find_by_guid(GUID)[0].phone_numbers == ("5001", "5002")


def test_delete_contact_removes_it(tmp_path: Path) -> None:
    store = _store(tmp_path)
    contact_id = store.add_contact(["1234"], guid=GUID)

    assert store.delete_contact(contact_id)
    assert not store.delete_contact(contact_id)
    assert store.find_by_guid(GUID) == []
