from __future__ import annotations

import asyncio

from fakes import FakeContactStore, spin_until
from vmidentity.core.models import (
    PHONE_NUMBER_FIELD,
    ContactRecord,
    QueryFailed,
    QueryFound,
    QueryNotFound,
)
from vmidentity.core.query_service import ContactQueryService

MARKER = "voicemail-guid"


def _fetch_once(store: FakeContactStore) -> list:
    results: list = []

    async def scenario() -> None:
        service = ContactQueryService(store)
        handle = service.fetch_by_identity_marker(MARKER, results.append)
        assert service.pending is handle
        await handle.wait()
        assert service.pending is None

    asyncio.run(scenario())
    return results


def test_found_delivers_contact_and_numbers() -> None:
    store = FakeContactStore([ContactRecord(contact_id=7, phone_numbers=("1234", "5678"))])

    results = _fetch_once(store)

    assert results == [QueryFound(contact_id=7, phone_numbers=("1234", "5678"))]
    contact_filter, fields = store.calls[0]
    assert contact_filter.value == MARKER
    assert PHONE_NUMBER_FIELD in fields


def test_first_contact_wins_when_store_returns_several() -> None:
    store = FakeContactStore(
        [
            ContactRecord(contact_id=1, phone_numbers=("111",)),
            ContactRecord(contact_id=2, phone_numbers=("222",)),
        ]
    )

    assert _fetch_once(store) == [QueryFound(contact_id=1, phone_numbers=("111",))]


def test_empty_result_is_not_found() -> None:
    assert _fetch_once(FakeContactStore()) == [QueryNotFound()]


def test_contact_without_id_is_not_found() -> None:
    store = FakeContactStore([ContactRecord(contact_id=None, phone_numbers=("5001",))])

    assert _fetch_once(store) == [QueryNotFound()]


def test_store_error_is_reported_as_failure() -> None:
    results = _fetch_once(FakeContactStore(error=ConnectionError("contact store unavailable")))

    assert results == [QueryFailed(reason="contact store unavailable")]


def test_superseded_query_never_completes() -> None:
    store = FakeContactStore(manual=True)
    first_results: list = []
    second_results: list = []

    async def scenario() -> None:
        service = ContactQueryService(store)
        first = service.fetch_by_identity_marker(MARKER, first_results.append)
        second = service.fetch_by_identity_marker(MARKER, second_results.append)
        assert first.superseded
        assert service.pending is second

        await spin_until(lambda: store.waiting == 2)
        store.complete(0, [ContactRecord(contact_id=1, phone_numbers=("111",))])
        await first.wait()
        assert service.pending is second

        store.complete(1, [ContactRecord(contact_id=2, phone_numbers=("222",))])
        await second.wait()

    asyncio.run(scenario())

    assert first_results == []
    assert second_results == [QueryFound(contact_id=2, phone_numbers=("222",))]


def test_cancel_drops_in_flight_queries() -> None:
    store = FakeContactStore(manual=True)
    results: list = []

    async def scenario() -> None:
        service = ContactQueryService(store)
        handle = service.fetch_by_identity_marker(MARKER, results.append)
        await spin_until(lambda: store.waiting == 1)
        service.cancel()
        await handle.wait()
        assert service.pending is None
        assert handle.result is None

    asyncio.run(scenario())

    assert results == []
