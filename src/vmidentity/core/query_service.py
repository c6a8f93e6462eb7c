"""Single-flight contact lookup by identity marker.

The service keeps at most one logically outstanding query. Starting a new
query supersedes the previous one: the superseded query may still finish in
the background, but its completion is never delivered.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from vmidentity.core.models import (
    PHONE_NUMBER_FIELD,
    ContactRecord,
    IdentityMarkerFilter,
    QueryFailed,
    QueryFound,
    QueryNotFound,
    QueryResult,
)
from vmidentity.core.ports import ContactStorePort

LOGGER = logging.getLogger(__name__)

QueryCompletion = Callable[[QueryResult], None]


@dataclass
class QueryHandle:
    """Tracks one issued query."""

    request_id: int
    marker: str
    superseded: bool = False
    result: Optional[QueryResult] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> None:
        """Wait for the query task to finish; never raises."""

        if self.task is None:
            return
        await asyncio.wait({self.task})


def _result_from_contacts(contacts: List[ContactRecord]) -> QueryResult:
    if not contacts:
        return QueryNotFound()
    if len(contacts) > 1:
        # There should be just one voicemail contact (it can have several numbers).
        LOGGER.warning("Expected one voicemail contact, store returned %s; using the first", len(contacts))
    contact = contacts[0]
    if contact.contact_id is None:
        # Numbers are only ever held together with an identity.
        LOGGER.warning("Voicemail contact returned without an id; treating it as not found")
        return QueryNotFound()
    return QueryFound(contact_id=contact.contact_id, phone_numbers=tuple(contact.phone_numbers))


class ContactQueryService:
    """Issues asynchronous "fetch contact by identity marker" queries."""

    def __init__(self, store: ContactStorePort) -> None:
        self._store = store
        self._next_request_id = 0
        self._pending: Optional[QueryHandle] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> Optional[QueryHandle]:
        """The query whose completion will be delivered, if one is in flight."""

        return self._pending

    def fetch_by_identity_marker(self, marker: str, completion: QueryCompletion) -> QueryHandle:
        """Start a query and invoke ``completion`` exactly once when it finishes.

        Must be called from a running event loop.
        """

        previous = self._pending
        if previous is not None and not previous.done:
            previous.superseded = True
            LOGGER.debug("Query %s superseded", previous.request_id)

        self._next_request_id += 1
        handle = QueryHandle(request_id=self._next_request_id, marker=marker)
        task = asyncio.get_running_loop().create_task(self._execute(handle, completion))
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._pending = handle
        LOGGER.debug("Query %s started for marker %s", handle.request_id, marker)
        return handle

    async def _execute(self, handle: QueryHandle, completion: QueryCompletion) -> None:
        result: QueryResult
        try:
            contacts = await self._store.query(
                IdentityMarkerFilter(handle.marker),
                frozenset({PHONE_NUMBER_FIELD}),
            )
        except asyncio.CancelledError:
            handle.superseded = True
            raise
        except Exception as exc:
            LOGGER.warning("Voicemail contact query %s failed: %s", handle.request_id, exc)
            result = QueryFailed(reason=str(exc) or type(exc).__name__)
        else:
            result = _result_from_contacts(list(contacts))
        finally:
            if self._pending is handle:
                self._pending = None

        handle.result = result
        if handle.superseded:
            LOGGER.debug("Dropping result of superseded query %s", handle.request_id)
            return
        LOGGER.debug("Query %s finished: %s", handle.request_id, result)
        completion(result)

    def cancel(self) -> None:
        """Cancel every in-flight query; no completion is delivered for them."""

        for task in list(self._tasks):
            task.cancel()
        self._pending = None
