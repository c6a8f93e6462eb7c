"""Voicemail identity reconciliation.

The resolver correlates marker file notifications with contact store
queries and keeps the latest resolved voicemail identity in memory.

Every watcher event and every query completion is posted to a single
asyncio queue and handled by :meth:`VoicemailIdentityResolver.run`, so state
transitions never interleave. Each issued query gets a new epoch; completions
carrying an older epoch (superseded by a newer query, ``clear()`` or
``close()``) are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from vmidentity.core.config import MatchingConfig, ResolverConfig, WatchConfig
from vmidentity.core.marker_watcher import MarkerFileWatcher
from vmidentity.core.models import (
    EMPTY_SNAPSHOT,
    ContactId,
    DirectoryChanged,
    MarkerFileChanged,
    MarkerTransition,
    QueryCompleted,
    QueryFailed,
    QueryFound,
    QueryNotFound,
    QueryResult,
    ResolverEvent,
    ResolverState,
    VoicemailSnapshot,
    WatchEvent,
)
from vmidentity.core.phone_matching import numbers_match
from vmidentity.core.query_service import ContactQueryService

LOGGER = logging.getLogger(__name__)

SnapshotListener = Callable[[VoicemailSnapshot], None]


class _Shutdown:
    """Sentinel that stops the dispatch loop."""


class VoicemailIdentityResolver:
    """Owns the voicemail snapshot and drives the reconciliation state machine."""

    def __init__(
        self,
        watcher: MarkerFileWatcher,
        query_service: ContactQueryService,
        watch_config: WatchConfig,
        resolver_config: ResolverConfig,
        matching_config: Optional[MatchingConfig] = None,
    ) -> None:
        self._watcher = watcher
        self._query_service = query_service
        self._watch_config = watch_config
        self._config = resolver_config
        self._matching = matching_config or MatchingConfig()

        self._snapshot = EMPTY_SNAPSHOT
        self._state = ResolverState.UNRESOLVED
        self._state_before_query = ResolverState.UNRESOLVED
        self._epoch = 0
        self._events: asyncio.Queue = asyncio.Queue()
        self._listeners: List[SnapshotListener] = []
        self._initialized = False
        self._closed = False

        self._watcher.set_observer(self._on_watch_event)

    # Read side: never blocks and never touches the filesystem or the store.

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def snapshot(self) -> VoicemailSnapshot:
        return self._snapshot

    @property
    def voicemail_numbers(self) -> Tuple[str, ...]:
        return self._snapshot.phone_numbers

    @property
    def epoch(self) -> int:
        return self._epoch

    def current_voicemail_contact_id(self) -> Optional[ContactId]:
        return self._snapshot.contact_id

    def is_voicemail_contact(self, contact_id: ContactId) -> bool:
        snapshot = self._snapshot
        return snapshot.contact_id is not None and snapshot.contact_id == contact_id

    def is_voicemail_number(self, phone_number: str) -> bool:
        for stored in self._snapshot.phone_numbers:
            if numbers_match(
                phone_number,
                stored,
                default_region=self._matching.default_region,
                suffix_length=self._matching.suffix_length,
            ):
                LOGGER.debug("Voicemail number match: %s : %s", stored, phone_number)
                return True
        return False

    def add_listener(self, listener: SnapshotListener) -> None:
        """Register a callback invoked with the new snapshot after it changes."""

        self._listeners.append(listener)

    # Lifecycle

    def initialize(self) -> None:
        """Start watching and look up any pre-existing voicemail contact.

        Must be called from a running event loop. Calling it again is a no-op.
        """

        if self._initialized:
            return
        self._initialized = True
        self._closed = False
        self._watcher.start(self._watch_config.directory, self._watch_config.marker_file_name)
        self._issue_query("initialization")

    def refresh(self) -> None:
        """Fetch the voicemail contact again, whatever the current state."""

        self._issue_query("explicit refresh")

    def clear(self) -> None:
        """Forget the resolved identity; late results of earlier queries are dropped."""

        LOGGER.info("Clearing voicemail identity")
        self._epoch += 1
        self._state = ResolverState.UNRESOLVED
        self._state_before_query = ResolverState.UNRESOLVED
        self._replace_snapshot(EMPTY_SNAPSHOT)

    def close(self) -> None:
        """Release watch subscriptions and stop the dispatch loop."""

        if self._closed:
            return
        self._closed = True
        self._initialized = False
        self._epoch += 1
        self._query_service.cancel()
        self._watcher.stop()
        self._events.put_nowait(_Shutdown())
        LOGGER.info("Voicemail identity resolver closed")

    # Event channel

    async def run(self) -> None:
        """Consume the event channel until :meth:`close` is called."""

        while True:
            event = await self._events.get()
            try:
                if isinstance(event, _Shutdown):
                    return
                self.dispatch(event)
            except Exception:
                LOGGER.exception("Error while handling %s", event)
            finally:
                self._events.task_done()

    async def wait_idle(self) -> None:
        """Wait until no query is in flight and every queued event was handled.

        Requires :meth:`run` to be consuming the channel.
        """

        while True:
            handle = self._query_service.pending
            if handle is not None:
                await handle.wait()
            await self._events.join()
            if self._query_service.pending is None and self._events.empty():
                return

    def post(self, event: ResolverEvent) -> None:
        self._events.put_nowait(event)

    def dispatch(self, event: ResolverEvent) -> None:
        """Apply one event to the state machine."""

        if isinstance(event, QueryCompleted):
            self._on_query_completed(event)
        elif isinstance(event, DirectoryChanged):
            self._on_directory_changed(event)
        elif isinstance(event, MarkerFileChanged):
            self._on_marker_file_changed(event)
        else:
            raise TypeError(f"Unsupported resolver event: {event!r}")

    # Transitions

    def _on_watch_event(self, event: WatchEvent) -> None:
        self.post(event)

    def _settled(self) -> bool:
        return self._config.settle_on_resolve and self._state is ResolverState.RESOLVED

    def _on_directory_changed(self, event: DirectoryChanged) -> None:
        if event.transition is MarkerTransition.APPEARED:
            if self._settled():
                LOGGER.debug("Marker appeared but identity already resolved; not querying")
                return
            self._issue_query("marker file appeared")
        elif event.transition is MarkerTransition.DISAPPEARED:
            if self._config.clear_on_marker_removed:
                LOGGER.info("Marker file removed; dropping voicemail identity")
                self.clear()
            else:
                LOGGER.info("Marker file removed; keeping voicemail identity %s", self._snapshot.contact_id)

    def _on_marker_file_changed(self, event: MarkerFileChanged) -> None:
        if self._settled():
            LOGGER.debug("Marker changed but identity already resolved; not querying")
            return
        self._issue_query("marker file changed")

    def _issue_query(self, reason: str) -> None:
        if self._closed:
            return
        if self._state is not ResolverState.QUERY_PENDING:
            self._state_before_query = self._state
        self._epoch += 1
        epoch = self._epoch
        self._state = ResolverState.QUERY_PENDING
        LOGGER.info("Fetching voicemail contact (%s, epoch %s)", reason, epoch)

        def _complete(result: QueryResult) -> None:
            self.post(QueryCompleted(epoch=epoch, result=result))

        self._query_service.fetch_by_identity_marker(self._config.identity_marker, _complete)

    def _on_query_completed(self, event: QueryCompleted) -> None:
        if event.epoch != self._epoch:
            LOGGER.debug("Discarding stale query result (epoch %s, current %s)", event.epoch, self._epoch)
            return

        result = event.result
        if isinstance(result, QueryFound):
            self._state = ResolverState.RESOLVED
            self._replace_snapshot(
                VoicemailSnapshot(contact_id=result.contact_id, phone_numbers=tuple(result.phone_numbers))
            )
            LOGGER.info(
                "Voicemail contact is %s with numbers %s",
                result.contact_id,
                list(result.phone_numbers),
            )
        elif isinstance(result, QueryNotFound):
            # A missing contact does not prove the previous resolution wrong.
            self._state = ResolverState.RESOLVED if self._snapshot.is_resolved else ResolverState.UNRESOLVED
            LOGGER.info("No voicemail contact found")
        elif isinstance(result, QueryFailed):
            self._state = self._state_before_query
            LOGGER.warning("Voicemail contact query failed: %s", result.reason)
        else:
            raise TypeError(f"Unsupported query result: {result!r}")

    def _replace_snapshot(self, snapshot: VoicemailSnapshot) -> None:
        changed = snapshot != self._snapshot
        self._snapshot = snapshot
        if not changed:
            return
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOGGER.exception("Voicemail snapshot listener failed")
