"""Ports (interfaces) used by the core components.

Ports define the minimal contracts for the contact store and the filesystem
notification backend so that the core can be reused with different adapters.
"""

from __future__ import annotations

from typing import FrozenSet, List, Protocol

from vmidentity.core.models import ContactRecord, IdentityMarkerFilter


class ContactStorePort(Protocol):
    """Read-only contact lookup required by the query service."""

    async def query(
        self,
        contact_filter: IdentityMarkerFilter,
        requested_fields: FrozenSet[str],
    ) -> List[ContactRecord]:
        ...


class PathWatcherPort(Protocol):
    """Filesystem notifications for a dynamic set of paths.

    Implementations report changes through the ``on_change(path)`` callback
    they were constructed with, on the event loop thread.
    """

    def add_path(self, path: str) -> bool:
        ...

    def remove_path(self, path: str) -> bool:
        ...

    def paths(self) -> set[str]:
        ...

    def close(self) -> None:
        ...
