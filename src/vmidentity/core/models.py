"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any store-specific or watcher-specific types.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Hashable, Optional, Tuple, Union

# Opaque identifier handed out by the contact store; only equality is used.
ContactId = Hashable

# Field name requested from the contact store when fetching the voicemail contact.
PHONE_NUMBER_FIELD = "phone_number"


@dataclass(frozen=True)
class ContactRecord:
    """A contact as returned by the contact store."""

    contact_id: ContactId
    phone_numbers: Tuple[str, ...] = ()
    display_name: Optional[str] = None


@dataclass(frozen=True)
class IdentityMarkerFilter:
    """Matches contacts tagged with the given identity marker (GUID)."""

    value: str


@dataclass(frozen=True)
class QueryFound:
    contact_id: ContactId
    phone_numbers: Tuple[str, ...]


@dataclass(frozen=True)
class QueryNotFound:
    pass


@dataclass(frozen=True)
class QueryFailed:
    reason: str


QueryResult = Union[QueryFound, QueryNotFound, QueryFailed]


@dataclass(frozen=True)
class VoicemailSnapshot:
    """Resolved voicemail identity and its phone numbers at one point in time.

    Both fields are replaced together so readers never see a contact id paired
    with another contact's numbers.
    """

    contact_id: Optional[ContactId] = None
    phone_numbers: Tuple[str, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.contact_id is not None


EMPTY_SNAPSHOT = VoicemailSnapshot()


class ResolverState(enum.Enum):
    UNRESOLVED = "unresolved"
    QUERY_PENDING = "query_pending"
    RESOLVED = "resolved"


class MarkerTransition(enum.Enum):
    """Change in marker file existence observed on a directory notification."""

    APPEARED = "appeared"
    DISAPPEARED = "disappeared"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class DirectoryChanged:
    path: str
    transition: MarkerTransition


@dataclass(frozen=True)
class MarkerFileChanged:
    path: str


@dataclass(frozen=True)
class QueryCompleted:
    epoch: int
    result: QueryResult


WatchEvent = Union[DirectoryChanged, MarkerFileChanged]
ResolverEvent = Union[DirectoryChanged, MarkerFileChanged, QueryCompleted]
