"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class WatchConfig:
    """Location of the marker file signalling a provisioned voicemail identity."""

    directory: str
    marker_file_name: str

    @property
    def marker_path(self) -> str:
        return os.path.join(self.directory, self.marker_file_name)


@dataclass(frozen=True)
class MatchingConfig:
    """Phone number comparison settings."""

    default_region: Optional[str] = None
    suffix_length: int = 7


@dataclass(frozen=True)
class ResolverConfig:
    """Reconciliation settings for the voicemail identity resolver."""

    identity_marker: str
    settle_on_resolve: bool = False
    clear_on_marker_removed: bool = False
