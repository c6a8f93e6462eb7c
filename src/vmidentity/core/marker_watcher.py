"""Marker file watching on top of a generic path watcher.

The directory holding the marker file is watched for as long as the watcher
runs. The marker file itself is only watched while it exists: the file
subscription is added when the file is first seen and removed when a
directory notification shows it is gone.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from vmidentity.core.models import DirectoryChanged, MarkerFileChanged, MarkerTransition, WatchEvent
from vmidentity.core.ports import PathWatcherPort

LOGGER = logging.getLogger(__name__)

WatchObserver = Callable[[WatchEvent], None]
PathWatcherFactory = Callable[[Callable[[str], None]], PathWatcherPort]


class MarkerFileWatcher:
    """Turns raw path notifications into typed marker events."""

    def __init__(self, port_factory: PathWatcherFactory, observer: Optional[WatchObserver] = None) -> None:
        self._port_factory = port_factory
        self._observer = observer
        self._port: Optional[PathWatcherPort] = None
        self._directory: Optional[str] = None
        self._marker_path: Optional[str] = None
        self._directory_watched = False
        self._marker_present = False
        self._marker_watched = False
        self._started = False

    def set_observer(self, observer: WatchObserver) -> None:
        self._observer = observer

    @property
    def started(self) -> bool:
        return self._started

    @property
    def marker_path(self) -> Optional[str]:
        return self._marker_path

    @property
    def marker_present(self) -> bool:
        """Marker existence as of the last observation."""

        return self._marker_present

    @property
    def marker_watched(self) -> bool:
        return self._marker_watched

    def start(self, directory: str, marker_file_name: str) -> None:
        """Create the directory if needed and establish the subscriptions.

        Calling start twice has no effect; failures leave the watcher in a
        degraded mode without live updates instead of raising.
        """

        if self._started:
            return
        self._directory = os.path.abspath(directory)
        self._marker_path = os.path.join(self._directory, marker_file_name)
        self._started = True
        self._port = self._port_factory(self.on_path_changed)

        if not os.path.isdir(self._directory):
            # The directory must exist so that we can monitor its changes.
            try:
                os.makedirs(self._directory, exist_ok=True)
            except OSError as exc:
                LOGGER.warning("Creation of %s failed: %s", self._directory, exc)

        self._directory_watched = self._port.add_path(self._directory)
        if not self._directory_watched:
            LOGGER.warning("Cannot watch %s; marker changes will not be noticed", self._directory)

        if os.path.exists(self._marker_path):
            LOGGER.info("Marker file %s exists. Start monitoring it.", self._marker_path)
            self._marker_present = True
            self._watch_marker()

    def stop(self) -> None:
        """Release both subscriptions and close the underlying watcher."""

        if not self._started or self._port is None:
            return
        if self._marker_watched and self._marker_path:
            self._port.remove_path(self._marker_path)
            self._marker_watched = False
        if self._directory_watched and self._directory:
            self._port.remove_path(self._directory)
            self._directory_watched = False
        self._port.close()
        self._port = None
        self._started = False
        self._marker_present = False

    def on_path_changed(self, path: str) -> None:
        """Handle a raw notification from the path watcher."""

        if not self._started:
            return
        path = os.path.abspath(path)
        if path == self._marker_path and self._marker_watched:
            # The file also changes when a new voicemail contact is written into it.
            self._emit(MarkerFileChanged(path=path))
        elif path == self._directory:
            transition = self.sync_marker_subscription()
            self._emit(DirectoryChanged(path=path, transition=transition))
        else:
            LOGGER.debug("Ignoring notification for unrelated path %s", path)

    def sync_marker_subscription(self) -> MarkerTransition:
        """Re-check marker existence and add or drop the file subscription."""

        if self._marker_path is None:
            return MarkerTransition.UNCHANGED

        exists = os.path.exists(self._marker_path)
        if exists == self._marker_present:
            # Something else was added to or removed from the directory.
            if exists and not self._marker_watched:
                self._watch_marker()
            return MarkerTransition.UNCHANGED

        self._marker_present = exists
        if exists:
            LOGGER.info("Marker file %s appeared. Start monitoring it.", self._marker_path)
            self._watch_marker()
            return MarkerTransition.APPEARED

        LOGGER.info("Marker file %s not found, stop monitoring it.", self._marker_path)
        if self._marker_watched and self._port is not None:
            self._port.remove_path(self._marker_path)
        self._marker_watched = False
        return MarkerTransition.DISAPPEARED

    def _watch_marker(self) -> None:
        if self._marker_watched or self._port is None or self._marker_path is None:
            return
        self._marker_watched = self._port.add_path(self._marker_path)
        if not self._marker_watched:
            LOGGER.warning("Cannot watch marker file %s", self._marker_path)

    def _emit(self, event: WatchEvent) -> None:
        if self._observer is None:
            LOGGER.debug("No observer for %s", event)
            return
        self._observer(event)
