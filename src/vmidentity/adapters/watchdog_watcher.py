"""watchdog-based path watcher adapter.

Implements the core PathWatcherPort. watchdog observes directories, so a
watched file is served by a non-recursive watch on its parent directory;
directories shared by several watched paths are scheduled only once.
Notifications arrive on the observer thread and are handed to the event
loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

LOGGER = logging.getLogger(__name__)

# Entry-level changes that make a watched directory "changed".
DIRECTORY_EVENT_TYPES = frozenset({"created", "deleted", "moved"})
# Changes reported for a watched file.
FILE_EVENT_TYPES = frozenset({"created", "deleted", "modified", "moved"})
# Seconds to wait for the observer thread on close.
OBSERVER_JOIN_TIMEOUT = 2.0


class _Handler(FileSystemEventHandler):
    def __init__(self, watcher: "WatchdogPathWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._watcher.handle_event(event)


class WatchdogPathWatcher:
    """Watches a dynamic set of files and directories with watchdog."""

    def __init__(
        self,
        on_change: Callable[[str], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self._on_change = on_change
        self._loop = loop or asyncio.get_running_loop()
        self._observer_factory = observer_factory
        self._observer: Optional[Any] = None
        self._handler = _Handler(self)
        self._lock = threading.Lock()
        # watched path -> True when it is a directory watch
        self._paths: dict[str, bool] = {}
        # scheduled directory -> (ObservedWatch, number of watched paths using it)
        self._scheduled: dict[str, tuple[Any, int]] = {}

    def paths(self) -> set[str]:
        with self._lock:
            return set(self._paths)

    def add_path(self, path: str) -> bool:
        """Watch ``path``; returns False when it cannot be watched.

        Adding a path that is already watched creates no second subscription.
        """

        path = os.path.abspath(path)
        with self._lock:
            if path in self._paths:
                LOGGER.debug("Already watching %s", path)
                return True
            if not os.path.exists(path):
                LOGGER.warning("Cannot watch %s: path does not exist", path)
                return False

            is_directory = os.path.isdir(path)
            scheduled_dir = path if is_directory else os.path.dirname(path)
            entry = self._scheduled.get(scheduled_dir)
            if entry is None:
                try:
                    watch = self._ensure_observer().schedule(self._handler, scheduled_dir, recursive=False)
                except OSError as exc:
                    LOGGER.warning("Cannot watch %s: %s", path, exc)
                    return False
                self._scheduled[scheduled_dir] = (watch, 1)
            else:
                self._scheduled[scheduled_dir] = (entry[0], entry[1] + 1)
            self._paths[path] = is_directory
        LOGGER.debug("Watching %s", path)
        return True

    def remove_path(self, path: str) -> bool:
        path = os.path.abspath(path)
        with self._lock:
            is_directory = self._paths.pop(path, None)
            if is_directory is None:
                return False
            scheduled_dir = path if is_directory else os.path.dirname(path)
            watch, refs = self._scheduled[scheduled_dir]
            if refs > 1:
                self._scheduled[scheduled_dir] = (watch, refs - 1)
            else:
                del self._scheduled[scheduled_dir]
                if self._observer is not None:
                    try:
                        self._observer.unschedule(watch)
                    except (KeyError, OSError):
                        LOGGER.debug("Watch for %s was already gone", scheduled_dir)
        LOGGER.debug("Stopped watching %s", path)
        return True

    def close(self) -> None:
        with self._lock:
            observer = self._observer
            self._observer = None
            self._paths.clear()
            self._scheduled.clear()
        if observer is None:
            return
        observer.stop()
        if self._loop.is_running():
            # Joining blocks; keep it off the event loop thread.
            self._loop.run_in_executor(None, observer.join, OBSERVER_JOIN_TIMEOUT)
        else:
            observer.join(timeout=OBSERVER_JOIN_TIMEOUT)

    def handle_event(self, event: FileSystemEvent) -> None:
        """Translate a watchdog event into path notifications (observer thread)."""

        touched = {os.path.abspath(event.src_path)}
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            touched.add(os.path.abspath(dest_path))

        with self._lock:
            watched = dict(self._paths)

        changed: list[str] = []
        for path, is_directory in watched.items():
            if is_directory:
                if event.event_type in DIRECTORY_EVENT_TYPES and any(
                    os.path.dirname(item) == path for item in touched
                ):
                    changed.append(path)
            elif event.event_type in FILE_EVENT_TYPES and path in touched:
                changed.append(path)

        for path in sorted(changed):
            self._notify(path)

    def _notify(self, path: str) -> None:
        try:
            self._loop.call_soon_threadsafe(self._on_change, path)
        except RuntimeError:
            # Event loop already closed during shutdown.
            LOGGER.debug("Dropping notification for %s", path)

    def _ensure_observer(self) -> Any:
        if self._observer is None:
            self._observer = self._observer_factory()
            self._observer.start()
        return self._observer
