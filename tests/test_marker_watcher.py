from __future__ import annotations

from pathlib import Path

from fakes import FakePathWatcherFactory
from vmidentity.core.marker_watcher import MarkerFileWatcher
from vmidentity.core.models import DirectoryChanged, MarkerFileChanged, MarkerTransition


def _watcher(factory: FakePathWatcherFactory) -> tuple[MarkerFileWatcher, list]:
    events: list = []
    return MarkerFileWatcher(factory, events.append), events


def test_start_creates_missing_directory_and_watches_it(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    factory = FakePathWatcherFactory()
    watcher, _ = _watcher(factory)

    watcher.start(str(directory), "vmid")

    assert directory.is_dir()
    assert factory.port.add_calls == [str(directory)]
    assert not watcher.marker_present
    assert not watcher.marker_watched


def test_start_watches_existing_marker(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    directory.mkdir()
    (directory / "vmid").write_text("1")
    factory = FakePathWatcherFactory()
    watcher, _ = _watcher(factory)

    watcher.start(str(directory), "vmid")

    assert factory.port.add_calls == [str(directory), str(directory / "vmid")]
    assert watcher.marker_watched
    assert watcher.marker_path == str(directory / "vmid")


def test_start_twice_creates_no_duplicate_subscriptions(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    directory.mkdir()
    (directory / "vmid").write_text("1")
    factory = FakePathWatcherFactory()
    watcher, _ = _watcher(factory)

    watcher.start(str(directory), "vmid")
    watcher.start(str(directory), "vmid")

    assert len(factory.created) == 1
    assert factory.port.add_calls == [str(directory), str(directory / "vmid")]


def test_directory_creation_failure_is_not_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    directory = blocker / "contacts"
    factory = FakePathWatcherFactory()
    watcher, _ = _watcher(factory)

    watcher.start(str(directory), "vmid")

    assert watcher.started
    assert factory.port.add_calls == [str(directory)]


def test_watch_failure_leaves_watcher_degraded(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    factory = FakePathWatcherFactory(fail_paths=[directory])
    watcher, events = _watcher(factory)

    watcher.start(str(directory), "vmid")

    assert watcher.started
    assert factory.port.watched == set()
    assert events == []


def test_marker_appearance_adds_file_subscription_once(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    marker = directory / "vmid"
    factory = FakePathWatcherFactory()
    watcher, events = _watcher(factory)
    watcher.start(str(directory), "vmid")

    marker.write_text("1")
    factory.port.fire(directory)
    (directory / "unrelated").write_text("")
    factory.port.fire(directory)

    assert events == [
        DirectoryChanged(path=str(directory), transition=MarkerTransition.APPEARED),
        DirectoryChanged(path=str(directory), transition=MarkerTransition.UNCHANGED),
    ]
    assert factory.port.add_calls.count(str(marker)) == 1


def test_marker_removal_drops_file_subscription(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    directory.mkdir()
    marker = directory / "vmid"
    marker.write_text("1")
    factory = FakePathWatcherFactory()
    watcher, events = _watcher(factory)
    watcher.start(str(directory), "vmid")

    marker.unlink()
    factory.port.fire(directory)
    factory.port.fire(directory)

    assert events == [
        DirectoryChanged(path=str(directory), transition=MarkerTransition.DISAPPEARED),
        DirectoryChanged(path=str(directory), transition=MarkerTransition.UNCHANGED),
    ]
    assert factory.port.remove_calls == [str(marker)]
    assert not watcher.marker_watched


def test_marker_file_change_is_reported_only_while_watched(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    marker = directory / "vmid"
    factory = FakePathWatcherFactory()
    watcher, events = _watcher(factory)
    watcher.start(str(directory), "vmid")

    factory.port.fire(marker)
    assert events == []

    marker.write_text("1")
    factory.port.fire(directory)
    factory.port.fire(marker)

    assert events[-1] == MarkerFileChanged(path=str(marker))


def test_stop_releases_both_subscriptions(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    directory.mkdir()
    (directory / "vmid").write_text("1")
    factory = FakePathWatcherFactory()
    watcher, events = _watcher(factory)
    watcher.start(str(directory), "vmid")
    port = factory.port

    watcher.stop()
    port.fire(directory)

    assert port.remove_calls == [str(directory / "vmid"), str(directory)]
    assert port.closed
    assert port.watched == set()
    assert events == []
    assert not watcher.started


def test_failed_marker_subscription_is_retried_on_next_directory_change(tmp_path: Path) -> None:
    directory = tmp_path / "contacts"
    marker = directory / "vmid"
    factory = FakePathWatcherFactory(fail_paths=[marker])
    watcher, events = _watcher(factory)
    watcher.start(str(directory), "vmid")

    marker.write_text("1")
    factory.port.fire(directory)
    assert watcher.marker_present
    assert not watcher.marker_watched

    factory.port.fail_paths.clear()
    (directory / "unrelated").write_text("")
    factory.port.fire(directory)

    assert events == [
        DirectoryChanged(path=str(directory), transition=MarkerTransition.APPEARED),
        DirectoryChanged(path=str(directory), transition=MarkerTransition.UNCHANGED),
    ]
    assert factory.port.add_calls.count(str(marker)) == 2
    assert watcher.marker_watched

    factory.port.fire(marker)
    assert events[-1] == MarkerFileChanged(path=str(marker))
