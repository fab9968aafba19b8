import threading
from pathlib import Path

import pytest

from domains.organizing.errors import WatchSetupError
from domains.organizing.watchers.filesystem import (
    CoalescingEventHandler,
    FolderWatcher,
    WatchEvent,
    WatchEventKind,
)


class Event:
    def __init__(self, src: Path, dest: Path | None = None, is_directory: bool = False):
        self.src_path = str(src)
        self.dest_path = str(dest) if dest else None
        self.is_directory = is_directory


@pytest.fixture
def batches():
    return []


@pytest.fixture
def handler(batches):
    # Long latency so only explicit flush() calls deliver
    handler = CoalescingEventHandler(batches.append, latency=60)
    yield handler
    handler.cancel()


def test_repeated_writes_collapse_to_one_event(handler, batches, tmp_path):
    path = tmp_path / "a.txt"

    handler.on_created(Event(path))
    handler.on_modified(Event(path))
    handler.on_modified(Event(path))
    handler.flush()

    assert batches == [[WatchEvent(WatchEventKind.CREATED, path)]]


def test_modified_after_removed_is_kept(handler, batches, tmp_path):
    path = tmp_path / "a.txt"

    handler.on_deleted(Event(path))
    handler.on_modified(Event(path))
    handler.flush()

    assert batches == [[WatchEvent(WatchEventKind.MODIFIED, path)]]


def test_directory_events_are_ignored(handler, batches, tmp_path):
    handler.on_created(Event(tmp_path / "sub", is_directory=True))
    handler.on_moved(Event(tmp_path / "sub", tmp_path / "other", is_directory=True))
    handler.flush()

    assert batches == []


def test_move_reports_removal_and_rename(handler, batches, tmp_path):
    src = tmp_path / "draft.txt"
    dest = tmp_path / "final.txt"

    handler.on_moved(Event(src, dest))
    handler.flush()

    assert batches == [[
        WatchEvent(WatchEventKind.REMOVED, src),
        WatchEvent(WatchEventKind.RENAMED, dest),
    ]]


def test_flush_survives_failing_callback(tmp_path):
    def explode(batch):
        raise RuntimeError("boom")

    handler = CoalescingEventHandler(explode, latency=60)
    handler.on_created(Event(tmp_path / "a.txt"))

    handler.flush()
    handler.flush()


def test_timer_delivers_batch(tmp_path):
    delivered = threading.Event()
    received = []

    def emit(batch):
        received.extend(batch)
        delivered.set()

    handler = CoalescingEventHandler(emit, latency=0.05)
    handler.on_created(Event(tmp_path / "a.txt"))
    handler.on_created(Event(tmp_path / "b.txt"))

    assert delivered.wait(timeout=5)
    assert {event.path.name for event in received} == {"a.txt", "b.txt"}


def test_cancel_drops_pending_events(handler, batches, tmp_path):
    handler.on_created(Event(tmp_path / "a.txt"))
    handler.cancel()
    handler.flush()

    assert batches == []


def test_watcher_rejects_missing_root(tmp_path):
    watcher = FolderWatcher(tmp_path / "missing", lambda batch: None)

    with pytest.raises(WatchSetupError):
        watcher.start()

    assert not watcher.is_running


def test_stop_is_idempotent(tmp_path):
    watcher = FolderWatcher(tmp_path, lambda batch: None)

    watcher.stop()
    watcher.start()
    watcher.start()
    assert watcher.is_running

    watcher.stop()
    watcher.stop()
    assert not watcher.is_running


def test_watcher_reports_new_files(tmp_path):
    delivered = threading.Event()
    received = []

    def emit(batch):
        received.extend(batch)
        if any(event.path.name == "arrival.txt" for event in batch):
            delivered.set()

    watcher = FolderWatcher(tmp_path, emit, latency=0.1)
    watcher.start()
    try:
        (tmp_path / "arrival.txt").write_text("hello")
        assert delivered.wait(timeout=10)
    finally:
        watcher.stop()

    kinds = {event.kind for event in received if event.path.name == "arrival.txt"}
    assert kinds & {WatchEventKind.CREATED, WatchEventKind.MODIFIED}
