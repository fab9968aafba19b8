"""
File system watcher for the organizing domain.

Wraps a watchdog observer per watched root and turns raw events into
coalesced batches of file-level WatchEvents. Batches are delivered from a
timer thread, never from the caller's thread.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from domains.organizing.errors import WatchSetupError


class WatchEventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """A file-level change under a watched root."""

    kind: WatchEventKind
    path: Path


BatchHandler = Callable[[List[WatchEvent]], None]


class CoalescingEventHandler(FileSystemEventHandler):
    """Watchdog handler that buffers events and flushes them as batches."""

    def __init__(self, emit: BatchHandler, latency: float = 0.5) -> None:
        super().__init__()
        self.emit = emit
        self.latency = latency
        self._pending: Dict[Path, WatchEventKind] = {}
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    # Directory events are dropped; only files reach the engine.

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(WatchEventKind.CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(WatchEventKind.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._add(WatchEventKind.REMOVED, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        src = getattr(event, "src_path", None)
        dest = getattr(event, "dest_path", None)

        if src:
            self._add(WatchEventKind.REMOVED, src)
        if dest:
            self._add(WatchEventKind.RENAMED, dest)

    # Batching ------------------------------------------------------------------------

    def _add(self, kind: WatchEventKind, raw_path) -> None:
        path = Path(raw_path if isinstance(raw_path, str) else raw_path.decode())

        with self._lock:
            previous = self._pending.get(path)
            # A later write does not hide that the file is new or was renamed in
            if previous is None or kind != WatchEventKind.MODIFIED or previous == WatchEventKind.REMOVED:
                self._pending[path] = kind

            if self._timer is None:
                self._timer = threading.Timer(self.latency, self.flush)
                self._timer.daemon = True
                self._timer.start()

    def flush(self) -> None:
        """Deliver everything buffered so far as one batch."""
        with self._lock:
            batch = [WatchEvent(kind, path) for path, kind in self._pending.items()]
            self._pending.clear()
            self._timer = None

        if not batch:
            return

        try:
            self.emit(batch)
        except Exception as e:
            logger.error(f"Watch event handler failed: {e}")

    def cancel(self) -> None:
        """Drop buffered events and any scheduled flush."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


class FolderWatcher:
    """Watches one root folder and reports batches of file changes."""

    def __init__(
        self,
        root: Path,
        handler: BatchHandler,
        latency: float = 0.5,
        recursive: bool = True,
    ) -> None:
        """
        Initialize folder watcher.

        Args:
            root: Folder to watch
            handler: Called with each batch of events, from a timer thread
            latency: Coalescing window in seconds
            recursive: Watch subfolders as well as the root
        """
        self.root = root
        self.recursive = recursive
        self.event_handler = CoalescingEventHandler(handler, latency)
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """
        Start emitting events. Calling it while running does nothing.

        Raises:
            WatchSetupError: The root cannot be watched
        """
        with self._lock:
            if self._observer is not None:
                return

            if not self.root.is_dir():
                raise WatchSetupError(f"{self.root} is not a directory")

            observer = Observer()
            observer.daemon = True
            try:
                observer.schedule(self.event_handler, str(self.root), recursive=self.recursive)
                observer.start()
            except Exception as e:
                raise WatchSetupError(f"Failed to watch {self.root}: {e}") from e

            self._observer = observer

        logger.debug(f"Started watching: {self.root}")

    def stop(self) -> None:
        """Stop emitting events. Safe to call repeatedly or before start()."""
        with self._lock:
            observer = self._observer
            self._observer = None

        if observer is None:
            return

        observer.stop()
        observer.join()
        self.event_handler.cancel()
        logger.debug(f"Stopped watching: {self.root}")
