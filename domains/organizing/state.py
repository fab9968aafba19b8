"""
Published engine state.

The engine writes status, logs, scan progress, undo history and the list
of watched folders here; the API and any other consumer read snapshots or
subscribe to changes.
"""

import json
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional

from loguru import logger

from app.models.schemas import EngineSnapshot, EngineStatus, LogEntry, Operation, ScanProgress
from app.utils.helpers import now_utc

Subscriber = Callable[[EngineSnapshot], None]


def dump_watch_state(path: Path, watched_folders: List[str], is_running: bool) -> None:
    """Persist the watched folder list for the shell integration."""

    payload = {
        "watchedFolderPaths": sorted(watched_folders),
        "isRunning": is_running,
        "updated": now_utc().isoformat(),
    }

    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    tmp_path.replace(path)


class EngineState:
    """Thread-safe holder of everything the engine publishes."""

    def __init__(self, log_retention: Optional[int] = None,
                 watch_state_file: Optional[Path] = None):
        self.watch_state_file = watch_state_file
        self._lock = threading.Lock()
        self._status = EngineStatus.idle()
        self._logs: Deque[LogEntry] = deque(maxlen=log_retention)
        self._scan_progress = ScanProgress.idle()
        self._history: List[Operation] = []
        self._watched_folders: List[str] = []
        self._is_running = False
        self._subscribers: List[Subscriber] = []

    # Readers -------------------------------------------------------------------------

    @property
    def status(self) -> EngineStatus:
        with self._lock:
            return self._status

    @property
    def scan_progress(self) -> ScanProgress:
        with self._lock:
            return self._scan_progress

    @property
    def logs(self) -> List[LogEntry]:
        """Log entries, newest first."""
        with self._lock:
            return list(self._logs)

    @property
    def history(self) -> List[Operation]:
        """Undo journal, newest first."""
        with self._lock:
            return list(self._history)

    @property
    def can_undo(self) -> bool:
        with self._lock:
            return bool(self._history)

    @property
    def watched_folders(self) -> List[str]:
        with self._lock:
            return list(self._watched_folders)

    def snapshot(self) -> EngineSnapshot:
        with self._lock:
            return EngineSnapshot(
                status=self._status,
                logs=list(self._logs),
                scan_progress=self._scan_progress,
                can_undo=bool(self._history),
                watched_folders=list(self._watched_folders),
                is_running=self._is_running,
            )

    # Writers -------------------------------------------------------------------------

    def set_status(self, status: EngineStatus) -> None:
        with self._lock:
            self._status = status
        self._publish()

    def add_log(self, entry: LogEntry) -> None:
        with self._lock:
            self._logs.appendleft(entry)
        self._publish()

    def set_scan_progress(self, progress: ScanProgress) -> None:
        with self._lock:
            self._scan_progress = progress
        self._publish()

    def set_history(self, history: List[Operation]) -> None:
        """Replace the journal view; ``history`` is oldest first as the mover keeps it."""
        with self._lock:
            self._history = list(reversed(history))
        self._publish()

    def set_watch_state(self, watched_folders: List[str], is_running: bool) -> None:
        with self._lock:
            self._watched_folders = list(watched_folders)
            self._is_running = is_running

        if self.watch_state_file is not None:
            try:
                dump_watch_state(self.watch_state_file, watched_folders, is_running)
            except OSError as e:
                logger.warning(f"Failed to publish watch state: {e}")

        self._publish()

    # Subscriptions -------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Call ``callback`` with a fresh snapshot after every change.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return

        snapshot = self.snapshot()
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"State subscriber failed: {e}")
