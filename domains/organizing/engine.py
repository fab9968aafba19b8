"""
Organizing engine.

Wires folder watchers to the per-file pipeline:

    watch events -> gating (hidden/partial, depth, extension, in-flight)
                 -> debounce -> metadata + extraction -> classification
                 -> move -> log / notify

All pipeline work runs as tasks on a private asyncio loop in a background
thread; blocking file work goes to a small thread pool. Public methods are
safe to call from any thread.
"""

import asyncio
import itertools
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from loguru import logger

from app.models.schemas import (
    EngineSnapshot,
    EngineStatus,
    FileMetadata,
    FolderConfig,
    LogEntry,
    Operation,
    ScanProgress,
)
from app.utils.config import Settings, get_settings
from app.utils.helpers import (
    extension_allowed,
    is_hidden,
    is_partial_download,
    list_subfolders,
    normalise_path,
    relative_depth,
)
from domains.organizing.classifier import ClassificationClient
from domains.organizing.errors import UndoError, WatchSetupError
from domains.organizing.extractor import ContentExtractor, DocumentExtractor, NullExtractor
from domains.organizing.mover import FileMover
from domains.organizing.notifier import DesktopNotifier, LogNotifier, Notifier
from domains.organizing.state import EngineState
from domains.organizing.watchers.filesystem import FolderWatcher, WatchEvent, WatchEventKind

WatcherFactory = Callable[..., FolderWatcher]

# Events that may mean a finished file is waiting at the path
SCHEDULED_KINDS = {WatchEventKind.CREATED, WatchEventKind.MODIFIED, WatchEventKind.RENAMED}


class OrganizingEngine:
    """Watches folders and organizes the files that land in them."""

    def __init__(
        self,
        classifier: ClassificationClient,
        mover: Optional[FileMover] = None,
        extractor: Optional[ContentExtractor] = None,
        notifier: Optional[Notifier] = None,
        state: Optional[EngineState] = None,
        debounce_interval: float = 2.0,
        cooldown_seconds: float = 60.0,
        watcher_latency: float = 0.5,
        worker_threads: int = 2,
        watcher_factory: WatcherFactory = FolderWatcher,
    ):
        """
        Initialize engine and start its event loop thread.

        Args:
            classifier: Client used to classify files
            mover: Mover owning the undo journal
            extractor: Content extractor, used when a folder enables extraction
            notifier: Receives a notification per organized file
            state: Published state sink
            debounce_interval: Seconds to wait after an event before processing
            cooldown_seconds: Seconds a path stays blocked after processing
            watcher_latency: Coalescing window handed to each watcher
            worker_threads: Size of the pool used for blocking file work
            watcher_factory: Builds watchers (swapped out in tests)
        """
        self.classifier = classifier
        self.mover = mover or FileMover()
        self.extractor = extractor or NullExtractor()
        self.notifier = notifier
        self.state = state or EngineState()
        self.debounce_interval = debounce_interval
        self.cooldown_seconds = cooldown_seconds
        self.watcher_latency = watcher_latency
        self.watcher_factory = watcher_factory

        self._lock = threading.RLock()
        self._folders: Dict[str, FolderConfig] = {}
        self._watchers: Dict[str, FolderWatcher] = {}
        # In-flight/cooldown set: path -> claim token, so a stale release
        # cannot drop a newer claim on the same path
        self._pending: Dict[str, int] = {}
        self._tokens = itertools.count(1)
        self._scan_locks: Dict[str, asyncio.Lock] = {}

        self._executor = ThreadPoolExecutor(
            max_workers=max(1, worker_threads), thread_name_prefix="organizer-worker"
        )
        self._loop = asyncio.new_event_loop()
        self._loop.set_default_executor(self._executor)
        self._loop_thread = threading.Thread(
            target=self._run_loop, name="organizing-engine", daemon=True
        )
        self._loop_thread.start()

        logger.info("Organizing engine initialized")

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrganizingEngine":
        """Build an engine with the collaborators described by ``settings``."""
        classifier = ClassificationClient(
            backend=settings.build_backend(),
            max_attempts=settings.classifier_max_attempts,
            base_delay=settings.classifier_retry_base_delay,
            text_budget=settings.prompt_text_budget,
        )
        extractor = DocumentExtractor(
            languages=settings.ocr_languages,
            min_confidence=settings.ocr_min_confidence,
            pdf_page_limit=settings.pdf_page_limit,
        )
        notifier = DesktopNotifier() if settings.notifications_enabled else LogNotifier()

        return cls(
            classifier=classifier,
            mover=FileMover(history_limit=settings.history_limit),
            extractor=extractor,
            notifier=notifier,
            state=EngineState(
                log_retention=settings.log_retention,
                watch_state_file=settings.watch_state_file,
            ),
            debounce_interval=settings.debounce_interval,
            cooldown_seconds=settings.cooldown_seconds,
            watcher_latency=settings.watcher_latency,
            worker_threads=settings.worker_threads,
        )

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    # Folder lifecycle ----------------------------------------------------------------

    @property
    def folders(self) -> List[FolderConfig]:
        with self._lock:
            return list(self._folders.values())

    def get_folder(self, folder_id: str) -> Optional[FolderConfig]:
        with self._lock:
            return self._folders.get(folder_id)

    def add_folder(self, config: FolderConfig) -> None:
        """Register a folder and, if enabled, start watching it."""
        with self._lock:
            self._folders[config.id] = config
        logger.info(f"Folder added: {config.path}")

        if config.enabled:
            self.start_watching(config)

    def update_folder(self, config: FolderConfig) -> None:
        """
        Replace a folder's settings, restarting its watcher.

        Raises:
            KeyError: No folder with that id is registered
        """
        with self._lock:
            if config.id not in self._folders:
                raise KeyError(config.id)
            self._folders[config.id] = config

        self.stop_watching(config.id)
        if config.enabled:
            self.start_watching(config)

    def remove_folder(self, folder_id: str) -> bool:
        """Stop watching a folder and forget it. Returns False if unknown."""
        self.stop_watching(folder_id)
        with self._lock:
            removed = self._folders.pop(folder_id, None)

        if removed is not None:
            logger.info(f"Folder removed: {removed.path}")
        return removed is not None

    def start_watching(self, config: FolderConfig) -> bool:
        """
        Start (or restart) the watcher for one folder.

        Returns:
            True if the folder is now watched. Setup failures are logged and
            leave the folder configured but unwatched.
        """
        self.stop_watching(config.id)

        watcher = self.watcher_factory(
            config.path,
            lambda events: self.handle_events(events, config),
            latency=self.watcher_latency,
            recursive=config.watch_depth != 0,
        )

        try:
            watcher.start()
        except WatchSetupError as e:
            logger.error(f"Failed to watch {config.path}: {e}")
            return False

        with self._lock:
            self._watchers[config.id] = watcher
        logger.success(f"Started watching: {config.path}")

        if self.state.status == EngineStatus.idle():
            self.state.set_status(EngineStatus.watching())
        self._publish_watch_state()
        return True

    def stop_watching(self, folder_id: str) -> None:
        """Stop one folder's watcher. Files already admitted keep processing."""
        with self._lock:
            watcher = self._watchers.pop(folder_id, None)
            remaining = len(self._watchers)

        if watcher is None:
            return

        watcher.stop()
        logger.info(f"Stopped watching: {watcher.root}")

        if not remaining:
            self.state.set_status(EngineStatus.idle())
        self._publish_watch_state()

    def is_watching(self, folder_id: str) -> bool:
        with self._lock:
            return folder_id in self._watchers

    @property
    def is_running(self) -> bool:
        with self._lock:
            return bool(self._watchers)

    def start_all(self) -> None:
        """Start watchers for every enabled folder."""
        for config in self.folders:
            if config.enabled:
                self.start_watching(config)
        self.state.set_status(EngineStatus.watching())

    def stop_all(self) -> None:
        """Stop every watcher and forget in-flight and cooling-down paths."""
        with self._lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
            self._pending.clear()

        for watcher in watchers:
            watcher.stop()

        self.state.set_status(EngineStatus.idle())
        self.state.set_scan_progress(ScanProgress.idle())
        self._publish_watch_state()
        logger.info("All watchers stopped")

    def _publish_watch_state(self) -> None:
        with self._lock:
            paths = [str(self._folders[folder_id].path)
                     for folder_id in self._watchers if folder_id in self._folders]
            running = bool(self._watchers)
        self.state.set_watch_state(paths, running)

    # Event gating --------------------------------------------------------------------

    def handle_events(self, events: List[WatchEvent], config: FolderConfig) -> None:
        """Entry point for watcher batches; may run on any thread."""
        for event in events:
            if event.kind in SCHEDULED_KINDS:
                self.schedule(event.path, config)

    def is_eligible(self, path: Path, config: FolderConfig) -> bool:
        """Hidden/partial, depth and extension checks for a file under ``config``."""
        if is_partial_download(path):
            return False

        depth = relative_depth(path, config.path)
        if depth is None:
            return False
        if any(part.startswith(".") for part in path.relative_to(config.path).parts):
            return False

        if config.watch_depth >= 0 and depth > config.watch_depth:
            return False

        return extension_allowed(path, config.extensions)

    def schedule(self, path: Path, config: FolderConfig) -> Optional[Future]:
        """
        Gate a changed path and, if admitted, process it after the debounce.

        Returns:
            Future for the debounced run, or None if the path was rejected
        """
        path = normalise_path(path)
        if not self.is_eligible(path, config):
            return None

        token = self._claim(path)
        if token is None:
            logger.debug(f"Already in flight, skipping: {path}")
            return None

        return asyncio.run_coroutine_threadsafe(self._debounced(path, config, token), self._loop)

    @property
    def in_flight(self) -> Set[str]:
        """Paths currently in flight or cooling down."""
        with self._lock:
            return set(self._pending)

    def _claim(self, path: Path) -> Optional[int]:
        key = str(path)
        with self._lock:
            if key in self._pending:
                return None
            token = next(self._tokens)
            self._pending[key] = token
            return token

    def _release(self, key: str, token: int) -> None:
        with self._lock:
            if self._pending.get(key) == token:
                del self._pending[key]

    def _release_later(self, path: Path, token: int) -> None:
        self._loop.call_soon_threadsafe(
            self._loop.call_later, self.cooldown_seconds, self._release, str(path), token
        )

    def _hold(self, path: Path) -> None:
        """Block ``path`` for one cooldown, e.g. after the engine itself wrote it."""
        with self._lock:
            token = next(self._tokens)
            self._pending[str(path)] = token
        self._release_later(path, token)

    async def _debounced(self, path: Path, config: FolderConfig, token: int) -> Optional[Operation]:
        await asyncio.sleep(self.debounce_interval)

        if not self.is_watching(config.id):
            # Stopped before the file was admitted to the pipeline
            self._release(str(path), token)
            return None

        try:
            return await self.process_file(path, config)
        finally:
            self._release_later(path, token)

    # Pipeline ------------------------------------------------------------------------

    async def process_file(self, path: Path, config: FolderConfig) -> Optional[Operation]:
        """
        Classify and move one file.

        Failures are logged and published; they never propagate.

        Returns:
            The completed operation, or None if the file vanished or failed
        """
        if not path.is_file():
            logger.debug(f"File disappeared before processing: {path}")
            return None

        file_name = path.name
        self.state.set_status(EngineStatus.processing(file_name))
        logger.info(f"Processing {path}")

        try:
            metadata = await asyncio.to_thread(FileMetadata.from_path, path)

            extracted_text = ""
            if config.extraction_enabled:
                extraction = await asyncio.to_thread(self.extractor.extract, path)
                extracted_text = extraction.text

            existing_folders = await asyncio.to_thread(list_subfolders, config.path)

            classification = await self.classifier.classify(
                metadata,
                extracted_text,
                existing_folders,
                config.prompt,
                config.rename_config,
            )

            operation = await asyncio.to_thread(
                self.mover.organize, path, classification, config.path
            )

        except Exception as e:
            logger.error(f"Failed to organize {file_name}: {e}")
            self.state.add_log(LogEntry(file_name=file_name, action=f"error: {e}", success=False))
            self.state.set_status(EngineStatus.error(str(e)))
            return None

        # The move produces its own watcher event at the destination
        self._hold(operation.destination)
        self.state.set_history(self.mover.history())

        suggested = classification.suggested_name
        rename_info = f" [{suggested}]" if suggested else ""
        self.state.add_log(LogEntry(
            file_name=file_name,
            action=f"→ {classification.folder}{rename_info} ({classification.reason})",
            success=True,
        ))
        self.state.set_status(EngineStatus.watching())

        target = f"{classification.folder}/{suggested}" if suggested else classification.folder
        await self._notify("File organized", f"{file_name} → {target}")

        logger.success(f"Organized {file_name} -> {operation.destination}")
        return operation

    async def _notify(self, title: str, body: str) -> None:
        if self.notifier is None:
            return
        try:
            await asyncio.to_thread(self.notifier.notify, title, body)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")

    # Backlog scans -------------------------------------------------------------------

    def scan_existing_files(self, config: FolderConfig) -> Future:
        """
        Queue the files already in a folder for sequential processing.

        Folders that are not being watched are left alone.

        Returns:
            Future resolving to the number of files processed
        """
        return asyncio.run_coroutine_threadsafe(self._scan(config), self._loop)

    def scan_all_existing_files(self) -> List[Future]:
        """Start an independent backlog scan for every watched folder."""
        return [self.scan_existing_files(config) for config in self.folders
                if self.is_watching(config.id)]

    async def _scan(self, config: FolderConfig) -> int:
        # Only touched on the loop thread
        lock = self._scan_locks.setdefault(config.id, asyncio.Lock())

        async with lock:
            if not self.is_watching(config.id):
                logger.info(f"{config.path} is not being watched, skipping scan")
                return 0

            backlog = await asyncio.to_thread(self._collect_backlog, config)
            if not backlog:
                return 0

            total = len(backlog)
            processed = 0
            logger.info(f"Scanning {total} existing files in {config.path}")

            try:
                for path, token in backlog:
                    if not self.is_watching(config.id):
                        logger.info(f"Watcher for {config.path} removed, aborting scan")
                        break

                    self.state.set_scan_progress(
                        ScanProgress(processed=processed, total=total, current_file=path.name)
                    )
                    try:
                        await self.process_file(path, config)
                    finally:
                        self._release_later(path, token)
                    processed += 1

                if processed == total:
                    self.state.set_scan_progress(ScanProgress(processed=total, total=total))
            finally:
                for path, token in backlog[processed:]:
                    self._release(str(path), token)
                self.state.set_scan_progress(ScanProgress.idle())

            logger.info(f"Scan of {config.path} finished: {processed}/{total} files")
            return processed

    def _collect_backlog(self, config: FolderConfig) -> List[Tuple[Path, int]]:
        backlog = []
        for path in _walk_files(config.path, config.watch_depth):
            path = normalise_path(path)
            if not self.is_eligible(path, config):
                continue
            token = self._claim(path)
            if token is None:
                continue
            backlog.append((path, token))
        return backlog

    # Undo ----------------------------------------------------------------------------

    def undo(self) -> Optional[Operation]:
        """
        Reverse the most recent move.

        Returns:
            The reversed operation, or None if there is nothing to undo

        Raises:
            UndoError: The move could not be reversed (the entry is dropped)
        """
        try:
            # Moving the file back must not look like a new arrival
            operation = self.mover.undo(
                on_pop=lambda popped: self._hold(normalise_path(popped.source))
            )
        except UndoError as e:
            logger.error(f"Undo failed: {e}")
            file_name = e.operation.destination.name if e.operation is not None else ""
            self.state.add_log(LogEntry(
                file_name=file_name,
                action=f"undo failed: {e}",
                success=False,
            ))
            raise
        finally:
            self.state.set_history(self.mover.history())

        if operation is not None:
            self.state.add_log(LogEntry(
                file_name=operation.destination.name,
                action=f"undo → {operation.source}",
                success=True,
            ))
        return operation

    def history(self) -> List[Operation]:
        """Completed moves, newest first."""
        return list(reversed(self.mover.history()))

    @property
    def can_undo(self) -> bool:
        return bool(self.mover.history())

    def clear_history(self) -> None:
        self.mover.clear_history()
        self.state.set_history([])

    def snapshot(self) -> EngineSnapshot:
        return self.state.snapshot()

    # Shutdown ------------------------------------------------------------------------

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop watching, cancel pending work and stop the loop thread."""
        self.stop_all()
        if self._loop.is_closed():
            return

        try:
            asyncio.run_coroutine_threadsafe(self._cancel_tasks(), self._loop).result(timeout)
        except Exception as e:
            logger.warning(f"Pending tasks did not stop cleanly: {e}")

        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout)
        self._loop.close()
        self._executor.shutdown(wait=False)
        logger.info("Organizing engine shut down")

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in asyncio.all_tasks() if task is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _walk_files(root: Path, max_depth: int) -> Iterator[Path]:
    """Yield files under ``root`` no deeper than ``max_depth`` (-1 = unbounded)."""
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        depth = len(current.relative_to(root).parts)

        if max_depth < 0 or depth < max_depth:
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        else:
            dirnames[:] = []

        for name in sorted(filenames):
            path = current / name
            if not is_hidden(path) and path.is_file():
                yield path


# Global engine instance
_engine: Optional[OrganizingEngine] = None


def get_engine() -> OrganizingEngine:
    """Get global engine instance, building it from settings on first use."""
    global _engine
    if _engine is None:
        _engine = OrganizingEngine.from_settings(get_settings())
    return _engine


def close_engine():
    """Shut down the global engine instance."""
    global _engine
    if _engine is not None:
        _engine.shutdown()
        _engine = None
