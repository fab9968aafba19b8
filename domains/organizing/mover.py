"""
Conflict-resolving file mover with an undo journal.

Moves a classified file under its watched root, renaming it when the
classifier suggested a name and suffixing " (n)" on collisions. Every
completed move is journaled so the most recent one can be reversed.
"""

import errno
import os
import threading
from collections import deque
from pathlib import Path, PurePosixPath
from typing import Callable, Deque, List, Optional

from loguru import logger

from app.models.schemas import Classification, Operation
from app.utils.helpers import sanitize_filename
from domains.organizing.errors import MoveError, UndoError


def resolve_conflict(destination: Path) -> Path:
    """
    Return ``destination`` or the first free "name (n).ext" beside it.

    Args:
        destination: Desired destination path

    Returns:
        A path that does not exist yet
    """
    if not destination.exists():
        return destination

    stem = destination.stem
    suffix = destination.suffix
    counter = 1
    while True:
        candidate = destination.with_name(f"{stem} ({counter}){suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def move_without_replace(source: Path, destination: Path) -> None:
    """
    Move ``source`` to ``destination``, refusing to replace an existing file.

    A hard link claims the destination atomically. Symlinks and file
    systems without hard links fall back to a checked rename.

    Raises:
        FileExistsError: Something already sits at ``destination``
        OSError: The move failed
    """
    if not source.is_symlink():
        try:
            os.link(source, destination)
        except FileExistsError:
            raise
        except OSError as e:
            logger.debug(f"Hard link unavailable for {destination}, renaming: {e}")
        else:
            try:
                os.unlink(source)
            except OSError:
                os.unlink(destination)
                raise
            return

    if destination.exists() or destination.is_symlink():
        raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), str(destination))
    os.rename(source, destination)


def _make_dirs(directory: Path) -> List[Path]:
    """Create ``directory`` and its parents; return the created ones, deepest first."""
    missing = []
    current = directory
    while not current.exists() and current != current.parent:
        missing.append(current)
        current = current.parent

    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        _remove_empty(missing)
        raise MoveError(f"Could not create {directory}: {e}") from e
    return missing


def _remove_empty(directories: List[Path]) -> None:
    """Remove ``directories`` (deepest first), stopping at the first non-empty one."""
    for directory in directories:
        try:
            directory.rmdir()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Could not clean up {directory}: {e}")
            return


class FileMover:
    """Moves files into classified folders and keeps an undo journal."""

    def __init__(self, history_limit: Optional[int] = 500):
        """
        Initialize the mover.

        Args:
            history_limit: Maximum journaled operations, oldest dropped first.
                None keeps everything.
        """
        self._history: Deque[Operation] = deque(maxlen=history_limit)
        # Guards the journal and every name choice + move, so two moves
        # can never settle on the same destination
        self._lock = threading.Lock()

    def organize(self, file_path: Path, classification: Classification,
                 base_directory: Path) -> Operation:
        """
        Move ``file_path`` into ``base_directory / classification.folder``.

        Args:
            file_path: File to move
            classification: Backend decision (folder and optional new name)
            base_directory: Watched root the folder is relative to

        Returns:
            The journaled operation

        Raises:
            MoveError: Folder escapes the root, or creating/renaming failed.
                Folders created for the move are removed again.
        """
        target_dir = self._target_directory(base_directory, classification.folder)
        desired = target_dir / self._target_name(file_path, classification)

        with self._lock:
            created = _make_dirs(target_dir)

            while True:
                destination = resolve_conflict(desired)
                try:
                    move_without_replace(file_path, destination)
                    break
                except FileExistsError:
                    # Taken by someone outside this process since the check
                    logger.debug(f"{destination} appeared meanwhile, trying the next name")
                except OSError as e:
                    _remove_empty(created)
                    raise MoveError(f"Could not move {file_path.name} to {destination}: {e}") from e

            operation = Operation(
                source=file_path,
                destination=destination,
                classification=classification,
            )
            self._history.append(operation)

        logger.info(f"Moved {file_path} -> {destination}")
        return operation

    def undo(self, on_pop: Optional[Callable[[Operation], None]] = None) -> Optional[Operation]:
        """
        Reverse the most recent move.

        The entry is dropped from the journal even when reversing fails,
        since it can no longer be replayed as recorded.

        Args:
            on_pop: Called with the popped operation before its file is
                moved back, while no other move can run

        Returns:
            The reversed operation, or None if the journal is empty

        Raises:
            UndoError: The moved file is gone or its original location is taken
        """
        with self._lock:
            if not self._history:
                return None
            operation = self._history.pop()

            if on_pop is not None:
                on_pop(operation)

            if not operation.destination.exists():
                raise UndoError(f"{operation.destination} no longer exists", operation)

            try:
                operation.source.parent.mkdir(parents=True, exist_ok=True)
                move_without_replace(operation.destination, operation.source)
            except FileExistsError as e:
                raise UndoError(f"{operation.source} is already occupied", operation) from e
            except OSError as e:
                raise UndoError(f"Could not move {operation.destination} back: {e}", operation) from e

            parent = operation.destination.parent
            try:
                if not any(parent.iterdir()):
                    parent.rmdir()
                    logger.debug(f"Removed empty folder {parent}")
            except OSError as e:
                logger.warning(f"Could not clean up {parent}: {e}")

        logger.info(f"Undid move {operation.destination} -> {operation.source}")
        return operation

    def history(self) -> List[Operation]:
        """Journaled operations, oldest first."""
        with self._lock:
            return list(self._history)

    def clear_history(self):
        """Forget every journaled operation."""
        with self._lock:
            self._history.clear()

    @staticmethod
    def _target_directory(base_directory: Path, folder: str) -> Path:
        relative = PurePosixPath(folder.replace("\\", "/"))
        if relative.is_absolute() or ".." in relative.parts:
            raise MoveError(f"Folder {folder!r} escapes {base_directory}")

        segments = [sanitize_filename(part) for part in relative.parts]
        segments = [part for part in segments if part]
        if not segments:
            raise MoveError(f"Folder {folder!r} has no usable name")

        return base_directory.joinpath(*segments)

    @staticmethod
    def _target_name(file_path: Path, classification: Classification) -> str:
        suggested = sanitize_filename(classification.suggested_name or "")
        if not suggested:
            return file_path.name

        extension = file_path.suffix
        if not extension or suggested.lower().endswith(extension.lower()):
            return suggested
        return f"{suggested}{extension}"
