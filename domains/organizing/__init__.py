"""
Organizing Domain

Watches configured folders and files new arrivals where they belong:
- watchers/filesystem.py - watchdog-backed change detection per watched root
- classifier.py - prompt building, backend calls with retry, response parsing
- mover.py - conflict-resolving moves with an undo journal
- extractor.py - text extraction handed to the classifier
- engine.py - debounce, dedupe, per-file pipeline and backlog scans
- state.py - published status, log, scan progress and watch state
- notifier.py - desktop notifications for completed moves
"""

__all__ = ["classifier", "engine", "errors", "extractor", "mover", "notifier", "state", "watchers"]
