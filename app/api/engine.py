"""
Engine endpoints for watch control.

Includes:
- Status, processing log and scan progress
- Start/stop of all watchers
- Backlog scan triggers
- Undo of the most recent move
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
from loguru import logger

from app.models.schemas import EngineSnapshot, LogEntry, Operation, OperationStatus
from domains.organizing.engine import OrganizingEngine, get_engine
from domains.organizing.errors import UndoError

router = APIRouter()


@router.get("/status", response_model=EngineSnapshot)
def get_status(engine: OrganizingEngine = Depends(get_engine)):
    """Everything the engine publishes, as one snapshot."""
    return engine.snapshot()


@router.get("/logs", response_model=List[LogEntry])
def get_logs(limit: int = Query(50, ge=1, le=1000), engine: OrganizingEngine = Depends(get_engine)):
    """Most recent processing log entries, newest first."""
    return engine.state.logs[:limit]


@router.post("/start", response_model=OperationStatus)
def start_all(engine: OrganizingEngine = Depends(get_engine)):
    """Start watching every enabled folder."""
    logger.info("Start requested for all folders")
    engine.start_all()

    watched = len(engine.snapshot().watched_folders)
    return OperationStatus(status="watching", message=f"Watching {watched} folder(s)")


@router.post("/stop", response_model=OperationStatus)
def stop_all(engine: OrganizingEngine = Depends(get_engine)):
    """Stop all watchers and clear the in-flight set."""
    logger.info("Stop requested for all folders")
    engine.stop_all()
    return OperationStatus(status="idle", message="All watchers stopped")


@router.post("/scan", response_model=OperationStatus)
def scan_all(engine: OrganizingEngine = Depends(get_engine)):
    """
    Organize files already present in every enabled folder.

    Each folder is scanned as an independent background task.
    """
    futures = engine.scan_all_existing_files()
    logger.info(f"Backlog scan triggered for {len(futures)} folder(s)")

    return OperationStatus(status="queued", message=f"Scan queued for {len(futures)} folder(s)")


@router.post("/undo", response_model=OperationStatus)
def undo_last(engine: OrganizingEngine = Depends(get_engine)):
    """Move the most recently organized file back where it came from."""
    try:
        operation = engine.undo()
    except UndoError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if operation is None:
        return OperationStatus(status="noop", message="Nothing to undo")

    return OperationStatus(
        status="undone",
        message=f"Moved {operation.destination.name} back to {operation.source.parent}",
        operation=operation,
    )


@router.get("/history", response_model=List[Operation])
def get_history(engine: OrganizingEngine = Depends(get_engine)):
    """Completed moves, newest first."""
    return engine.history()
