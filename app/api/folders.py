"""
Folder registration endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import List
from loguru import logger

from app.models.schemas import FolderConfig, OperationStatus
from domains.organizing.engine import OrganizingEngine, get_engine

router = APIRouter()


def _require_folder(engine: OrganizingEngine, folder_id: str) -> FolderConfig:
    config = engine.get_folder(folder_id)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Unknown folder: {folder_id}")
    return config


@router.get("/", response_model=List[FolderConfig])
def list_folders(engine: OrganizingEngine = Depends(get_engine)):
    """Registered folders."""
    return engine.folders


@router.post("/", response_model=FolderConfig, status_code=201)
def add_folder(config: FolderConfig, engine: OrganizingEngine = Depends(get_engine)):
    """
    Register a folder. Enabled folders are watched immediately.

    Returns:
        The registered configuration, including its id
    """
    if not config.path.is_dir():
        raise HTTPException(status_code=400, detail=f"Not a directory: {config.path}")

    logger.info(f"Registering folder: {config.path}")
    engine.add_folder(config)
    return config


@router.put("/{folder_id}", response_model=FolderConfig)
def update_folder(folder_id: str, config: FolderConfig,
                  engine: OrganizingEngine = Depends(get_engine)):
    """Replace a folder's settings and restart its watcher."""
    _require_folder(engine, folder_id)

    updated = config.model_copy(update={"id": folder_id})
    engine.update_folder(updated)
    return updated


@router.delete("/{folder_id}", response_model=OperationStatus)
def remove_folder(folder_id: str, engine: OrganizingEngine = Depends(get_engine)):
    """Stop watching a folder and forget it."""
    config = _require_folder(engine, folder_id)
    engine.remove_folder(folder_id)
    return OperationStatus(status="removed", message=f"Stopped watching {config.path}")


@router.post("/{folder_id}/scan", response_model=OperationStatus)
def scan_folder(folder_id: str, engine: OrganizingEngine = Depends(get_engine)):
    """Organize the files already present in one folder. It must be watched."""
    config = _require_folder(engine, folder_id)
    if not engine.is_watching(folder_id):
        raise HTTPException(status_code=409, detail=f"Folder is not being watched: {config.path}")

    engine.scan_existing_files(config)
    return OperationStatus(status="queued", message=f"Scan queued for {config.path}")
