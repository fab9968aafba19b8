"""
Pydantic models for Folder Sorter.

Shared data models across the organizing pipeline and the API.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.utils.helpers import generate_uuid, get_file_extension, normalise_path, now_utc


# =====================================================
# Folder Configuration Models
# =====================================================

class RenameMode(str, Enum):
    """How the classifier should propose new file names."""
    FREE_FORM = "free-form"
    RULE_BASED = "rule-based"


class RenameConfig(BaseModel):
    """Rename settings passed along with a classification request."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    mode: RenameMode = RenameMode.FREE_FORM
    rule: str = ""

    @classmethod
    def disabled(cls) -> "RenameConfig":
        return cls(enabled=False)


class FolderConfig(BaseModel):
    """A watched root and its organization settings."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_uuid)
    path: Path
    prompt: str = ""
    enabled: bool = True
    extraction_enabled: bool = True
    extensions: List[str] = []  # empty = all
    rename_enabled: bool = False
    rename_mode: RenameMode = RenameMode.FREE_FORM
    rename_rule: str = ""
    watch_depth: int = 0  # 0 = root only, N = N levels, -1 = unbounded

    @field_validator("path")
    @classmethod
    def _resolve_path(cls, value: Path) -> Path:
        return normalise_path(value)

    @field_validator("extensions")
    @classmethod
    def _normalise_extensions(cls, value: List[str]) -> List[str]:
        return [ext.strip().lower().lstrip(".") for ext in value if ext.strip()]

    @field_validator("watch_depth")
    @classmethod
    def _check_depth(cls, value: int) -> int:
        if value < -1:
            raise ValueError("watch_depth must be -1 (unbounded) or >= 0")
        return value

    @property
    def rename_config(self) -> RenameConfig:
        return RenameConfig(
            enabled=self.rename_enabled,
            mode=self.rename_mode,
            rule=self.rename_rule,
        )


# =====================================================
# Pipeline Models
# =====================================================

class FileMetadata(BaseModel):
    """File facts handed to the classifier."""
    name: str
    extension: str
    size: int
    created: Optional[datetime] = None
    modified: Optional[datetime] = None

    @classmethod
    def from_path(cls, path: Path) -> "FileMetadata":
        stats = path.stat()
        # st_birthtime only exists on macOS/BSD; ctime is the closest elsewhere
        created = getattr(stats, "st_birthtime", None) or stats.st_ctime
        return cls(
            name=path.name,
            extension=get_file_extension(path),
            size=stats.st_size,
            created=datetime.fromtimestamp(created),
            modified=datetime.fromtimestamp(stats.st_mtime),
        )


class ExtractionResult(BaseModel):
    """Text pulled out of a file by a content extractor."""
    text: str = ""
    confidence: float = 0.0  # advisory only


class Classification(BaseModel):
    """Where the backend decided a file belongs."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    folder: str
    reason: str = ""
    suggested_name: Optional[str] = Field(default=None, alias="suggestedName")

    @field_validator("folder")
    @classmethod
    def _folder_not_empty(cls, value: str) -> str:
        value = value.strip()
        if not value.strip("/"):
            raise ValueError("folder must not be empty")
        return value


class Operation(BaseModel):
    """One completed move, kept for undo."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_uuid)
    timestamp: datetime = Field(default_factory=now_utc)
    source: Path
    destination: Path
    classification: Classification


# =====================================================
# Published State Models
# =====================================================

class StatusState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    PROCESSING = "processing"
    ERROR = "error"


class EngineStatus(BaseModel):
    """Scalar engine status (last write wins)."""
    model_config = ConfigDict(frozen=True)

    state: StatusState = StatusState.IDLE
    file_name: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "EngineStatus":
        return cls(state=StatusState.IDLE)

    @classmethod
    def watching(cls) -> "EngineStatus":
        return cls(state=StatusState.WATCHING)

    @classmethod
    def processing(cls, file_name: str) -> "EngineStatus":
        return cls(state=StatusState.PROCESSING, file_name=file_name)

    @classmethod
    def error(cls, message: str) -> "EngineStatus":
        return cls(state=StatusState.ERROR, message=message)


class ScanProgress(BaseModel):
    """Progress of a backlog scan; total == 0 means idle."""
    model_config = ConfigDict(frozen=True)

    processed: int = 0
    total: int = 0
    current_file: Optional[str] = None

    @classmethod
    def idle(cls) -> "ScanProgress":
        return cls()

    @property
    def fraction(self) -> float:
        return self.processed / self.total if self.total > 0 else 0.0

    @property
    def is_active(self) -> bool:
        return self.total > 0 and self.processed < self.total


class LogEntry(BaseModel):
    """Processing log entry shown to the user."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_uuid)
    timestamp: datetime = Field(default_factory=now_utc)
    file_name: str
    action: str
    success: bool


class EngineSnapshot(BaseModel):
    """Read-only view of everything the engine publishes."""
    status: EngineStatus
    logs: List[LogEntry] = []
    scan_progress: ScanProgress = ScanProgress()
    can_undo: bool = False
    watched_folders: List[str] = []
    is_running: bool = False


class OperationStatus(BaseModel):
    """Generic operation status."""
    status: str
    message: str
    operation: Optional[Operation] = None

