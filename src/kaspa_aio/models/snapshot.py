"""Backup snapshot models."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from kaspa_aio.models.state import InstallationState


class SnapshotFile(BaseModel):
    """One captured file. ``present`` is False when the file did not exist."""
    name: str
    original_path: str
    size: int = 0
    present: bool = True


class Snapshot(BaseModel):
    """Immutable capture of compose document, env file and state."""
    id: str
    timestamp: datetime
    reason: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    files: List[SnapshotFile] = Field(default_factory=list)
    total_size: int = 0
    selected_profiles: List[str] = Field(default_factory=list)

    class Config:
        """Pydantic config."""
        frozen = True


class SnapshotContents(BaseModel):
    """Parsed contents of a snapshot."""
    snapshot: Snapshot
    compose_text: Optional[str] = None
    env_map: Dict[str, str] = Field(default_factory=dict)
    state: Optional[InstallationState] = None
    services: List[str] = Field(default_factory=list)


class SnapshotChange(BaseModel):
    """Single key difference between two snapshots."""
    key: str
    type: Literal["added", "removed", "changed"]
    old: Optional[str] = None
    new: Optional[str] = None


class SnapshotDiff(BaseModel):
    """Key-by-key comparison of two snapshots."""
    from_id: str
    to_id: str
    changes: List[SnapshotChange] = Field(default_factory=list)
    change_count: int = 0


class RestoreResult(BaseModel):
    """Outcome of restoring a snapshot."""
    backup_id: str
    restored_files: List[str] = Field(default_factory=list)
    removed_files: List[str] = Field(default_factory=list)
    pre_restore_backup: Optional[str] = None
    requires_restart: bool = False


class StorageUsage(BaseModel):
    """Aggregate backup storage."""
    backup_count: int = 0
    total_size: int = 0
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None
