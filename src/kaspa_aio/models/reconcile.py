"""Reconciliation models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ReconcilePhase(str, Enum):
    """States of a reconciliation run."""
    IDLE = "idle"
    VALIDATING = "validating"
    SNAPSHOTTING = "snapshotting"
    GENERATING = "generating"
    DIFFING = "diffing"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    MANUAL_RECOVERY_REQUIRED = "manual_recovery_required"


class EnvChange(BaseModel):
    key: str
    type: str
    old: Optional[str] = None
    new: Optional[str] = None


class ConfigDelta(BaseModel):
    """Differences between the committed and the newly generated configuration."""
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    changed: List[str] = Field(default_factory=list)
    env_changes: List[EnvChange] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed or self.env_changes)

    def summary(self) -> Dict[str, Any]:
        """Compact form recorded in history entries."""
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "changed": list(self.changed),
            "env": [{"key": c.key, "type": c.type} for c in self.env_changes],
        }


class ProgressEvent(BaseModel):
    """Progress report emitted while applying."""
    phase: ReconcilePhase
    message: str
    service: Optional[str] = None
    action: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ReconcileResult(BaseModel):
    """Terminal outcome of a reconciliation run."""
    phase: ReconcilePhase
    profiles: List[str] = Field(default_factory=list)
    snapshot_id: Optional[str] = None
    delta: ConfigDelta = Field(default_factory=ConfigDelta)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    rollback_error: Optional[str] = None
    progress: List[ProgressEvent] = Field(default_factory=list)
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.phase == ReconcilePhase.COMMITTED


class DriftEntry(BaseModel):
    """Declared service whose live status differs from what was committed."""
    service: str
    expected: str = "running"
    actual: str
