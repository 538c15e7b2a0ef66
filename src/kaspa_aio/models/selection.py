"""Validation result models."""

from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from kaspa_aio.models.profile import DataVolume


class IssueCode(str, Enum):
    """Machine-readable validation issue codes."""
    EMPTY_SELECTION = "empty_selection"
    INVALID_PROFILE = "invalid_profile"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    MISSING_PREREQUISITE = "missing_prerequisite"
    PROFILE_CONFLICT = "profile_conflict"
    PORT_CONFLICT = "port_conflict"
    SCHEMA_VIOLATION = "schema_violation"
    PORT_RANGE = "port_range"
    SECRET_MATERIAL = "secret_material"
    DEPENDENT_PROFILE = "dependent_profile"
    # Warnings
    LEGACY_PROFILE_MIGRATED = "legacy_profile_migrated"
    MODERATE_CPU = "moderate_cpu"
    MODERATE_MEMORY = "moderate_memory"
    MODERATE_DISK = "moderate_disk"
    HIGH_CPU = "high_cpu"
    HIGH_MEMORY = "high_memory"
    HIGH_DISK = "high_disk"
    UNUSED_SETTING = "unused_setting"
    NO_NODE_REMAINING = "no_node_remaining"


class ValidationIssue(BaseModel):
    """A single validation error or warning.

    ``field`` is set for settings errors, ``profiles`` and ``port`` for
    selection errors.
    """
    code: IssueCode
    message: str
    severity: Literal["error", "warning", "info"] = Field(default="error")
    field: Optional[str] = None
    profiles: List[str] = Field(default_factory=list)
    port: Optional[int] = None
    alternatives: List[str] = Field(default_factory=list)
    remediation: Optional[str] = None

    class Config:
        """Pydantic config."""
        use_enum_values = True


class StartupPhase(BaseModel):
    """Services started together."""
    order: int
    name: str
    services: List[str] = Field(default_factory=list)


class ResourceEstimate(BaseModel):
    """Aggregated resource requirements of a resolved selection."""
    min_cpu: float = 0
    min_memory: float = 0
    min_disk: float = 0
    recommended_cpu: float = 0
    recommended_memory: float = 0
    recommended_disk: float = 0


class ResolvedSelection(BaseModel):
    """Outcome of validating a requested profile set. Never persisted."""
    valid: bool
    requested: List[str] = Field(default_factory=list)
    resolved: List[str] = Field(default_factory=list)
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    startup_order: List[StartupPhase] = Field(default_factory=list)
    resources: ResourceEstimate = Field(default_factory=ResourceEstimate)
    migrated: Dict[str, List[str]] = Field(default_factory=dict)

    def errors_by_code(self, code: IssueCode) -> List[ValidationIssue]:
        return [e for e in self.errors if e.code == code]

    def warnings_by_code(self, code: IssueCode) -> List[ValidationIssue]:
        return [w for w in self.warnings if w.code == code]


class RemovalImpact(BaseModel):
    """What removing one profile from the current selection would do."""
    profile_id: str
    can_remove: bool
    blockers: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    services: List[str] = Field(default_factory=list)
    remaining_profiles: List[str] = Field(default_factory=list)
    data: List[DataVolume] = Field(default_factory=list)
