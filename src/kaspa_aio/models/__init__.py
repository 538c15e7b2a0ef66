"""Pydantic models for configuration, catalog and state."""

from kaspa_aio.models.config import AioConfig, AgentConfig, InstallationConfig, EngineConfig, BackupConfig
from kaspa_aio.models.profile import ProfileSpec, ServiceSpec, PortBinding, BuildSpec, ResourceRequirements, DataVolume
from kaspa_aio.models.selection import IssueCode, ValidationIssue, ResolvedSelection, StartupPhase, RemovalImpact
from kaspa_aio.models.state import InstallationState, HistoryEntry, InstalledService
from kaspa_aio.models.snapshot import Snapshot, SnapshotDiff, RestoreResult
from kaspa_aio.models.reconcile import ReconcilePhase, ReconcileResult, ConfigDelta

__all__ = [
    "AioConfig",
    "AgentConfig",
    "InstallationConfig",
    "EngineConfig",
    "BackupConfig",
    "ProfileSpec",
    "ServiceSpec",
    "PortBinding",
    "BuildSpec",
    "ResourceRequirements",
    "DataVolume",
    "IssueCode",
    "ValidationIssue",
    "ResolvedSelection",
    "StartupPhase",
    "RemovalImpact",
    "InstallationState",
    "HistoryEntry",
    "InstalledService",
    "Snapshot",
    "SnapshotDiff",
    "RestoreResult",
    "ReconcilePhase",
    "ReconcileResult",
    "ConfigDelta",
]
