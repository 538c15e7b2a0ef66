"""Persisted installation state models."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class InstalledService(BaseModel):
    """A service materialized by the last committed configuration."""
    name: str
    owner_profiles: List[str] = Field(default_factory=list)
    image: Optional[str] = None


class HistoryEntry(BaseModel):
    """Append-only record of a change applied to the installation."""
    action: str
    timestamp: datetime = Field(default_factory=datetime.now)
    profiles: List[str] = Field(default_factory=list)
    diff: Dict[str, Any] = Field(default_factory=dict)
    snapshot_id: Optional[str] = None
    outcome: Literal["committed", "rolled_back", "restored"] = Field(default="committed")


class InstallationState(BaseModel):
    """What the user asked for. Serialized as installation-state.json."""
    mode: Literal["initial", "reconfigure"] = Field(default="initial")
    selected_profiles: List[str] = Field(default_factory=list)
    configuration: Dict[str, str] = Field(default_factory=dict)
    services: List[InstalledService] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)
    last_modified: Optional[datetime] = None

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @property
    def service_names(self) -> List[str]:
        return [service.name for service in self.services]

    def append_history(self, entry: HistoryEntry) -> None:
        """Append a history entry; existing entries are never rewritten."""
        self.history.append(entry)
        self.last_modified = entry.timestamp

    def without_services(self, names: List[str]) -> "InstallationState":
        """Copy of this state with the given services cleared."""
        removed = set(names)
        return self.model_copy(
            update={
                "services": [s for s in self.services if s.name not in removed],
                "last_modified": datetime.now(),
            },
            deep=True,
        )
