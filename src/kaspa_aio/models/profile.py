"""Profile and service catalog models."""

from typing import Dict, FrozenSet, List, Literal, Optional
from pydantic import BaseModel, Field, validator


class PortBinding(BaseModel):
    """Host port taken from a settings key, mapped onto a container port."""
    setting: str = Field(..., description="Settings key holding the host port")
    container: int = Field(..., ge=1, le=65535)
    protocol: Literal["tcp", "udp"] = Field(default="tcp")


class BuildSpec(BaseModel):
    """Local image build directive."""
    context: str
    dockerfile: Optional[str] = None
    args: Dict[str, str] = Field(default_factory=dict)


class ServiceSpec(BaseModel):
    """A single container unit owned by a profile."""
    name: str = Field(..., description="Service and container name")
    image: str = Field(..., description="Image reference to pull or tag the build as")
    build: Optional[BuildSpec] = None
    startup_order: int = Field(..., ge=1, le=3)
    ports: List[PortBinding] = Field(default_factory=list)
    environment: Dict[str, str] = Field(
        default_factory=dict, description="Container variable -> settings key"
    )
    static_env: Dict[str, str] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    command: Optional[List[str]] = None
    restart: str = Field(default="unless-stopped")
    owner_profiles: FrozenSet[str] = Field(default_factory=frozenset)

    class Config:
        """Pydantic config."""
        extra = "forbid"
        frozen = True

    @property
    def named_volumes(self) -> List[str]:
        """Named volumes mounted by this service; bind mounts are skipped."""
        names = []
        for volume in self.volumes:
            source = volume.split(":", 1)[0]
            if not source.startswith((".", "/", "~")):
                names.append(source)
        return names


class ResourceRequirements(BaseModel):
    """Resource requirements in cores, GB of memory and GB of disk."""
    min_cpu: float = Field(default=0, ge=0)
    min_memory: float = Field(default=0, ge=0)
    min_disk: float = Field(default=0, ge=0)
    recommended_cpu: float = Field(default=0, ge=0)
    recommended_memory: float = Field(default=0, ge=0)
    recommended_disk: float = Field(default=0, ge=0)


class DataVolume(BaseModel):
    """Persistent data kept by a profile's services."""
    type: str
    name: str
    description: str = ""
    estimated_size: str = "Unknown"
    critical: bool = False


class ProfileSpec(BaseModel):
    """User-selectable bundle of services."""
    id: str = Field(..., description="Canonical profile id")
    name: str
    description: str = ""
    category: Literal["node", "application", "indexer", "mining"] = Field(default="application")
    services: List[ServiceSpec] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)
    ports: List[int] = Field(default_factory=list)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    env_defaults: Dict[str, str] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    required_settings: List[str] = Field(default_factory=list)
    data: List[DataVolume] = Field(default_factory=list)

    class Config:
        """Pydantic config."""
        extra = "forbid"

    @validator("services")
    def validate_service_owner(cls, v, values):
        """Tag every service with its owning profile."""
        profile_id = values.get("id")
        tagged = []
        for service in v:
            if profile_id and profile_id not in service.owner_profiles:
                service = service.model_copy(
                    update={"owner_profiles": service.owner_profiles | {profile_id}}
                )
            tagged.append(service)
        return tagged

    @property
    def service_names(self) -> List[str]:
        return [service.name for service in self.services]

    @property
    def setting_keys(self) -> List[str]:
        """Configuration keys recognized for this profile."""
        keys = list(self.env_defaults)
        for key in self.secrets:
            if key not in keys:
                keys.append(key)
        return keys
