"""Configuration models."""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, validator


class AgentConfig(BaseModel):
    """Agent configuration."""
    socket_path: str = Field(default="./state/kaspa-aio-agent.sock")
    host: Optional[str] = None
    port: int = Field(default=8787, ge=1, le=65535)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    drift_check_interval: int = Field(default=60, ge=5)
    watch_files: bool = Field(default=True)

    @validator("log_level")
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class InstallationConfig(BaseModel):
    """Where the managed installation lives on disk."""
    project_dir: str = Field(default=".")
    compose_file: str = Field(default="docker-compose.yml")
    env_file: str = Field(default=".env")
    state_file: str = Field(default=".kaspa-aio/installation-state.json")
    backup_dir: str = Field(default=".kaspa-backups")

    def resolve(self, name: str) -> Path:
        """Resolve a configured path against the project directory."""
        path = Path(getattr(self, name))
        if path.is_absolute():
            return path
        return Path(self.project_dir) / path


class EngineConfig(BaseModel):
    """Container engine settings."""
    binary: str = Field(default="docker")
    project_name: str = Field(default="kaspa-aio")
    max_parallel_operations: int = Field(default=4, ge=1, le=32)
    operation_timeout: int = Field(default=1800, ge=60)
    status_cache_ttl: float = Field(default=5.0, ge=0, le=30)


class BackupConfig(BaseModel):
    """Backup retention."""
    retention: int = Field(default=10, ge=1)


class AioConfig(BaseModel):
    """Main configuration model."""
    agent: AgentConfig = Field(default_factory=AgentConfig)
    installation: InstallationConfig = Field(default_factory=InstallationConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    backups: BackupConfig = Field(default_factory=BackupConfig)

    class Config:
        """Pydantic config."""
        extra = "ignore"
