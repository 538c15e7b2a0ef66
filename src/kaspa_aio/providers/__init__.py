"""Container engine providers."""

from kaspa_aio.providers.base import ContainerEngine, ContainerStatus
from kaspa_aio.providers.docker import DockerEngine

__all__ = [
    "ContainerEngine",
    "ContainerStatus",
    "DockerEngine",
]
