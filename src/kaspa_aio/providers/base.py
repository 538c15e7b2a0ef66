"""Container engine interface."""

from abc import ABC, abstractmethod
from enum import Enum

from kaspa_aio.models.profile import ServiceSpec


class ContainerStatus(str, Enum):
    """Observed container state."""
    RUNNING = "running"
    STOPPED = "stopped"
    RESTARTING = "restarting"
    ABSENT = "absent"
    UNKNOWN = "unknown"
    ERROR = "error"


class ContainerEngine(ABC):
    """Capabilities the installer needs from the container engine.

    Implementations raise EngineError on failure. Stopping or removing a
    container that does not exist is not a failure.
    """

    @abstractmethod
    async def start(self, name: str, recreate: bool = False) -> None:
        """Create if needed and start a service's container."""
        pass

    @abstractmethod
    async def stop(self, name: str) -> None:
        pass

    @abstractmethod
    async def restart(self, name: str) -> None:
        pass

    @abstractmethod
    async def remove(self, name: str, volumes: bool = False) -> None:
        """Remove a container, and its anonymous volumes when asked."""
        pass

    @abstractmethod
    async def remove_volume(self, volume: str) -> None:
        """Remove a named volume declared in the compose document."""
        pass

    @abstractmethod
    async def inspect(self, name: str) -> ContainerStatus:
        pass

    @abstractmethod
    async def image_exists(self, image: str) -> bool:
        pass

    @abstractmethod
    async def pull(self, image: str) -> None:
        pass

    @abstractmethod
    async def build(self, service: ServiceSpec) -> None:
        pass
