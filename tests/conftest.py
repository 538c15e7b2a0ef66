"""Shared fixtures: an in-memory container engine and a temporary installation."""

import asyncio
import itertools
from typing import Dict, List, Optional, Set, Tuple

import pytest

from kaspa_aio.agent.engine import ReconciliationEngine
from kaspa_aio.agent.lifecycle import ServiceLifecycleManager
from kaspa_aio.catalog import get_default_catalog
from kaspa_aio.generator import ConfigGenerator
from kaspa_aio.models.profile import ServiceSpec
from kaspa_aio.providers.base import ContainerEngine, ContainerStatus
from kaspa_aio.store import InstallationFiles, VersionStore
from kaspa_aio.validation import DependencyValidator


MINING_ADDRESS = "kaspa:" + "q" * 61


class FakeEngine(ContainerEngine):
    """Container engine keeping container state in memory.

    ``fail_on`` maps ``(action, name)`` to an exception raised by that call.
    When ``gate`` is set, ``start`` waits for it.
    """

    def __init__(self):
        self.containers: Dict[str, ContainerStatus] = {}
        self.images: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []
        self.removed_volumes: List[str] = []
        self.fail_on: Dict[Tuple[str, str], Exception] = {}
        self.gate: Optional[asyncio.Event] = None

    def _record(self, action: str, name: str):
        self.calls.append((action, name))
        error = self.fail_on.get((action, name))
        if error:
            raise error

    def calls_for(self, action: str) -> List[str]:
        return [name for call, name in self.calls if call == action]

    async def start(self, name: str, recreate: bool = False) -> None:
        if self.gate:
            await self.gate.wait()
        self._record("recreate" if recreate else "start", name)
        self.containers[name] = ContainerStatus.RUNNING

    async def stop(self, name: str) -> None:
        self._record("stop", name)
        if name in self.containers:
            self.containers[name] = ContainerStatus.STOPPED

    async def restart(self, name: str) -> None:
        self._record("restart", name)
        self.containers[name] = ContainerStatus.RUNNING

    async def remove(self, name: str, volumes: bool = False) -> None:
        self._record("remove", name)
        self.containers.pop(name, None)

    async def remove_volume(self, volume: str) -> None:
        self._record("remove_volume", volume)
        self.removed_volumes.append(volume)

    async def inspect(self, name: str) -> ContainerStatus:
        return self.containers.get(name, ContainerStatus.ABSENT)

    async def image_exists(self, image: str) -> bool:
        return image in self.images

    async def pull(self, image: str) -> None:
        self._record("pull", image)
        self.images.add(image)

    async def build(self, service: ServiceSpec) -> None:
        self._record("build", service.name)
        self.images.add(service.image)


@pytest.fixture
def catalog():
    return get_default_catalog()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def installation(tmp_path):
    """Installation files under a temporary project directory."""
    return InstallationFiles(
        compose_file=tmp_path / "docker-compose.yml",
        env_file=tmp_path / ".env",
        state_file=tmp_path / ".kaspa-aio" / "installation-state.json",
    )


@pytest.fixture
def store(installation, tmp_path):
    return VersionStore(installation, tmp_path / ".kaspa-backups", retention=5)


@pytest.fixture
def secret_factory():
    """Deterministic secrets so generated files can be compared."""
    counter = itertools.count()
    return lambda: f"generated-secret-{next(counter):04d}"


@pytest.fixture
def generator(catalog, secret_factory):
    return ConfigGenerator(catalog, secret_factory=secret_factory)


@pytest.fixture
def lifecycle(fake_engine, installation, catalog):
    return ServiceLifecycleManager(fake_engine, installation, catalog=catalog)


@pytest.fixture
def engine(catalog, generator, store, lifecycle, installation):
    return ReconciliationEngine(
        validator=DependencyValidator(catalog),
        generator=generator,
        store=store,
        lifecycle=lifecycle,
        files=installation,
        default_timeout=30,
    )


@pytest.fixture
def mining_address():
    return MINING_ADDRESS
