"""Service lifecycle management against the container engine."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from kaspa_aio.catalog import ProfileCatalog, get_default_catalog
from kaspa_aio.errors import EngineError, StorageError
from kaspa_aio.models.profile import ServiceSpec
from kaspa_aio.providers.base import ContainerEngine, ContainerStatus
from kaspa_aio.store.files import InstallationFiles


logger = logging.getLogger(__name__)


class ServiceLifecycleManager:
    """Maps profiles to containers and drives the container engine.

    Container status is always re-read from the engine; results are reused
    for at most ``status_cache_ttl`` seconds and dropped on any change made
    through this manager.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        files: InstallationFiles,
        catalog: Optional[ProfileCatalog] = None,
        max_parallel: int = 4,
        status_cache_ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.files = files
        self.catalog = catalog or get_default_catalog()
        self.status_cache_ttl = status_cache_ttl
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_parallel)
        self._status_cache: Dict[str, Tuple[float, ContainerStatus]] = {}
        self.profile_containers = self._build_profile_map()

    def _build_profile_map(self) -> Dict[str, List[str]]:
        """Container names per profile id, legacy ids included.

        Legacy ids resolve through the catalog's migration table, the same
        one the validator uses.
        """
        mapping = {profile.id: profile.service_names for profile in self.catalog.profiles}
        for legacy_id in self.catalog.legacy_map:
            new_ids, _ = self.catalog.migrate([legacy_id])
            names: List[str] = []
            for profile_id in new_ids:
                for name in mapping.get(profile_id, []):
                    if name not in names:
                        names.append(name)
            mapping[legacy_id] = names
        return mapping

    def get_container_names_for_profiles(self, profile_ids: Iterable[str]) -> List[str]:
        """Container names for the given profiles, deduplicated.

        Unknown ids are logged and skipped.
        """
        names: List[str] = []
        for profile_id in profile_ids:
            containers = self.profile_containers.get(profile_id)
            if containers is None:
                logger.warning(f"Unknown profile {profile_id}, skipping")
                continue
            for name in containers:
                if name not in names:
                    names.append(name)
        return names

    def group_by_phase(self, names: Iterable[str], reverse: bool = False) -> List[List[str]]:
        """Group service names by startup order; reverse for teardown.

        Services missing from the catalog are treated as phase 0.
        """
        phases: Dict[int, List[str]] = {}
        for name in names:
            service = self.catalog.get_service(name)
            order = service.startup_order if service else 0
            phases.setdefault(order, []).append(name)
        ordered = sorted(phases, reverse=reverse)
        return [sorted(phases[order]) for order in ordered]

    def _invalidate(self, name: str) -> None:
        self._status_cache.pop(name, None)

    async def _call(self, name: str, operation: Callable[[], Awaitable[None]]) -> None:
        async with self._semaphore:
            try:
                await operation()
            finally:
                self._invalidate(name)

    async def start(self, name: str, recreate: bool = False) -> None:
        await self._call(name, lambda: self.engine.start(name, recreate=recreate))

    async def stop(self, name: str) -> None:
        await self._call(name, lambda: self.engine.stop(name))

    async def restart(self, name: str) -> None:
        await self._call(name, lambda: self.engine.restart(name))

    async def stop_and_remove(self, name: str, remove_data: bool = False) -> None:
        """Stop and remove a container; with ``remove_data`` its volumes go too."""
        service = self.catalog.get_service(name)
        volumes = service.named_volumes if service and remove_data else []

        async def _remove():
            await self.engine.stop(name)
            await self.engine.remove(name, volumes=remove_data)
            for volume in volumes:
                await self.engine.remove_volume(volume)

        await self._call(name, _remove)

    async def status(self, name: str) -> ContainerStatus:
        """Engine status of a container, reused for a few seconds at most."""
        cached = self._status_cache.get(name)
        now = self._clock()
        if cached and now - cached[0] < self.status_cache_ttl:
            return cached[1]
        status = await self.engine.inspect(name)
        self._status_cache[name] = (self._clock(), status)
        return status

    async def status_all(self, names: Iterable[str]) -> Dict[str, ContainerStatus]:
        names = list(names)
        statuses = await asyncio.gather(*(self.status(name) for name in names))
        return dict(zip(names, statuses))

    async def run_parallel(self, names: List[str], action: Callable[[str], Awaitable[None]]) -> None:
        """Run an action for every name concurrently, bounded by the semaphore.

        All actions finish before the first failure is raised.
        """
        results = await asyncio.gather(*(action(name) for name in names), return_exceptions=True)
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                if isinstance(result, EngineError):
                    raise result
                raise EngineError(f"{name}: {result}", container=name) from result

    async def apply_phases(
        self,
        names: Iterable[str],
        action: Callable[[str], Awaitable[None]],
        reverse: bool = False,
    ) -> None:
        """Run an action phase by phase, concurrently within a phase."""
        for phase in self.group_by_phase(names, reverse=reverse):
            await self.run_parallel(phase, action)

    async def ensure_images(self, services: List[ServiceSpec]) -> None:
        """Build or pull the images for the given services."""
        async def _ensure(service: ServiceSpec):
            async with self._semaphore:
                if service.build:
                    await self.engine.build(service)
                elif not await self.engine.image_exists(service.image):
                    await self.engine.pull(service.image)

        by_name = {service.name: service for service in services}
        await self.run_parallel(list(by_name), lambda name: _ensure(by_name[name]))

    async def remove_services(self, names: List[str], remove_data: bool = False) -> List[str]:
        """Remove services from the engine, the compose document and the state.

        The three effects are applied together: the document and state are
        rewritten only for services the engine actually removed, and the
        document is put back if the state cannot be saved.
        The reconciliation engine calls this for every removal, under its lock.

        Raises:
            EngineError: some containers could not be removed; the others are gone
                from engine, document and state
        """
        document = await self.files.load_compose()
        state = await self.files.load_state()

        results = await asyncio.gather(
            *(self.stop_and_remove(name, remove_data) for name in names),
            return_exceptions=True,
        )
        removed = []
        failures: Dict[str, str] = {}
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                failures[name] = str(result)
            else:
                removed.append(name)

        if removed:
            await self._commit_removal(document, state, removed)

        if failures:
            raise EngineError(
                f"Failed to remove {', '.join(failures)}",
                details={"removed": removed, "failed": failures},
            )
        logger.info(f"Removed services: {', '.join(removed)}")
        return removed

    async def _commit_removal(self, document, state, removed: List[str]) -> None:
        original = await self.files.read("compose")
        services = document.get("services") or {}
        changed = False
        for name in removed:
            if services.pop(name, None) is not None:
                changed = True
        for block in services.values():
            depends_on = block.get("depends_on")
            if isinstance(depends_on, list):
                remaining = [d for d in depends_on if d not in removed]
                if len(remaining) == len(depends_on):
                    continue
                changed = True
                if remaining:
                    block["depends_on"] = remaining
                else:
                    del block["depends_on"]

        if changed:
            await self.files.save_compose(document)
        try:
            await self.files.save_state(state.without_services(removed))
        except StorageError:
            logger.error("State update failed after removal, restoring compose document")
            if changed and original is not None:
                await self.files.write("compose", original)
            raise
