"""Reconciliation engine: applies profile selections to the running installation."""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from kaspa_aio.agent.lifecycle import ServiceLifecycleManager
from kaspa_aio.errors import (
    ConcurrencyError,
    EngineError,
    KaspaAioError,
    StorageError,
    ValidationFailed,
)
from kaspa_aio.generator.compose import ConfigGenerator, GeneratedConfig
from kaspa_aio.models.reconcile import (
    ConfigDelta,
    DriftEntry,
    EnvChange,
    ProgressEvent,
    ReconcilePhase,
    ReconcileResult,
)
from kaspa_aio.models.selection import IssueCode, RemovalImpact, ResolvedSelection, ValidationIssue
from kaspa_aio.models.snapshot import RestoreResult, Snapshot
from kaspa_aio.models.state import HistoryEntry, InstallationState, InstalledService
from kaspa_aio.providers.base import ContainerStatus
from kaspa_aio.store.backups import MASK, SECRET_HINTS, VersionStore
from kaspa_aio.store.files import InstallationFiles
from kaspa_aio.validation.validator import DependencyValidator


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def _plain(value: Any) -> Any:
    """Plain dict/list copy of a loaded YAML node, for comparison."""
    return json.loads(json.dumps(value, default=str))


def _mask(key: str, value: Optional[str]) -> Optional[str]:
    if value is not None and any(hint in key for hint in SECRET_HINTS):
        return MASK
    return value


def compute_delta(
    old_document: Dict[str, Any],
    new_document: Dict[str, Any],
    old_env: Optional[Dict[str, str]] = None,
    new_env: Optional[Dict[str, str]] = None,
) -> ConfigDelta:
    """Services added, removed and changed between two compose documents."""
    old_services = _plain(old_document.get("services") or {})
    new_services = _plain(new_document.get("services") or {})

    delta = ConfigDelta(
        added=[name for name in new_services if name not in old_services],
        removed=[name for name in old_services if name not in new_services],
        changed=[
            name for name in new_services
            if name in old_services and old_services[name] != new_services[name]
        ],
    )

    old_env = old_env or {}
    new_env = new_env or {}
    for key in sorted(set(old_env) | set(new_env)):
        old = old_env.get(key)
        new = new_env.get(key)
        if old == new:
            continue
        change_type = "added" if old is None else "removed" if new is None else "changed"
        delta.env_changes.append(EnvChange(key=key, type=change_type, old=_mask(key, old), new=_mask(key, new)))
    return delta


class ReconciliationEngine:
    """Turns a target profile selection into applied, running configuration.

    Runs move through validating, snapshotting, generating, diffing and
    applying, and end committed, rolled back, failed (nothing changed) or
    requiring manual recovery (the rollback itself failed). Only one run may
    be active; a second request is rejected with ConcurrencyError.
    """

    def __init__(
        self,
        validator: DependencyValidator,
        generator: ConfigGenerator,
        store: VersionStore,
        lifecycle: ServiceLifecycleManager,
        files: InstallationFiles,
        default_timeout: float = 1800,
    ):
        self.validator = validator
        self.generator = generator
        self.store = store
        self.lifecycle = lifecycle
        self.files = files
        self.catalog = validator.catalog
        self.default_timeout = default_timeout
        self.phase = ReconcilePhase.IDLE
        self.progress: List[ProgressEvent] = []
        self.last_result: Optional[ReconcileResult] = None
        self.last_reconciliation: Optional[datetime] = None
        self.last_drift: List[DriftEntry] = []
        self._lock = asyncio.Lock()
        self._on_progress: Optional[ProgressCallback] = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def validate(self, profile_ids: Iterable[str]) -> ResolvedSelection:
        """Validate a selection. Safe while a reconciliation is running."""
        return self.validator.validate_selection(profile_ids)

    def _enter(self, phase: ReconcilePhase) -> None:
        self.phase = phase
        logger.info(f"Reconciliation phase: {phase.value}")

    def _report(self, message: str, service: Optional[str] = None, action: Optional[str] = None) -> None:
        event = ProgressEvent(phase=self.phase, message=message, service=service, action=action)
        self.progress.append(event)
        if self._on_progress:
            try:
                self._on_progress(event)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _acquire_check(self) -> None:
        if self._lock.locked():
            raise ConcurrencyError("A reconfiguration is already in progress")

    async def reconcile(
        self,
        target_profiles: Iterable[str],
        settings: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
        action: str = "reconfigure",
        remove_data: bool = False,
    ) -> ReconcileResult:
        """Apply a target selection.

        Raises:
            ConcurrencyError: another run is active
            ValidationFailed: selection or settings invalid; nothing changed
            StorageError: snapshot or state could not be read or written; nothing changed
        """
        self._acquire_check()
        async with self._lock:
            self.progress = []
            self._on_progress = on_progress
            try:
                result = await self._run(
                    list(target_profiles), settings or {}, timeout or self.default_timeout, action, remove_data
                )
            except KaspaAioError as e:
                self._enter(ReconcilePhase.FAILED)
                self.last_result = ReconcileResult(phase=ReconcilePhase.FAILED, error=e.to_dict())
                raise
            finally:
                self._on_progress = None
            self.last_result = result
            self.last_reconciliation = datetime.now()
            return result

    async def _run(
        self,
        target_profiles: List[str],
        settings: Dict[str, Any],
        timeout: float,
        action: str,
        remove_data: bool,
    ) -> ReconcileResult:
        started = time.monotonic()

        self._enter(ReconcilePhase.VALIDATING)
        selection = self.validator.validate_selection(target_profiles)
        if not selection.valid:
            raise ValidationFailed("Profile selection is invalid", issues=selection.errors)
        state = await self.files.load_state()

        self._enter(ReconcilePhase.SNAPSHOTTING)
        snapshot = await self.store.create_backup(
            f"Before {action}", {"action": action, "target_profiles": selection.resolved}
        )

        self._enter(ReconcilePhase.GENERATING)
        generated = self.generator.generate(selection.resolved, self._merge_settings(state, selection.resolved, settings))

        self._enter(ReconcilePhase.DIFFING)
        old_document = await self.files.load_compose()
        old_env = await self.files.load_env()
        delta = compute_delta(old_document, generated.compose_document, old_env, generated.env_map)
        logger.info(
            f"Delta: added={delta.added} removed={delta.removed} changed={delta.changed} "
            f"env_changes={len(delta.env_changes)}"
        )

        warnings = [w.model_dump() for w in selection.warnings + generated.warnings]
        result = ReconcileResult(
            phase=ReconcilePhase.APPLYING,
            profiles=generated.profiles,
            snapshot_id=snapshot.id,
            delta=delta,
            warnings=warnings,
        )

        self._enter(ReconcilePhase.APPLYING)
        try:
            await asyncio.wait_for(self._apply(generated, delta, remove_data), timeout=timeout)
            await self._commit(state, generated, delta, snapshot.id, action)
        except asyncio.CancelledError as e:
            await asyncio.shield(self._handle_failure(result, snapshot.id, delta, e))
            raise
        except (EngineError, StorageError, asyncio.TimeoutError) as e:
            await asyncio.shield(self._handle_failure(result, snapshot.id, delta, e))
            result.duration = time.monotonic() - started
            result.progress = list(self.progress)
            return result

        self._enter(ReconcilePhase.COMMITTED)
        result.phase = ReconcilePhase.COMMITTED
        result.duration = time.monotonic() - started
        result.progress = list(self.progress)
        await self._prune_backups()
        logger.info(f"Reconciliation committed in {result.duration:.2f}s")
        return result

    def _merge_settings(self, state: InstallationState, profiles: List[str], settings: Dict[str, Any]) -> Dict[str, Any]:
        """Committed configuration overlaid with new settings.

        Only previous values the new selection still uses are carried over, so
        generated secrets survive reconfiguration.
        """
        relevant = self.generator.relevant_keys(profiles)
        merged: Dict[str, Any] = {k: v for k, v in state.configuration.items() if k in relevant}
        merged.update(settings)
        return merged

    async def _apply(self, generated: GeneratedConfig, delta: ConfigDelta, remove_data: bool) -> None:
        await self.files.write("compose", generated.compose_text)
        await self.files.write("env", generated.env_text)
        self._report("Configuration files written", action="write")
        await self._apply_delta(delta, remove_data)

    async def _apply_delta(self, delta: ConfigDelta, remove_data: bool = False) -> None:
        """Remove dependents before dependencies, start dependencies before dependents."""
        for phase in self.lifecycle.group_by_phase(delta.removed, reverse=True):
            for name in await self.lifecycle.remove_services(phase, remove_data):
                self._report(f"Removed {name}", service=name, action="remove")

        to_start = delta.added + delta.changed
        services = [self.catalog.get_service(name) for name in to_start]
        services = [service for service in services if service is not None]
        if services:
            self._report(f"Preparing images for {len(services)} services", action="images")
            await self.lifecycle.ensure_images(services)

        changed = set(delta.changed)
        await self.lifecycle.apply_phases(to_start, lambda name: self._start(name, recreate=name in changed))

    async def _start(self, name: str, recreate: bool = False) -> None:
        await self.lifecycle.start(name, recreate=recreate)
        self._report(f"Started {name}", service=name, action="start")

    async def _commit(
        self,
        state: InstallationState,
        generated: GeneratedConfig,
        delta: ConfigDelta,
        snapshot_id: str,
        action: str,
    ) -> None:
        first_install = not state.selected_profiles
        state.mode = "initial" if first_install else "reconfigure"
        state.selected_profiles = list(generated.profiles)
        state.configuration = dict(generated.env_map)
        state.services = [
            InstalledService(
                name=service.name,
                owner_profiles=sorted(service.owner_profiles),
                image=service.image,
            )
            for service in self.catalog.services_for(generated.profiles)
        ]
        state.append_history(
            HistoryEntry(
                action=action,
                profiles=list(generated.profiles),
                diff=delta.summary(),
                snapshot_id=snapshot_id,
            )
        )
        await self.files.save_state(state)

    async def _handle_failure(
        self,
        result: ReconcileResult,
        snapshot_id: str,
        delta: ConfigDelta,
        error: BaseException,
    ) -> None:
        result.error = self._describe(error)
        logger.warning(f"Applying failed ({result.error['error']}), rolling back to {snapshot_id}")
        try:
            await self._revert(snapshot_id, delta)
        except Exception as e:
            self._enter(ReconcilePhase.MANUAL_RECOVERY_REQUIRED)
            result.phase = ReconcilePhase.MANUAL_RECOVERY_REQUIRED
            result.rollback_error = str(e)
            logger.critical(
                f"Rollback to backup {snapshot_id} failed: {e}. "
                f"Manual recovery required: restore backup {snapshot_id} and restart the services"
            )
            return
        self._enter(ReconcilePhase.ROLLED_BACK)
        result.phase = ReconcilePhase.ROLLED_BACK

    async def _revert(self, snapshot_id: str, delta: ConfigDelta) -> None:
        """Restore the snapshot and bring containers back to the old document."""
        _, state = await self._restore_keeping_history(snapshot_id, create_backup_before_restore=False)
        await self.lifecycle.apply_phases(delta.added, self.lifecycle.stop_and_remove, reverse=True)
        await self.lifecycle.apply_phases(
            delta.removed + delta.changed, lambda name: self.lifecycle.start(name, recreate=True)
        )

        state.append_history(
            HistoryEntry(
                action="rollback",
                profiles=list(state.selected_profiles),
                diff=delta.summary(),
                snapshot_id=snapshot_id,
                outcome="rolled_back",
            )
        )
        await self.files.save_state(state)

    async def _restore_keeping_history(
        self, snapshot_id: str, create_backup_before_restore: bool
    ) -> Tuple[RestoreResult, InstallationState]:
        """Restore a backup's files, keeping the history recorded since it was taken.

        History is append-only, so the restored state gets the live history in
        place of the older copy stored in the backup.
        """
        try:
            history: Optional[List[HistoryEntry]] = (await self.files.load_state()).history
        except StorageError as e:
            logger.warning(f"Current state unreadable, keeping the history stored in backup {snapshot_id}: {e}")
            history = None

        restore = await self.store.restore_backup(
            snapshot_id, create_backup_before_restore=create_backup_before_restore
        )
        state = await self.files.load_state()
        if history is not None and history != state.history:
            state.history = list(history)
            await self.files.save_state(state)
        return restore, state

    @staticmethod
    def _describe(error: BaseException) -> Dict[str, Any]:
        if isinstance(error, KaspaAioError):
            return error.to_dict()
        if isinstance(error, asyncio.TimeoutError):
            return EngineError(
                "Applying the configuration timed out",
                remediation="Retry with a longer timeout; image pulls can take a long time",
            ).to_dict()
        if isinstance(error, asyncio.CancelledError):
            return EngineError("Reconfiguration was cancelled").to_dict()
        return EngineError(str(error)).to_dict()

    async def _prune_backups(self) -> None:
        try:
            await self.store.cleanup_old_backups()
        except StorageError as e:
            logger.warning(f"Backup cleanup failed: {e}")

    async def current_profiles(self) -> List[str]:
        state = await self.files.load_state()
        return list(state.selected_profiles)

    async def add_profile(self, profile_id: str, settings: Optional[Dict[str, Any]] = None, **kwargs) -> ReconcileResult:
        """Reconcile to the current selection plus one profile."""
        current = await self.current_profiles()
        return await self.reconcile(current + [profile_id], settings, action="add_profile", **kwargs)

    async def removal_impact(self, profile_id: str) -> RemovalImpact:
        current = await self.current_profiles()
        return self.validator.validate_removal(profile_id, current)

    async def remove_profile(self, profile_id: str, remove_data: bool = False, **kwargs) -> ReconcileResult:
        """Reconcile to the current selection without one profile.

        Raises:
            ValidationFailed: the profile is not installed or others depend on it
        """
        current = await self.current_profiles()
        canonical, _ = self.catalog.migrate([profile_id])
        if not set(canonical) & set(current):
            raise ValidationFailed(
                f"Profile '{profile_id}' is not installed",
                issues=[
                    ValidationIssue(
                        code=IssueCode.INVALID_PROFILE,
                        message=f"Profile '{profile_id}' is not installed",
                        profiles=[profile_id],
                    )
                ],
            )
        impact = self.validator.validate_removal(profile_id, current)
        if not impact.can_remove:
            raise ValidationFailed(f"Cannot remove profile '{profile_id}'", issues=impact.blockers)
        return await self.reconcile(
            impact.remaining_profiles, action="remove_profile", remove_data=remove_data, **kwargs
        )

    async def rollback(self, snapshot_id: str, timeout: Optional[float] = None) -> ReconcileResult:
        """Restore a backup and bring the containers in line with it.

        The current configuration is backed up first; if the containers cannot
        be brought in line, that backup is restored.
        """
        self._acquire_check()
        async with self._lock:
            self.progress = []
            started = time.monotonic()
            self._enter(ReconcilePhase.SNAPSHOTTING)
            old_document = await self.files.load_compose()
            old_env = await self.files.load_env()
            try:
                restore, state = await self._restore_keeping_history(snapshot_id, create_backup_before_restore=True)
            except StorageError:
                self._enter(ReconcilePhase.FAILED)
                raise

            self._enter(ReconcilePhase.DIFFING)
            delta = compute_delta(old_document, await self.files.load_compose(), old_env, await self.files.load_env())
            result = ReconcileResult(
                phase=ReconcilePhase.APPLYING,
                profiles=list(state.selected_profiles),
                snapshot_id=restore.pre_restore_backup,
                delta=delta,
            )

            self._enter(ReconcilePhase.APPLYING)
            try:
                await asyncio.wait_for(self._apply_delta(delta), timeout=timeout or self.default_timeout)
                state.append_history(
                    HistoryEntry(
                        action="restore",
                        profiles=list(state.selected_profiles),
                        diff=delta.summary(),
                        snapshot_id=snapshot_id,
                        outcome="restored",
                    )
                )
                await self.files.save_state(state)
            except asyncio.CancelledError as e:
                await asyncio.shield(self._handle_failure(result, restore.pre_restore_backup, delta, e))
                raise
            except (EngineError, StorageError, asyncio.TimeoutError) as e:
                await asyncio.shield(self._handle_failure(result, restore.pre_restore_backup, delta, e))
            else:
                self._enter(ReconcilePhase.COMMITTED)
                result.phase = ReconcilePhase.COMMITTED

            result.duration = time.monotonic() - started
            result.progress = list(self.progress)
            self.last_result = result
            self.last_reconciliation = datetime.now()
            return result

    async def create_backup(self, reason: str, metadata: Optional[Dict[str, Any]] = None) -> Snapshot:
        """Take a manual backup. Rejected while a reconciliation is running."""
        self._acquire_check()
        async with self._lock:
            return await self.store.create_backup(reason, metadata)

    async def restore_backup(self, backup_id: str, create_backup_before_restore: bool = True) -> RestoreResult:
        """Write a backup's files back without touching containers.

        Runs under the reconciliation lock; the restore is recorded in history.
        """
        self._acquire_check()
        async with self._lock:
            restore, state = await self._restore_keeping_history(backup_id, create_backup_before_restore)
            state.append_history(
                HistoryEntry(
                    action="restore",
                    profiles=list(state.selected_profiles),
                    snapshot_id=backup_id,
                    outcome="restored",
                )
            )
            await self.files.save_state(state)
            return restore

    async def detect_drift(self) -> List[DriftEntry]:
        """Committed services whose containers are not running."""
        state = await self.files.load_state()
        statuses = await self.lifecycle.status_all(state.service_names)
        drift = [
            DriftEntry(service=name, actual=status.value)
            for name, status in statuses.items()
            if status != ContainerStatus.RUNNING
        ]
        if drift:
            logger.warning(f"Drift detected: {', '.join(f'{d.service}={d.actual}' for d in drift)}")
        self.last_drift = drift
        return drift

    def status(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "in_progress": self.in_progress,
            "last_reconciliation": self.last_reconciliation.isoformat() if self.last_reconciliation else None,
            "last_result": self.last_result.model_dump(mode="json") if self.last_result else None,
            "progress": [event.model_dump(mode="json") for event in self.progress],
            "drift": [entry.model_dump() for entry in self.last_drift],
        }
