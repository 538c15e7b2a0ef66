"""Versioned configuration backups."""

import asyncio
import logging
import re
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from kaspa_aio.errors import StorageError
from kaspa_aio.models.snapshot import (
    RestoreResult,
    Snapshot,
    SnapshotChange,
    SnapshotContents,
    SnapshotDiff,
    SnapshotFile,
    StorageUsage,
)
from kaspa_aio.models.state import InstallationState
from kaspa_aio.store.files import InstallationFiles
from kaspa_aio.utils.files import atomic_write_bytes, load_yaml, parse_env, read_text


logger = logging.getLogger(__name__)

METADATA_FILE = "backup-metadata.json"
STORED_NAMES = {
    "compose": "docker-compose.yml",
    "env": ".env",
    "state": "installation-state.json",
}
BACKUP_ID = re.compile(r"^\d+(-\d+)?$")
MASK = "********"
SECRET_HINTS = ("PASSWORD", "SECRET", "TOKEN")


def _sort_key(snapshot: Snapshot):
    return (snapshot.timestamp, tuple(int(part) for part in snapshot.id.split("-")))


class VersionStore:
    """Snapshots of compose document, env file and installation state.

    Snapshots are immutable once written. A snapshot directory only appears
    under its final name after all of its files are in place.
    """

    def __init__(
        self,
        files: InstallationFiles,
        backup_dir: Path,
        retention: int = 10,
        secret_keys: Optional[Set[str]] = None,
    ):
        self.files = files
        self.backup_dir = Path(backup_dir)
        self.retention = retention
        self.secret_keys = set(secret_keys or ())

    def _backup_path(self, backup_id: str) -> Path:
        if not BACKUP_ID.match(backup_id):
            raise StorageError(f"Invalid backup id: {backup_id!r}")
        return self.backup_dir / backup_id

    def _new_id(self) -> str:
        base = str(int(time.time() * 1000))
        backup_id = base
        counter = 0
        while (self.backup_dir / backup_id).exists():
            counter += 1
            backup_id = f"{base}-{counter}"
        return backup_id

    async def create_backup(self, reason: str, metadata: Optional[Dict[str, Any]] = None) -> Snapshot:
        """Capture the current compose, env and state files as one unit.

        Raises:
            StorageError: when any file cannot be captured; nothing is left behind
        """
        try:
            return await asyncio.to_thread(self._create_backup, reason, dict(metadata or {}))
        except StorageError:
            raise
        except OSError as e:
            logger.error(f"Backup failed: {e}")
            raise StorageError(f"Failed to create backup: {e}") from e

    def _create_backup(self, reason: str, metadata: Dict[str, Any]) -> Snapshot:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        backup_id = self._new_id()
        staging = self.backup_dir / f".tmp-{backup_id}"
        staging.mkdir()

        try:
            files: List[SnapshotFile] = []
            total = 0
            selected: List[str] = []
            for name, source in self.files.paths.items():
                if not source.exists():
                    files.append(SnapshotFile(name=name, original_path=str(source), present=False))
                    continue
                target = staging / STORED_NAMES[name]
                shutil.copyfile(source, target)
                size = target.stat().st_size
                total += size
                files.append(SnapshotFile(name=name, original_path=str(source), size=size))
                if name == "state":
                    selected = self._selected_profiles(target.read_text(encoding="utf-8"))

            snapshot = Snapshot(
                id=backup_id,
                timestamp=datetime.now(),
                reason=reason,
                metadata=metadata,
                files=files,
                total_size=total,
                selected_profiles=selected,
            )
            (staging / METADATA_FILE).write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
            staging.rename(self.backup_dir / backup_id)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info(f"Created backup {backup_id}: {reason}")
        return snapshot

    @staticmethod
    def _selected_profiles(state_content: str) -> List[str]:
        try:
            return InstallationState.model_validate_json(state_content).selected_profiles
        except ValidationError:
            logger.warning("Captured installation state is not valid; profiles unknown")
            return []

    async def list_backups(self) -> List[Snapshot]:
        """All backups, newest first."""
        return await asyncio.to_thread(self._list_backups)

    def _list_backups(self) -> List[Snapshot]:
        if not self.backup_dir.exists():
            return []
        snapshots = []
        for entry in self.backup_dir.iterdir():
            if not entry.is_dir() or entry.name.startswith(".") or not BACKUP_ID.match(entry.name):
                continue
            try:
                snapshots.append(self._load_metadata(entry))
            except StorageError as e:
                logger.warning(f"Skipping unreadable backup {entry.name}: {e}")
        return sorted(snapshots, key=_sort_key, reverse=True)

    def _load_metadata(self, path: Path) -> Snapshot:
        try:
            return Snapshot.model_validate_json((path / METADATA_FILE).read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageError(f"Backup metadata unreadable: {e}") from e

    async def get_backup(self, backup_id: str) -> Snapshot:
        path = self._backup_path(backup_id)
        if not await asyncio.to_thread(path.is_dir):
            raise StorageError(
                f"Backup {backup_id} not found",
                remediation="List available backups and pick an existing id",
            )
        return await asyncio.to_thread(self._load_metadata, path)

    async def read_snapshot(self, backup_id: str) -> SnapshotContents:
        """Load the captured file contents of a snapshot."""
        snapshot = await self.get_backup(backup_id)
        path = self._backup_path(backup_id)

        def _read() -> SnapshotContents:
            compose = read_text(path / STORED_NAMES["compose"])
            env = read_text(path / STORED_NAMES["env"])
            state_text = read_text(path / STORED_NAMES["state"])
            state = None
            if state_text:
                try:
                    state = InstallationState.model_validate_json(state_text)
                except ValidationError:
                    logger.warning(f"Backup {backup_id} contains an invalid state file")
            services = list((load_yaml(compose).get("services") or {}).keys())
            return SnapshotContents(
                snapshot=snapshot,
                compose_text=compose,
                env_map=parse_env(env),
                state=state,
                services=services,
            )

        try:
            return await asyncio.to_thread(_read)
        except OSError as e:
            raise StorageError(f"Failed to read backup {backup_id}: {e}") from e

    async def restore_backup(self, backup_id: str, create_backup_before_restore: bool = True) -> RestoreResult:
        """Write a snapshot's files back over the installation.

        Files absent at capture time are removed, so the installation matches
        the snapshot exactly.

        Raises:
            StorageError: the pre-restore backup id, if any, is in ``details``
        """
        snapshot = await self.get_backup(backup_id)
        pre_restore: Optional[Snapshot] = None
        if create_backup_before_restore:
            pre_restore = await self.create_backup(
                f"Before restoring backup {backup_id}", {"restore_of": backup_id}
            )

        result = RestoreResult(
            backup_id=backup_id,
            pre_restore_backup=pre_restore.id if pre_restore else None,
        )
        source_dir = self._backup_path(backup_id)
        try:
            for captured in snapshot.files:
                if captured.present:
                    changed = await asyncio.to_thread(
                        self._restore_file,
                        source_dir / STORED_NAMES[captured.name],
                        self.files.paths[captured.name],
                    )
                    result.restored_files.append(captured.name)
                else:
                    changed = await self.files.remove(captured.name)
                    if changed:
                        result.removed_files.append(captured.name)
                if changed and captured.name in ("compose", "env"):
                    result.requires_restart = True
        except (StorageError, OSError) as e:
            logger.error(f"Restore of backup {backup_id} failed: {e}")
            raise StorageError(
                f"Failed to restore backup {backup_id}: {e}",
                remediation=(
                    f"Restore backup {result.pre_restore_backup} to return to the previous state"
                    if result.pre_restore_backup else None
                ),
                details={"pre_restore_backup": result.pre_restore_backup},
            ) from e

        logger.info(f"Restored backup {backup_id}")
        return result

    @staticmethod
    def _restore_file(source: Path, target: Path) -> bool:
        """Copy a captured file back byte for byte. Returns True if the target changed."""
        content = source.read_bytes()
        current = target.read_bytes() if target.exists() else None
        atomic_write_bytes(target, content)
        return content != current

    async def delete_backup(self, backup_id: str) -> None:
        path = self._backup_path(backup_id)
        await self.get_backup(backup_id)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as e:
            raise StorageError(f"Failed to delete backup {backup_id}: {e}") from e
        logger.info(f"Deleted backup {backup_id}")

    async def cleanup_old_backups(self) -> List[str]:
        """Delete the oldest backups beyond the retention count."""
        backups = await self.list_backups()
        deleted = []
        for snapshot in backups[self.retention:]:
            await self.delete_backup(snapshot.id)
            deleted.append(snapshot.id)
        if deleted:
            logger.info(f"Pruned {len(deleted)} old backups")
        return deleted

    async def get_storage_usage(self) -> StorageUsage:
        backups = await self.list_backups()
        if not backups:
            return StorageUsage()
        return StorageUsage(
            backup_count=len(backups),
            total_size=sum(b.total_size for b in backups),
            newest=backups[0].timestamp,
            oldest=backups[-1].timestamp,
        )

    async def diff(self, from_id: str, to_id: str) -> SnapshotDiff:
        """Key-by-key comparison of two snapshots' env maps and service sets."""
        a = await self.read_snapshot(from_id)
        b = await self.read_snapshot(to_id)
        changes: List[SnapshotChange] = []

        for key in sorted(set(a.env_map) | set(b.env_map)):
            old = a.env_map.get(key)
            new = b.env_map.get(key)
            if old == new:
                continue
            if old is None:
                change_type = "added"
            elif new is None:
                change_type = "removed"
            else:
                change_type = "changed"
            changes.append(
                SnapshotChange(key=key, type=change_type, old=self._mask(key, old), new=self._mask(key, new))
            )

        for name in sorted(set(a.services) - set(b.services)):
            changes.append(SnapshotChange(key=f"services.{name}", type="removed"))
        for name in sorted(set(b.services) - set(a.services)):
            changes.append(SnapshotChange(key=f"services.{name}", type="added"))

        return SnapshotDiff(from_id=from_id, to_id=to_id, changes=changes, change_count=len(changes))

    def _mask(self, key: str, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if key in self.secret_keys or any(hint in key for hint in SECRET_HINTS):
            return MASK
        return value
