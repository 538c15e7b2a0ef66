"""On-disk installation files: compose document, env file and state."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from kaspa_aio.errors import StorageError
from kaspa_aio.models.config import InstallationConfig
from kaspa_aio.models.state import InstallationState
from kaspa_aio.utils.files import atomic_write_text, dump_yaml, load_yaml, parse_env, read_text


logger = logging.getLogger(__name__)


class InstallationFiles:
    """Reads and atomically writes the files that make up an installation."""

    def __init__(self, compose_file: Path, env_file: Path, state_file: Path):
        self.compose_file = Path(compose_file)
        self.env_file = Path(env_file)
        self.state_file = Path(state_file)

    @classmethod
    def from_config(cls, config: InstallationConfig) -> "InstallationFiles":
        return cls(
            compose_file=config.resolve("compose_file"),
            env_file=config.resolve("env_file"),
            state_file=config.resolve("state_file"),
        )

    @property
    def paths(self) -> Dict[str, Path]:
        """Tracked files by logical name."""
        return {
            "compose": self.compose_file,
            "env": self.env_file,
            "state": self.state_file,
        }

    async def read(self, name: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(read_text, self.paths[name])
        except OSError as e:
            raise StorageError(f"Failed to read {self.paths[name]}: {e}") from e

    async def write(self, name: str, content: str) -> None:
        try:
            await asyncio.to_thread(atomic_write_text, self.paths[name], content)
        except OSError as e:
            raise StorageError(f"Failed to write {self.paths[name]}: {e}") from e

    async def remove(self, name: str) -> bool:
        path = self.paths[name]
        try:
            exists = await asyncio.to_thread(path.exists)
            if exists:
                await asyncio.to_thread(path.unlink)
            return exists
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}") from e

    async def load_state(self) -> InstallationState:
        """Load installation state; a missing file means a fresh installation."""
        content = await self.read("state")
        if not content:
            return InstallationState()
        try:
            return InstallationState.model_validate_json(content)
        except ValidationError as e:
            raise StorageError(
                f"Installation state {self.state_file} is corrupt: {e}",
                remediation="Restore a backup with the backup restore command",
            ) from e

    async def save_state(self, state: InstallationState) -> None:
        await self.write("state", state.model_dump_json(indent=2) + "\n")

    async def load_compose(self) -> Dict[str, Any]:
        content = await self.read("compose")
        try:
            return load_yaml(content)
        except Exception as e:
            raise StorageError(f"Compose file {self.compose_file} cannot be parsed: {e}") from e

    async def save_compose(self, document: Dict[str, Any]) -> None:
        await self.write("compose", dump_yaml(document))

    async def load_env(self) -> Dict[str, str]:
        return parse_env(await self.read("env"))
