"""Docker engine driven through the docker CLI."""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from kaspa_aio.errors import EngineError
from kaspa_aio.models.config import EngineConfig
from kaspa_aio.models.profile import ServiceSpec
from kaspa_aio.providers.base import ContainerEngine, ContainerStatus
from kaspa_aio.utils.process import CommandResult, run_command


logger = logging.getLogger(__name__)

# Short operations; pulls and builds use the configured operation timeout
COMMAND_TIMEOUT = 120

_STATE_MAP = {
    "running": ContainerStatus.RUNNING,
    "restarting": ContainerStatus.RESTARTING,
    "created": ContainerStatus.STOPPED,
    "exited": ContainerStatus.STOPPED,
    "paused": ContainerStatus.STOPPED,
    "dead": ContainerStatus.STOPPED,
    "removing": ContainerStatus.STOPPED,
}


def _is_missing(stderr: str) -> bool:
    return any(marker in stderr for marker in ("No such container", "No such object", "no such volume"))


class DockerEngine(ContainerEngine):
    """Container engine backed by ``docker`` and ``docker compose``."""

    def __init__(
        self,
        compose_file: Path,
        env_file: Path,
        binary: str = "docker",
        project_name: str = "kaspa-aio",
        operation_timeout: float = 1800,
    ):
        self.compose_file = Path(compose_file)
        self.env_file = Path(env_file)
        self.binary = binary
        self.project_name = project_name
        self.operation_timeout = operation_timeout

    @classmethod
    def from_config(cls, config: EngineConfig, compose_file: Path, env_file: Path) -> "DockerEngine":
        return cls(
            compose_file=compose_file,
            env_file=env_file,
            binary=config.binary,
            project_name=config.project_name,
            operation_timeout=config.operation_timeout,
        )

    def _compose(self, *args: str) -> List[str]:
        return [
            self.binary, "compose",
            "-f", str(self.compose_file),
            "--env-file", str(self.env_file),
            "-p", self.project_name,
            *args,
        ]

    async def _run(
        self,
        cmd: List[str],
        container: Optional[str] = None,
        timeout: Optional[float] = COMMAND_TIMEOUT,
        allow_missing: bool = False,
    ) -> CommandResult:
        try:
            return await run_command(cmd, timeout=timeout)
        except subprocess.CalledProcessError as e:
            if allow_missing and _is_missing(e.stderr or ""):
                logger.debug(f"Container {container} does not exist")
                return CommandResult(returncode=e.returncode, stderr=e.stderr or "")
            logger.error(f"Command failed: {' '.join(cmd)}: {e.stderr}")
            raise EngineError(
                f"{' '.join(cmd[:2])} failed for {container}: {(e.stderr or '').strip()}",
                container=container,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise EngineError(
                f"{' '.join(cmd[:2])} timed out after {timeout}s for {container}",
                container=container,
                remediation="Increase engine.operation_timeout or check network connectivity",
            ) from e
        except FileNotFoundError as e:
            raise EngineError(
                f"Container engine binary not found: {self.binary}",
                remediation="Install Docker and make sure it is on PATH",
            ) from e

    async def start(self, name: str, recreate: bool = False) -> None:
        args = ["up", "-d", "--no-deps"]
        if recreate:
            args.append("--force-recreate")
        logger.info(f"Starting {name}")
        await self._run(self._compose(*args, name), container=name, timeout=self.operation_timeout)

    async def stop(self, name: str) -> None:
        logger.info(f"Stopping {name}")
        await self._run([self.binary, "stop", name], container=name, allow_missing=True)

    async def restart(self, name: str) -> None:
        logger.info(f"Restarting {name}")
        await self._run([self.binary, "restart", name], container=name)

    async def remove(self, name: str, volumes: bool = False) -> None:
        cmd = [self.binary, "rm", "-f"]
        if volumes:
            cmd.append("-v")
        logger.info(f"Removing {name}")
        await self._run(cmd + [name], container=name, allow_missing=True)

    async def remove_volume(self, volume: str) -> None:
        # compose prefixes named volumes with the project name
        full_name = f"{self.project_name}_{volume}"
        logger.info(f"Removing volume {full_name}")
        await self._run([self.binary, "volume", "rm", full_name], container=full_name, allow_missing=True)

    async def inspect(self, name: str) -> ContainerStatus:
        result = await run_command(
            [self.binary, "inspect", "--format", "{{.State.Status}}", name],
            check=False,
            timeout=COMMAND_TIMEOUT,
        )
        if result.returncode != 0:
            if _is_missing(result.stderr):
                return ContainerStatus.ABSENT
            logger.warning(f"Cannot inspect {name}: {result.stderr.strip()}")
            return ContainerStatus.ERROR
        return _STATE_MAP.get(result.stdout.strip(), ContainerStatus.UNKNOWN)

    async def image_exists(self, image: str) -> bool:
        result = await run_command(
            [self.binary, "image", "inspect", image],
            check=False,
            timeout=COMMAND_TIMEOUT,
        )
        return result.returncode == 0

    async def pull(self, image: str) -> None:
        logger.info(f"Pulling image {image}")
        await self._run([self.binary, "pull", image], container=image, timeout=self.operation_timeout)

    async def build(self, service: ServiceSpec) -> None:
        logger.info(f"Building image for {service.name}")
        await self._run(
            self._compose("build", service.name),
            container=service.name,
            timeout=self.operation_timeout,
        )
