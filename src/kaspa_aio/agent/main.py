"""Main agent implementation."""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from watchfiles import awatch

from kaspa_aio.agent.config import ConfigManager
from kaspa_aio.agent.engine import ReconciliationEngine
from kaspa_aio.agent.lifecycle import ServiceLifecycleManager
from kaspa_aio.agent.server import AgentServer
from kaspa_aio.catalog import get_default_catalog
from kaspa_aio.generator import ConfigGenerator
from kaspa_aio.models.config import AioConfig
from kaspa_aio.providers import DockerEngine
from kaspa_aio.store import InstallationFiles, VersionStore
from kaspa_aio.utils.logging import setup_logging
from kaspa_aio.validation import DependencyValidator


logger = logging.getLogger(__name__)


def build_engine(config: AioConfig, container_engine=None) -> ReconciliationEngine:
    """Wire the components described by a configuration."""
    catalog = get_default_catalog()
    files = InstallationFiles.from_config(config.installation)
    container_engine = container_engine or DockerEngine.from_config(
        config.engine, files.compose_file, files.env_file
    )
    store = VersionStore(
        files,
        config.installation.resolve("backup_dir"),
        retention=config.backups.retention,
        secret_keys=[key for profile in catalog.profiles for key in profile.secrets],
    )
    lifecycle = ServiceLifecycleManager(
        container_engine,
        files,
        catalog=catalog,
        max_parallel=config.engine.max_parallel_operations,
        status_cache_ttl=config.engine.status_cache_ttl,
    )
    return ReconciliationEngine(
        validator=DependencyValidator(catalog),
        generator=ConfigGenerator(catalog),
        store=store,
        lifecycle=lifecycle,
        files=files,
        default_timeout=config.engine.operation_timeout,
    )


class KaspaAioAgent:
    """Main agent orchestrating the system."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path("./configs")
        self.config_manager: Optional[ConfigManager] = None
        self.engine: Optional[ReconciliationEngine] = None
        self.server: Optional[AgentServer] = None
        self.shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    async def initialize(self):
        """Initialize agent components."""
        self.config_manager = ConfigManager(self.config_dir)
        config = await self.config_manager.load()

        setup_logging(config.agent.log_level, config.agent.log_file)

        self.engine = build_engine(config)
        self.server = AgentServer(
            socket_path=Path(config.agent.socket_path),
            host=config.agent.host,
            port=config.agent.port,
            engine=self.engine,
        )

        logger.info("Agent initialized successfully")

    async def run(self):
        """Run the agent main loop."""
        await self.initialize()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.shutdown)

        try:
            self._tasks.append(asyncio.create_task(self.server.start()))
            self._tasks.append(asyncio.create_task(self._drift_loop()))
            if self.config_manager.config.agent.watch_files:
                self._tasks.append(asyncio.create_task(self._file_watch_loop()))

            logger.info("Agent started, waiting for shutdown signal")
            await self.shutdown_event.wait()

        finally:
            await self._cleanup()

    async def _check_drift(self):
        if self.engine.in_progress:
            logger.debug("Reconfiguration in progress, skipping drift check")
            return
        try:
            await self.engine.detect_drift()
        except Exception as e:
            logger.error(f"Drift check error: {e}", exc_info=True)

    async def _drift_loop(self):
        """Run periodic drift checks."""
        interval = self.config_manager.config.agent.drift_check_interval

        while not self.shutdown_event.is_set():
            await self._check_drift()
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _file_watch_loop(self):
        """Refresh drift when installation files change outside the agent."""
        files = self.engine.files
        watched = {path.resolve() for path in files.paths.values()}
        directories = {path.parent for path in watched}
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

        logger.info(f"Watching installation files in {', '.join(str(d) for d in directories)}")
        try:
            async for changes in awatch(*directories, stop_event=self.shutdown_event):
                touched = {Path(path).resolve() for _, path in changes} & watched
                if touched and not self.engine.in_progress:
                    logger.info(f"Installation files changed: {', '.join(p.name for p in touched)}")
                    await self._check_drift()
        except Exception as e:
            if not self.shutdown_event.is_set():
                logger.error(f"File watch error: {e}", exc_info=True)

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self.shutdown_event.set()

    async def _cleanup(self):
        logger.info("Cleaning up agent resources")

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.server:
            await self.server.stop()

        logger.info("Agent cleanup completed")


async def run_agent(config_dir: Optional[Path] = None):
    """Run the agent; without a config dir, KASPA_AIO_CONFIG_DIR or ./configs is used."""
    if config_dir is None and os.environ.get("KASPA_AIO_CONFIG_DIR"):
        config_dir = Path(os.environ["KASPA_AIO_CONFIG_DIR"])
    agent = KaspaAioAgent(config_dir=config_dir)
    await agent.run()
