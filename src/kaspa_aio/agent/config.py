"""Configuration management for the agent."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError
from ruamel.yaml import YAML

from kaspa_aio.models.config import AioConfig


logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"


class ConfigManager:
    """Loads the agent configuration from ``config.yaml``."""

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)
        self.yaml = YAML(typ="safe")
        self.config: Optional[AioConfig] = None

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    async def load(self) -> AioConfig:
        """Load the configuration; a missing file yields the defaults."""
        if not self.config_file.exists():
            logger.warning(f"No {CONFIG_FILE} in {self.config_dir}, using defaults")
            self.config = AioConfig()
            return self.config

        try:
            data = await self._read_yaml(self.config_file)
            self.config = AioConfig(**data)
            logger.debug(f"Loaded config: {self.config_file}")
        except ValidationError as e:
            logger.error(f"Invalid config {self.config_file}: {e}")
            raise
        return self.config

    async def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        content = await asyncio.to_thread(file_path.read_text)
        return self.yaml.load(content) or {}
