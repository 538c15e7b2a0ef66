"""Configuration generation from resolved profile selections."""

from kaspa_aio.generator.compose import ConfigGenerator, GeneratedConfig, generate_secret
from kaspa_aio.generator.settings import StackSettings, find_secret_material, validate_settings

__all__ = [
    "ConfigGenerator",
    "GeneratedConfig",
    "generate_secret",
    "StackSettings",
    "find_secret_material",
    "validate_settings",
]
