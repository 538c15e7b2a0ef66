"""Profile selection validation."""

from kaspa_aio.validation.validator import DependencyValidator

__all__ = ["DependencyValidator"]
