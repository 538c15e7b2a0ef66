"""
Kaspa All-in-One - profile based installer and reconfiguration engine.

Resolves user-selected service profiles into a validated docker compose
configuration and applies changes to running containers with backup and
rollback.
"""

__version__ = "1.0.0"
__author__ = "Kaspa All-in-One Team"

# Re-export key components for easier access
from kaspa_aio.models.config import AioConfig
from kaspa_aio.models.profile import ProfileSpec, ServiceSpec
from kaspa_aio.models.state import InstallationState

__all__ = [
    "AioConfig",
    "ProfileSpec",
    "ServiceSpec",
    "InstallationState",
]
