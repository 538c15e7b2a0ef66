"""Installation files and versioned backups."""

from kaspa_aio.store.files import InstallationFiles
from kaspa_aio.store.backups import VersionStore

__all__ = ["InstallationFiles", "VersionStore"]
