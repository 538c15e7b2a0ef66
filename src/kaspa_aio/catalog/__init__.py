"""Profile catalog and legacy id migration."""

from kaspa_aio.catalog.catalog import ProfileCatalog, get_default_catalog
from kaspa_aio.catalog.migration import LEGACY_PROFILE_MAP, MIGRATION_TABLE_VERSION, migrate_profile_ids

__all__ = [
    "ProfileCatalog",
    "get_default_catalog",
    "LEGACY_PROFILE_MAP",
    "MIGRATION_TABLE_VERSION",
    "migrate_profile_ids",
]
