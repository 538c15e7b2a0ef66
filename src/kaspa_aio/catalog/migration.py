"""Legacy profile id migration.

Older installations persisted the pre-bundle profile ids. They are mapped to
current ids once, at the boundary of every public entry point, so the rest
of the code base only ever sees canonical ids.
"""

import logging
from typing import Dict, Iterable, List, Tuple


logger = logging.getLogger(__name__)


MIGRATION_TABLE_VERSION = 2

LEGACY_PROFILE_MAP: Dict[str, Tuple[str, ...]] = {
    "core": ("kaspa-node",),
    "archive-node": ("kaspa-archive-node",),
    "kaspa-user-applications": ("kasia-app", "k-social-app"),
    "indexer-services": ("kasia-indexer", "k-indexer-bundle"),
    "mining": ("kaspa-stratum",),
}


def migrate_profile_ids(
    profile_ids: Iterable[str],
    table: Dict[str, Tuple[str, ...]] = LEGACY_PROFILE_MAP,
) -> Tuple[List[str], Dict[str, List[str]]]:
    """Replace legacy ids with their current equivalents.

    Returns the migrated ids (order preserved, duplicates dropped) and a map
    of every legacy id that was replaced.
    """
    result: List[str] = []
    migrated: Dict[str, List[str]] = {}

    for profile_id in profile_ids:
        replacements = table.get(profile_id)
        if replacements:
            migrated[profile_id] = list(replacements)
            logger.debug(f"Migrated legacy profile {profile_id} -> {', '.join(replacements)}")
        else:
            replacements = (profile_id,)
        for new_id in replacements:
            if new_id not in result:
                result.append(new_id)

    return result, migrated
