"""In-memory profile catalog."""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from kaspa_aio.catalog.definitions import GLOBAL_SETTINGS, PHASE_NAMES, builtin_profiles
from kaspa_aio.catalog.migration import LEGACY_PROFILE_MAP, migrate_profile_ids
from kaspa_aio.models.profile import ProfileSpec, ServiceSpec


logger = logging.getLogger(__name__)


class ProfileCatalog:
    """Static lookup over profiles, their services and settings keys."""

    def __init__(
        self,
        profiles: Iterable[ProfileSpec],
        legacy_map: Optional[Dict[str, Tuple[str, ...]]] = None,
        global_settings: Optional[Dict[str, str]] = None,
    ):
        self._profiles: Dict[str, ProfileSpec] = {}
        self._services: Dict[str, ServiceSpec] = {}
        self.legacy_map = dict(LEGACY_PROFILE_MAP if legacy_map is None else legacy_map)
        self.global_settings = dict(GLOBAL_SETTINGS if global_settings is None else global_settings)

        for profile in profiles:
            if profile.id in self._profiles:
                raise ValueError(f"Duplicate profile id: {profile.id}")
            self._profiles[profile.id] = profile
            for service in profile.services:
                if service.name in self._services:
                    raise ValueError(
                        f"Service {service.name} declared by more than one profile"
                    )
                self._services[service.name] = service

    def __contains__(self, profile_id: str) -> bool:
        return profile_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    @property
    def ids(self) -> List[str]:
        return list(self._profiles)

    @property
    def profiles(self) -> List[ProfileSpec]:
        return list(self._profiles.values())

    def get(self, profile_id: str) -> Optional[ProfileSpec]:
        """Get a profile by canonical id."""
        return self._profiles.get(profile_id)

    def get_service(self, name: str) -> Optional[ServiceSpec]:
        return self._services.get(name)

    @property
    def services(self) -> List[ServiceSpec]:
        """All services in canonical startup order."""
        return sorted(self._services.values(), key=lambda s: (s.startup_order, s.name))

    def services_for(self, profile_ids: Iterable[str]) -> List[ServiceSpec]:
        """Services whose owner profiles intersect the given set, in startup order."""
        selected = set(profile_ids)
        return [s for s in self.services if s.owner_profiles & selected]

    def setting_owners(self) -> Dict[str, Set[str]]:
        """Map each recognized settings key to the profiles that own it."""
        owners: Dict[str, Set[str]] = {}
        for profile in self._profiles.values():
            for key in profile.setting_keys:
                owners.setdefault(key, set()).add(profile.id)
        return owners

    @property
    def known_settings(self) -> Set[str]:
        return set(self.global_settings) | set(self.setting_owners())

    def phase_name(self, order: int) -> str:
        return PHASE_NAMES.get(order, f"phase-{order}")

    def migrate(self, profile_ids: Iterable[str]) -> Tuple[List[str], Dict[str, List[str]]]:
        """Map legacy ids through this catalog's migration table."""
        return migrate_profile_ids(profile_ids, self.legacy_map)

    def canonical_order(self, profile_ids: Iterable[str]) -> List[str]:
        """Known ids in catalog order."""
        wanted = set(profile_ids)
        return [pid for pid in self._profiles if pid in wanted]


_default_catalog: Optional[ProfileCatalog] = None


def get_default_catalog() -> ProfileCatalog:
    """Get the catalog of built-in profiles."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = ProfileCatalog(builtin_profiles())
        logger.debug(f"Loaded {len(_default_catalog)} built-in profiles")
    return _default_catalog
