"""Profile dependency, conflict and resource validation."""

import logging
from collections import deque
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Set, Tuple

from kaspa_aio.catalog import ProfileCatalog, get_default_catalog
from kaspa_aio.models.selection import (
    IssueCode,
    RemovalImpact,
    ResolvedSelection,
    ResourceEstimate,
    StartupPhase,
    ValidationIssue,
)


logger = logging.getLogger(__name__)


class DependencyValidator:
    """Validates profile selections against the catalog.

    Read-only: it touches nothing but the catalog and the caller's input, so
    it is safe to call while a reconciliation is running.
    """

    # (moderate, high) thresholds: cores, GB memory, GB disk
    CPU_THRESHOLDS = (4, 8)
    MEMORY_THRESHOLDS = (16, 32)
    DISK_THRESHOLDS = (500, 1000)

    def __init__(self, catalog: Optional[ProfileCatalog] = None):
        self.catalog = catalog or get_default_catalog()

    def resolve_dependencies(self, profile_ids: Iterable[str]) -> Set[str]:
        """Breadth-first closure of the selection under hard dependencies.

        Unknown ids are dropped.
        """
        ids, _ = self.catalog.migrate(profile_ids)
        return self._closure(pid for pid in ids if pid in self.catalog)

    def _closure(self, profile_ids: Iterable[str]) -> Set[str]:
        resolved: Set[str] = set()
        queue = deque(profile_ids)
        while queue:
            profile_id = queue.popleft()
            if profile_id in resolved:
                continue
            resolved.add(profile_id)
            profile = self.catalog.get(profile_id)
            for dependency in profile.dependencies:
                if dependency in self.catalog and dependency not in resolved:
                    queue.append(dependency)
        return resolved

    def validate_selection(self, profile_ids: Iterable[str]) -> ResolvedSelection:
        """Validate a requested profile set and compute its resolved form."""
        requested = list(profile_ids)
        if not requested:
            return ResolvedSelection(
                valid=False,
                errors=[
                    ValidationIssue(
                        code=IssueCode.EMPTY_SELECTION,
                        message="At least one profile must be selected",
                        remediation="Select at least one profile",
                    )
                ],
            )

        ids, migrated = self.catalog.migrate(requested)
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        for legacy_id, new_ids in migrated.items():
            warnings.append(
                ValidationIssue(
                    code=IssueCode.LEGACY_PROFILE_MIGRATED,
                    severity="info",
                    message=f"Profile '{legacy_id}' was renamed to {', '.join(new_ids)}",
                    profiles=[legacy_id] + list(new_ids),
                )
            )

        known = []
        for profile_id in ids:
            if profile_id in self.catalog:
                known.append(profile_id)
            else:
                errors.append(
                    ValidationIssue(
                        code=IssueCode.INVALID_PROFILE,
                        message=f"Unknown profile '{profile_id}'",
                        profiles=[profile_id],
                        remediation=f"Choose from: {', '.join(self.catalog.ids)}",
                    )
                )

        resolved = self._closure(known)
        errors.extend(self._dangling_dependencies(resolved))
        errors.extend(self._cycle_errors(known))
        errors.extend(self._prerequisite_errors(resolved))
        errors.extend(self._conflict_errors(resolved))
        errors.extend(self._port_conflict_errors(resolved))

        resources = self._aggregate_resources(resolved)
        warnings.extend(self._resource_warnings(resources))

        if errors:
            logger.debug(f"Selection {requested} invalid: {[e.code for e in errors]}")

        return ResolvedSelection(
            valid=not errors,
            requested=requested,
            resolved=self.catalog.canonical_order(resolved),
            errors=errors,
            warnings=warnings,
            startup_order=self.startup_order(resolved),
            resources=resources,
            migrated=migrated,
        )

    def validate_addition(self, profile_id: str, current_profiles: Iterable[str]) -> ResolvedSelection:
        """Validate adding one profile to the current selection."""
        return self.validate_selection(list(current_profiles) + [profile_id])

    def validate_removal(self, profile_id: str, current_profiles: Iterable[str]) -> RemovalImpact:
        """Check what removing a profile from the current selection would break."""
        migrated_ids, _ = self.catalog.migrate([profile_id])
        current, _ = self.catalog.migrate(current_profiles)
        blockers: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        unknown = [pid for pid in migrated_ids if pid not in self.catalog]
        if unknown:
            return RemovalImpact(
                profile_id=profile_id,
                can_remove=False,
                blockers=[
                    ValidationIssue(
                        code=IssueCode.INVALID_PROFILE,
                        message=f"Unknown profile '{pid}'",
                        profiles=[pid],
                    )
                    for pid in unknown
                ],
            )

        removing = set(migrated_ids)
        remaining = [pid for pid in current if pid not in removing and pid in self.catalog]
        remaining_resolved = self._closure(remaining)

        for other_id in remaining:
            other = self.catalog.get(other_id)
            for dependency in other.dependencies:
                if dependency in removing:
                    blockers.append(
                        ValidationIssue(
                            code=IssueCode.DEPENDENT_PROFILE,
                            message=f"'{other_id}' depends on '{dependency}'",
                            profiles=[other_id, dependency],
                            remediation=f"Remove '{other_id}' first",
                        )
                    )
            if other.prerequisites and removing & set(other.prerequisites):
                if not any(p in remaining_resolved for p in other.prerequisites):
                    blockers.append(
                        ValidationIssue(
                            code=IssueCode.MISSING_PREREQUISITE,
                            message=(
                                f"'{other_id}' requires one of "
                                f"{', '.join(other.prerequisites)}"
                            ),
                            profiles=[other_id],
                            alternatives=list(other.prerequisites),
                            remediation=f"Remove '{other_id}' or keep another of its prerequisites",
                        )
                    )

        profiles = [self.catalog.get(pid) for pid in migrated_ids]
        if any(p.category == "node" for p in profiles):
            if not any(self.catalog.get(pid).category == "node" for pid in remaining):
                warnings.append(
                    ValidationIssue(
                        code=IssueCode.NO_NODE_REMAINING,
                        severity="warning",
                        message="Removing this profile will leave no Kaspa node running",
                    )
                )

        return RemovalImpact(
            profile_id=profile_id,
            can_remove=not blockers,
            blockers=blockers,
            warnings=warnings,
            services=[name for p in profiles for name in p.service_names],
            remaining_profiles=remaining,
            data=[volume for p in profiles for volume in p.data],
        )

    def detect_cycles(self, profile_ids: Iterable[str]) -> List[List[str]]:
        """Depth-first search for dependency cycles reachable from the given ids.

        Each cycle is reported once, as the ordered list of profiles on it.
        """
        on_stack: Set[str] = set()
        done: Set[str] = set()
        path: List[str] = []
        cycles: List[List[str]] = []
        seen: Set[Tuple[str, ...]] = set()

        def visit(profile_id: str):
            path.append(profile_id)
            on_stack.add(profile_id)
            for dependency in self.catalog.get(profile_id).dependencies:
                if dependency not in self.catalog:
                    continue
                if dependency in on_stack:
                    cycle = path[path.index(dependency):]
                    # rotation-normalised; member order is part of identity
                    start = cycle.index(min(cycle))
                    key = tuple(cycle[start:] + cycle[:start])
                    if key not in seen:
                        seen.add(key)
                        cycles.append(list(cycle))
                elif dependency not in done:
                    visit(dependency)
            on_stack.discard(profile_id)
            path.pop()
            done.add(profile_id)

        for profile_id in profile_ids:
            if profile_id in self.catalog and profile_id not in done:
                visit(profile_id)
        return cycles

    def _cycle_errors(self, profile_ids: List[str]) -> List[ValidationIssue]:
        errors = []
        for cycle in self.detect_cycles(profile_ids):
            errors.append(
                ValidationIssue(
                    code=IssueCode.CIRCULAR_DEPENDENCY,
                    message=f"Circular dependency: {' -> '.join(cycle + [cycle[0]])}",
                    profiles=cycle,
                    remediation="Report this catalog defect; the profiles cannot be installed together",
                )
            )
        return errors

    def _dangling_dependencies(self, resolved: Set[str]) -> List[ValidationIssue]:
        errors = []
        for profile_id in self.catalog.canonical_order(resolved):
            for dependency in self.catalog.get(profile_id).dependencies:
                if dependency not in self.catalog:
                    errors.append(
                        ValidationIssue(
                            code=IssueCode.INVALID_PROFILE,
                            message=f"'{profile_id}' depends on unknown profile '{dependency}'",
                            profiles=[profile_id, dependency],
                        )
                    )
        return errors

    def _prerequisite_errors(self, resolved: Set[str]) -> List[ValidationIssue]:
        errors = []
        for profile_id in self.catalog.canonical_order(resolved):
            prerequisites = self.catalog.get(profile_id).prerequisites
            if prerequisites and not any(p in resolved for p in prerequisites):
                errors.append(
                    ValidationIssue(
                        code=IssueCode.MISSING_PREREQUISITE,
                        message=f"'{profile_id}' requires one of: {', '.join(prerequisites)}",
                        profiles=[profile_id],
                        alternatives=list(prerequisites),
                        remediation=f"Add one of: {', '.join(prerequisites)}",
                    )
                )
        return errors

    def _conflict_errors(self, resolved: Set[str]) -> List[ValidationIssue]:
        errors = []
        for first, second in combinations(self.catalog.canonical_order(resolved), 2):
            a = self.catalog.get(first)
            b = self.catalog.get(second)
            if second in a.conflicts or first in b.conflicts:
                errors.append(
                    ValidationIssue(
                        code=IssueCode.PROFILE_CONFLICT,
                        message=f"'{first}' and '{second}' cannot be installed together",
                        profiles=[first, second],
                        remediation=f"Remove either '{first}' or '{second}'",
                    )
                )
        return errors

    def _port_conflict_errors(self, resolved: Set[str]) -> List[ValidationIssue]:
        port_owners: Dict[int, List[str]] = {}
        for profile_id in self.catalog.canonical_order(resolved):
            for port in sorted(set(self.catalog.get(profile_id).ports)):
                port_owners.setdefault(port, []).append(profile_id)

        errors = []
        for port in sorted(port_owners):
            for first, second in combinations(port_owners[port], 2):
                errors.append(
                    ValidationIssue(
                        code=IssueCode.PORT_CONFLICT,
                        message=f"Port {port} is used by both '{first}' and '{second}'",
                        profiles=[first, second],
                        port=port,
                        remediation=f"Remove '{first}' or '{second}', or change one of their ports",
                    )
                )
        return errors

    def startup_order(self, resolved: Iterable[str]) -> List[StartupPhase]:
        """Group the resolved services into phases, ordered by startup order then name."""
        phases: Dict[int, StartupPhase] = {}
        for service in self.catalog.services_for(resolved):
            phase = phases.get(service.startup_order)
            if phase is None:
                phase = phases[service.startup_order] = StartupPhase(
                    order=service.startup_order,
                    name=self.catalog.phase_name(service.startup_order),
                )
            phase.services.append(service.name)
        return [phases[order] for order in sorted(phases)]

    def _aggregate_resources(self, resolved: Set[str]) -> ResourceEstimate:
        estimate = ResourceEstimate()
        for profile_id in resolved:
            req = self.catalog.get(profile_id).resources
            estimate.min_cpu += req.min_cpu
            estimate.min_memory += req.min_memory
            estimate.min_disk += req.min_disk
            estimate.recommended_cpu += req.recommended_cpu
            estimate.recommended_memory += req.recommended_memory
            estimate.recommended_disk += req.recommended_disk
        return estimate

    def _resource_warnings(self, estimate: ResourceEstimate) -> List[ValidationIssue]:
        warnings = []
        checks = [
            ("cpu", estimate.min_cpu, self.CPU_THRESHOLDS, "CPU cores"),
            ("memory", estimate.min_memory, self.MEMORY_THRESHOLDS, "GB of memory"),
            ("disk", estimate.min_disk, self.DISK_THRESHOLDS, "GB of disk"),
        ]
        for resource, value, (moderate, high), unit in checks:
            if value > high:
                level = "high"
            elif value > moderate:
                level = "moderate"
            else:
                continue
            warnings.append(
                ValidationIssue(
                    code=IssueCode(f"{level}_{resource}"),
                    severity="warning",
                    message=f"Selection needs at least {value:g} {unit}",
                )
            )
        return warnings
