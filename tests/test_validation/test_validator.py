"""Tests for the DependencyValidator."""

import pytest

from kaspa_aio.catalog import ProfileCatalog
from kaspa_aio.models.profile import ProfileSpec
from kaspa_aio.models.selection import IssueCode
from kaspa_aio.validation import DependencyValidator


def _catalog(*specs):
    """Catalog from (id, dependencies) pairs."""
    return ProfileCatalog(
        [ProfileSpec(id=pid, name=pid.upper(), dependencies=deps) for pid, deps in specs],
        legacy_map={},
    )


@pytest.fixture
def validator(catalog):
    return DependencyValidator(catalog)


class TestResolveDependencies:
    """Test dependency closure."""

    def test_transitive_closure(self):
        validator = DependencyValidator(_catalog(("a", ["b"]), ("b", ["c"]), ("c", [])))
        assert validator.resolve_dependencies(["a"]) == {"a", "b", "c"}

    def test_closure_is_idempotent(self):
        validator = DependencyValidator(_catalog(("a", ["b"]), ("b", ["c"]), ("c", []), ("d", ["a"])))
        once = validator.resolve_dependencies(["d"])
        assert validator.resolve_dependencies(once) == once

    def test_unknown_ids_dropped(self, validator):
        assert validator.resolve_dependencies(["kaspa-node", "nope"]) == {"kaspa-node"}

    def test_legacy_ids_resolved(self, validator):
        assert validator.resolve_dependencies(["indexer-services"]) == {"kasia-indexer", "k-indexer-bundle"}


class TestCycles:
    """Test circular dependency detection."""

    def test_three_cycle_names_every_member(self):
        validator = DependencyValidator(_catalog(("a", ["b"]), ("b", ["c"]), ("c", ["a"])))
        result = validator.validate_selection(["a"])

        assert not result.valid
        cycles = result.errors_by_code(IssueCode.CIRCULAR_DEPENDENCY)
        assert len(cycles) == 1
        assert set(cycles[0].profiles) == {"a", "b", "c"}

    def test_cycle_reported_once_from_any_entry(self):
        validator = DependencyValidator(_catalog(("a", ["b"]), ("b", ["a"])))
        assert len(validator.detect_cycles(["a", "b"])) == 1

    def test_cycles_over_same_profiles_kept_apart(self):
        validator = DependencyValidator(
            _catalog(("a", ["b", "c"]), ("b", ["c", "a"]), ("c", ["a", "b"]))
        )

        cycles = validator.detect_cycles(["a"])

        assert cycles == [["a", "b", "c"], ["b", "c"], ["a", "b"]]

    def test_no_cycle(self):
        validator = DependencyValidator(_catalog(("a", ["b"]), ("b", [])))
        assert validator.detect_cycles(["a"]) == []

    def test_dangling_dependency(self):
        validator = DependencyValidator(_catalog(("a", ["missing"])))
        result = validator.validate_selection(["a"])
        assert not result.valid
        assert result.errors_by_code(IssueCode.INVALID_PROFILE)[0].profiles == ["a", "missing"]


class TestValidateSelection:
    """Test selection validation against the built-in catalog."""

    def test_empty_selection(self, validator):
        result = validator.validate_selection([])
        assert not result.valid
        assert result.errors[0].code == IssueCode.EMPTY_SELECTION

    def test_single_node_valid(self, validator):
        result = validator.validate_selection(["kaspa-node"])
        assert result.valid
        assert result.resolved == ["kaspa-node"]
        assert result.errors == []

    def test_unknown_profile(self, validator):
        result = validator.validate_selection(["kaspa-node", "bogus"])
        assert not result.valid
        error = result.errors_by_code(IssueCode.INVALID_PROFILE)[0]
        assert error.profiles == ["bogus"]
        assert "kaspa-node" in error.remediation

    def test_stratum_without_node(self, validator):
        """The stratum bridge needs one of the node profiles."""
        result = validator.validate_selection(["kaspa-stratum"])

        assert not result.valid
        error = result.errors_by_code(IssueCode.MISSING_PREREQUISITE)[0]
        assert error.profiles == ["kaspa-stratum"]
        assert error.alternatives == ["kaspa-node", "kaspa-archive-node"]

    @pytest.mark.parametrize("node", ["kaspa-node", "kaspa-archive-node"])
    def test_stratum_with_either_node(self, validator, node):
        result = validator.validate_selection(["kaspa-stratum", node])
        assert result.valid

    def test_both_nodes_conflict(self, validator):
        """Both node profiles bind 16110: one conflict per port, one profile conflict."""
        result = validator.validate_selection(["kaspa-node", "kaspa-archive-node"])

        assert not result.valid
        conflicts = result.errors_by_code(IssueCode.PROFILE_CONFLICT)
        assert len(conflicts) == 1
        assert conflicts[0].profiles == ["kaspa-node", "kaspa-archive-node"]

        port_conflicts = result.errors_by_code(IssueCode.PORT_CONFLICT)
        assert sorted(e.port for e in port_conflicts) == [16110, 16111, 17110]
        rpc = [e for e in port_conflicts if e.port == 16110]
        assert len(rpc) == 1
        assert rpc[0].profiles == ["kaspa-node", "kaspa-archive-node"]

    def test_legacy_id_migrated(self, validator):
        result = validator.validate_selection(["core"])

        assert result.valid
        assert result.resolved == ["kaspa-node"]
        assert result.migrated == {"core": ["kaspa-node"]}
        warning = result.warnings_by_code(IssueCode.LEGACY_PROFILE_MIGRATED)[0]
        assert warning.severity == "info"

    def test_validate_addition(self, validator):
        result = validator.validate_addition("kaspa-archive-node", ["kaspa-node"])
        assert not result.valid
        assert result.errors_by_code(IssueCode.PROFILE_CONFLICT)

    def test_startup_order(self, validator):
        result = validator.validate_selection(["kaspa-node", "kaspa-explorer-bundle"])

        phases = [(p.order, p.name, p.services) for p in result.startup_order]
        assert phases == [
            (1, "infra", ["kaspa-node", "timescaledb-explorer"]),
            (2, "indexers", ["simply-kaspa-indexer"]),
            (3, "applications", ["kaspa-explorer"]),
        ]


class TestResources:
    """Test resource aggregation and warnings."""

    def test_single_node_no_warnings(self, validator):
        result = validator.validate_selection(["kaspa-node"])
        assert result.resources.min_cpu == 2
        assert result.warnings == []

    def test_archive_node_moderate(self, validator):
        result = validator.validate_selection(["kaspa-archive-node"])
        codes = {w.code for w in result.warnings}
        assert codes == {IssueCode.MODERATE_CPU, IssueCode.MODERATE_DISK}

    def test_full_stack_sums_requirements(self, validator):
        result = validator.validate_selection([
            "kaspa-node", "kasia-app", "k-social-app", "kaspa-explorer-bundle",
            "kasia-indexer", "k-indexer-bundle", "kaspa-stratum",
        ])

        assert result.valid
        assert result.resources.min_cpu == 11
        assert result.resources.min_memory == 19
        assert result.resources.min_disk == 611
        codes = {w.code for w in result.warnings}
        assert codes == {IssueCode.HIGH_CPU, IssueCode.MODERATE_MEMORY, IssueCode.MODERATE_DISK}


class TestValidateRemoval:
    """Test removal impact analysis."""

    def test_removing_last_prerequisite_blocked(self, validator):
        impact = validator.validate_removal("kaspa-node", ["kaspa-node", "kaspa-stratum"])

        assert not impact.can_remove
        assert impact.blockers[0].code == IssueCode.MISSING_PREREQUISITE
        assert impact.blockers[0].profiles == ["kaspa-stratum"]

    def test_removing_dependent_allowed(self, validator):
        impact = validator.validate_removal("kaspa-stratum", ["kaspa-node", "kaspa-stratum"])

        assert impact.can_remove
        assert impact.services == ["kaspa-stratum"]
        assert impact.remaining_profiles == ["kaspa-node"]

    def test_removing_node_warns_and_reports_data(self, validator):
        impact = validator.validate_removal("kaspa-node", ["kaspa-node", "kasia-app"])

        assert impact.can_remove
        assert impact.warnings[0].code == IssueCode.NO_NODE_REMAINING
        assert impact.data[0].critical is True

    def test_hard_dependency_blocks(self):
        validator = DependencyValidator(_catalog(("app", ["db"]), ("db", [])))
        impact = validator.validate_removal("db", ["app", "db"])

        assert not impact.can_remove
        assert impact.blockers[0].code == IssueCode.DEPENDENT_PROFILE
        assert impact.blockers[0].profiles == ["app", "db"]

    def test_unknown_profile(self, validator):
        impact = validator.validate_removal("bogus", ["kaspa-node"])
        assert not impact.can_remove
        assert impact.blockers[0].code == IssueCode.INVALID_PROFILE

    def test_legacy_id(self, validator):
        impact = validator.validate_removal("mining", ["kaspa-node", "kaspa-stratum"])
        assert impact.can_remove
        assert impact.services == ["kaspa-stratum"]
