"""Tests for the reconciliation engine."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from kaspa_aio.agent.engine import compute_delta
from kaspa_aio.errors import ConcurrencyError, EngineError, StorageError, ValidationFailed
from kaspa_aio.models.reconcile import ReconcilePhase
from kaspa_aio.providers.base import ContainerStatus
from kaspa_aio.store.backups import MASK


async def _wait_until_locked(engine):
    while not engine.in_progress:
        await asyncio.sleep(0)


class TestComputeDelta:
    """Test service and env deltas."""

    def test_added_removed_changed(self):
        old = {"services": {"a": {"image": "a:1"}, "b": {"image": "b:1"}}}
        new = {"services": {"a": {"image": "a:2"}, "c": {"image": "c:1"}}}

        delta = compute_delta(old, new)

        assert delta.added == ["c"]
        assert delta.removed == ["b"]
        assert delta.changed == ["a"]

    def test_env_changes_masked(self):
        delta = compute_delta(
            {}, {},
            {"KASPA_NETWORK": "mainnet", "K_SOCIAL_DB_PASSWORD": "old-password-1"},
            {"KASPA_NETWORK": "testnet", "K_SOCIAL_DB_PASSWORD": "new-password-2", "K_INDEXER_PORT": "3006"},
        )
        changes = {c.key: c for c in delta.env_changes}

        assert changes["K_INDEXER_PORT"].type == "added"
        assert changes["KASPA_NETWORK"].new == "testnet"
        assert changes["K_SOCIAL_DB_PASSWORD"].old == MASK
        assert changes["K_SOCIAL_DB_PASSWORD"].new == MASK

    def test_identical_documents(self):
        document = {"services": {"a": {"image": "a:1", "ports": ["1:1"]}}}
        assert compute_delta(document, document, {"A": "1"}, {"A": "1"}).is_empty


@pytest.mark.asyncio
class TestReconcile:
    """Test reconciliation runs."""

    async def test_fresh_install(self, engine, fake_engine, installation, store):
        result = await engine.reconcile(["kaspa-node"])

        assert result.phase == ReconcilePhase.COMMITTED
        assert result.succeeded
        assert result.delta.added == ["kaspa-node"]
        assert fake_engine.containers["kaspa-node"] == ContainerStatus.RUNNING
        assert engine.phase == ReconcilePhase.COMMITTED

        state = await installation.load_state()
        assert state.mode == "initial"
        assert state.selected_profiles == ["kaspa-node"]
        assert state.service_names == ["kaspa-node"]
        assert state.history[-1].outcome == "committed"
        assert state.history[-1].snapshot_id == result.snapshot_id
        assert installation.compose_file.exists()
        assert [b.id for b in await store.list_backups()] == [result.snapshot_id]

    async def test_second_run_is_reconfigure(self, engine, installation):
        await engine.reconcile(["kaspa-node"])
        await engine.reconcile(["kaspa-node"], {"KASPA_NODE_RPC_PORT": 26110})

        state = await installation.load_state()
        assert state.mode == "reconfigure"
        assert state.configuration["KASPA_NODE_RPC_PORT"] == "26110"

    async def test_unchanged_service_not_restarted(self, engine, fake_engine):
        await engine.reconcile(["kaspa-node"])
        fake_engine.calls.clear()

        result = await engine.reconcile(["kaspa-node", "kasia-app"])

        assert result.delta.added == ["kasia-app"]
        assert "kaspa-node" not in fake_engine.calls_for("start")
        assert "kaspa-node" not in fake_engine.calls_for("recreate")

    async def test_changed_service_recreated(self, engine, fake_engine):
        await engine.reconcile(["kaspa-node"])

        result = await engine.reconcile(["kaspa-node"], {"KASPA_NODE_RPC_PORT": 26110})

        assert result.delta.changed == ["kaspa-node"]
        assert fake_engine.calls_for("recreate") == ["kaspa-node"]

    async def test_progress_callback(self, engine):
        events = []

        result = await engine.reconcile(["kaspa-node"], on_progress=events.append)

        assert events
        assert ("start", "kaspa-node") in [(e.action, e.service) for e in events]
        assert result.progress == events

    async def test_legacy_ids_migrated(self, engine, installation):
        result = await engine.reconcile(["core"])

        assert result.profiles == ["kaspa-node"]
        assert (await installation.load_state()).selected_profiles == ["kaspa-node"]

    async def test_add_profile(self, engine, installation):
        await engine.reconcile(["kaspa-node"])

        result = await engine.add_profile("kasia-app")

        assert result.succeeded
        state = await installation.load_state()
        assert set(state.selected_profiles) == {"kaspa-node", "kasia-app"}
        assert state.history[-1].action == "add_profile"

    async def test_secrets_persist_across_runs(self, engine, installation):
        await engine.reconcile(["kaspa-node", "kaspa-explorer-bundle"])
        first = (await installation.load_state()).configuration["SIMPLY_KASPA_DB_PASSWORD"]

        result = await engine.reconcile(["kaspa-node", "kaspa-explorer-bundle", "kasia-app"])
        second = (await installation.load_state()).configuration["SIMPLY_KASPA_DB_PASSWORD"]

        assert first.startswith("generated-secret-")
        assert second == first
        assert "timescaledb-explorer" not in result.delta.changed


@pytest.mark.asyncio
class TestReconcileFailures:
    """Test rollback and error paths."""

    async def test_invalid_selection_changes_nothing(self, engine, installation, store):
        with pytest.raises(ValidationFailed) as exc_info:
            await engine.reconcile(["no-such-profile"])

        assert exc_info.value.issues
        assert engine.phase == ReconcilePhase.FAILED
        assert engine.last_result.phase == ReconcilePhase.FAILED
        assert await store.list_backups() == []
        assert not installation.compose_file.exists()
        assert not installation.state_file.exists()

    async def test_engine_failure_rolls_back(self, engine, fake_engine, installation):
        await engine.reconcile(["kaspa-node"])
        compose_before = installation.compose_file.read_bytes()
        fake_engine.fail_on[("start", "kasia-app")] = EngineError("port in use", container="kasia-app")

        result = await engine.reconcile(["kaspa-node", "kasia-indexer", "kasia-app"])

        assert result.phase == ReconcilePhase.ROLLED_BACK
        assert not result.succeeded
        assert result.error["kind"] == "engine"
        assert "port in use" in result.error["error"]
        assert installation.compose_file.read_bytes() == compose_before
        assert "kasia-indexer" not in fake_engine.containers
        assert fake_engine.containers["kaspa-node"] == ContainerStatus.RUNNING

        state = await installation.load_state()
        assert state.selected_profiles == ["kaspa-node"]
        assert state.history[-1].action == "rollback"
        assert state.history[-1].outcome == "rolled_back"
        assert state.history[-1].snapshot_id == result.snapshot_id

    async def test_failed_first_install_stays_initial(self, engine, fake_engine, installation):
        fake_engine.fail_on[("start", "kaspa-node")] = EngineError("no space left", container="kaspa-node")

        result = await engine.reconcile(["kaspa-node"])

        assert result.phase == ReconcilePhase.ROLLED_BACK
        assert not installation.compose_file.exists()

        del fake_engine.fail_on[("start", "kaspa-node")]
        await engine.reconcile(["kaspa-node"])

        state = await installation.load_state()
        assert state.mode == "initial"
        assert [(e.action, e.outcome) for e in state.history] == [
            ("rollback", "rolled_back"),
            ("reconfigure", "committed"),
        ]

    async def test_removal_failure_rolls_back(self, engine, fake_engine, installation):
        await engine.reconcile(["kaspa-node", "kasia-app"])
        fake_engine.fail_on[("remove", "kasia-app")] = EngineError("device busy", container="kasia-app")

        result = await engine.remove_profile("kasia-app")

        assert result.phase == ReconcilePhase.ROLLED_BACK
        assert fake_engine.containers["kasia-app"] == ContainerStatus.RUNNING
        state = await installation.load_state()
        assert set(state.selected_profiles) == {"kaspa-node", "kasia-app"}
        assert "kasia-app" in state.service_names
        assert "kasia-app" in (await installation.load_compose())["services"]

    async def test_failed_rollback_requires_manual_recovery(self, engine, fake_engine, store):
        await engine.reconcile(["kaspa-node"])
        fake_engine.fail_on[("start", "kasia-app")] = EngineError("port in use", container="kasia-app")

        with patch.object(store, "restore_backup", AsyncMock(side_effect=StorageError("disk full"))):
            result = await engine.reconcile(["kaspa-node", "kasia-app"])

        assert result.phase == ReconcilePhase.MANUAL_RECOVERY_REQUIRED
        assert engine.phase == ReconcilePhase.MANUAL_RECOVERY_REQUIRED
        assert "disk full" in result.rollback_error
        assert result.error["kind"] == "engine"

    async def test_timeout_rolls_back(self, engine, fake_engine, installation):
        await engine.reconcile(["kaspa-node"])
        fake_engine.gate = asyncio.Event()

        result = await engine.reconcile(["kaspa-node", "kasia-app"], timeout=0.1)

        assert result.phase == ReconcilePhase.ROLLED_BACK
        assert "timed out" in result.error["error"]
        assert (await installation.load_state()).selected_profiles == ["kaspa-node"]

    async def test_concurrent_request_rejected(self, engine, fake_engine):
        fake_engine.gate = asyncio.Event()
        task = asyncio.create_task(engine.reconcile(["kaspa-node"]))
        await _wait_until_locked(engine)

        with pytest.raises(ConcurrencyError):
            await engine.reconcile(["kaspa-node", "kasia-app"])
        with pytest.raises(ConcurrencyError):
            await engine.rollback("1")
        assert engine.validate(["kaspa-node"]).valid

        fake_engine.gate.set()
        result = await task
        assert result.succeeded
        assert not engine.in_progress

    async def test_cancellation_rolls_back(self, engine, fake_engine, installation):
        await engine.reconcile(["kaspa-node"])
        fake_engine.gate = asyncio.Event()

        task = asyncio.create_task(engine.reconcile(["kaspa-node", "kasia-app"]))
        while "kasia-app" not in fake_engine.calls_for("build"):
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert engine.phase == ReconcilePhase.ROLLED_BACK
        assert (await installation.load_state()).selected_profiles == ["kaspa-node"]


@pytest.mark.asyncio
class TestRemoveProfile:
    """Test profile removal."""

    async def test_remove_in_reverse_phase_order(self, engine, fake_engine, installation):
        await engine.reconcile(["kaspa-node", "k-indexer-bundle"])
        fake_engine.calls.clear()
        running_before = len(fake_engine.containers)

        result = await engine.remove_profile("k-indexer-bundle", remove_data=True)

        assert result.succeeded
        assert fake_engine.calls_for("stop") == ["k-indexer", "timescaledb-kindexer"]
        assert fake_engine.removed_volumes == ["timescaledb-kindexer-data"]
        assert len(fake_engine.containers) == running_before - 2
        assert [e.service for e in result.progress if e.action == "remove"] == ["k-indexer", "timescaledb-kindexer"]

        services = (await installation.load_compose())["services"]
        assert "k-indexer" not in services
        assert "timescaledb-kindexer" not in services
        state = await installation.load_state()
        assert state.selected_profiles == ["kaspa-node"]
        assert state.service_names == ["kaspa-node"]
        assert state.history[-1].action == "remove_profile"
        assert "K_SOCIAL_DB_PASSWORD" not in state.configuration

    async def test_remove_keeps_data_by_default(self, engine, fake_engine):
        await engine.reconcile(["kaspa-node", "kasia-app"])

        await engine.remove_profile("kasia-app")

        assert fake_engine.removed_volumes == []
        assert "kasia-app" not in fake_engine.containers

    async def test_remove_not_installed(self, engine):
        await engine.reconcile(["kaspa-node"])

        with pytest.raises(ValidationFailed, match="not installed"):
            await engine.remove_profile("kasia-app")

    async def test_removal_impact(self, engine):
        await engine.reconcile(["kaspa-node", "kaspa-explorer-bundle"])

        impact = await engine.removal_impact("kaspa-explorer-bundle")

        assert impact.can_remove
        assert "timescaledb-explorer" in impact.services
        assert any(volume.critical for volume in impact.data)


@pytest.mark.asyncio
class TestRollbackAndDrift:
    """Test rollback to a backup and drift detection."""

    async def test_rollback_to_snapshot(self, engine, fake_engine, installation, store):
        await engine.reconcile(["kaspa-node"])
        second = await engine.reconcile(["kaspa-node", "kasia-app"])

        result = await engine.rollback(second.snapshot_id)

        assert result.succeeded
        assert result.delta.removed == ["kasia-app"]
        assert result.snapshot_id is not None
        assert "kasia-app" not in fake_engine.containers
        state = await installation.load_state()
        assert state.selected_profiles == ["kaspa-node"]
        assert state.history[-1].action == "restore"
        assert state.history[-1].outcome == "restored"
        assert (await store.get_backup(result.snapshot_id)).metadata == {"restore_of": second.snapshot_id}

    async def test_rollback_keeps_later_history(self, engine, installation):
        await engine.reconcile(["kaspa-node"])
        second = await engine.reconcile(["kaspa-node", "kasia-app"])
        await engine.reconcile(["kaspa-node", "kasia-app", "kasia-indexer"])
        before = [(e.action, e.snapshot_id) for e in (await installation.load_state()).history]

        result = await engine.rollback(second.snapshot_id)

        assert result.succeeded
        state = await installation.load_state()
        assert state.selected_profiles == ["kaspa-node"]
        assert [(e.action, e.snapshot_id) for e in state.history] == before + [("restore", second.snapshot_id)]

    async def test_restore_backup_keeps_history(self, engine, installation):
        await engine.reconcile(["kaspa-node"])
        second = await engine.reconcile(["kaspa-node", "kasia-app"])

        restore = await engine.restore_backup(second.snapshot_id)

        assert restore.pre_restore_backup is not None
        assert "state" in restore.restored_files
        state = await installation.load_state()
        assert state.selected_profiles == ["kaspa-node"]
        assert [e.action for e in state.history] == ["reconfigure", "reconfigure", "restore"]
        assert state.history[-1].outcome == "restored"

    async def test_reconcile_rejected_during_restore(self, engine, store, installation):
        await engine.reconcile(["kaspa-node"])
        second = await engine.reconcile(["kaspa-node", "kasia-app"])
        gate = asyncio.Event()
        restore_backup = store.restore_backup

        async def gated_restore(*args, **kwargs):
            await gate.wait()
            return await restore_backup(*args, **kwargs)

        with patch.object(store, "restore_backup", gated_restore):
            task = asyncio.create_task(engine.restore_backup(second.snapshot_id))
            await _wait_until_locked(engine)

            with pytest.raises(ConcurrencyError):
                await engine.reconcile(["kaspa-node", "kasia-app"])
            with pytest.raises(ConcurrencyError):
                await engine.create_backup("Manual backup")

            gate.set()
            await task

        assert not engine.in_progress
        assert (await installation.load_state()).selected_profiles == ["kaspa-node"]

    async def test_rollback_unknown_backup(self, engine):
        with pytest.raises(StorageError):
            await engine.rollback("42")
        assert engine.phase == ReconcilePhase.FAILED
        assert not engine.in_progress

    async def test_detect_drift(self, engine, fake_engine):
        await engine.reconcile(["kaspa-node", "kasia-app"])
        fake_engine.containers["kasia-app"] = ContainerStatus.STOPPED

        drift = await engine.detect_drift()

        assert [(d.service, d.expected, d.actual) for d in drift] == [("kasia-app", "running", "stopped")]
        assert engine.status()["drift"] == [{"service": "kasia-app", "expected": "running", "actual": "stopped"}]

    async def test_status(self, engine):
        assert engine.status()["phase"] == "idle"

        await engine.reconcile(["kaspa-node"])
        status = engine.status()

        assert status["phase"] == "committed"
        assert status["in_progress"] is False
        assert status["last_result"]["phase"] == "committed"
        assert status["last_reconciliation"] is not None
