"""Tests for the agent HTTP server."""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from kaspa_aio.agent.server import AgentServer
from kaspa_aio.errors import EngineError
from kaspa_aio.providers.base import ContainerStatus


@asynccontextmanager
async def agent_client(engine, tmp_path):
    server_logic = AgentServer(tmp_path / "agent.sock", None, 0, engine)
    client = TestClient(TestServer(server_logic.app))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()


async def _command(client, command, args=None):
    resp = await client.post("/api/v1/command", json={"command": command, "args": args or {}})
    return resp.status, await resp.json()


@pytest.mark.asyncio
class TestAgentServer:
    """Test command dispatch and error mapping."""

    async def test_profiles(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "profiles")

        assert status == 200
        assert data["success"] is True
        ids = [p["id"] for p in data["data"]["profiles"]]
        assert "kaspa-node" in ids
        assert data["data"]["legacy"]["core"] == ["kaspa-node"]

    async def test_validate(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "validate", {"profiles": ["kaspa-node", "kasia-app"]})

        assert status == 200
        assert data["data"]["valid"] is True
        assert data["data"]["resolved"] == ["kaspa-node", "kasia-app"]

    async def test_unknown_command(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "format_disk")

        assert status == 400
        assert data["success"] is False
        assert data["kind"] == "validation"
        assert "Unknown command" in data["error"]

    async def test_invalid_json(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            resp = await client.post("/api/v1/command", data="not json")
            data = await resp.json()

        assert resp.status == 400
        assert data["kind"] == "validation"

    async def test_generate_preview_writes_nothing(self, engine, installation, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "generate", {"profiles": ["kaspa-node"]})

        assert status == 200
        assert "kaspa-node:" in data["data"]["compose"]
        assert "KASPA_NETWORK=mainnet" in data["data"]["env"]
        assert not installation.compose_file.exists()

    async def test_reconcile_and_history(self, engine, fake_engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "reconcile", {"profiles": ["kaspa-node"]})
            assert status == 200
            assert data["data"]["phase"] == "committed"
            assert data["data"]["delta"]["added"] == ["kaspa-node"]

            status, data = await _command(client, "history", {"limit": 1})
            assert status == 200
            assert [e["outcome"] for e in data["data"]["history"]] == ["committed"]

            status, data = await _command(client, "status")
            assert data["data"]["installation"]["profiles"] == ["kaspa-node"]
            assert data["data"]["services"] == {"kaspa-node": "running"}
            assert data["data"]["agent"]["phase"] == "committed"

    async def test_invalid_selection_is_400(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "reconcile", {"profiles": ["kaspa-stratum"]})

        assert status == 400
        assert data["kind"] == "validation"
        assert data["details"]["issues"]
        assert data["remediation"]

    async def test_missing_argument(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "reconcile", {})

        assert status == 400
        assert "profiles" in data["error"]

    async def test_rolled_back_result_is_error_with_data(self, engine, fake_engine, tmp_path):
        fake_engine.fail_on[("start", "kaspa-node")] = EngineError("port in use", container="kaspa-node")

        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "reconcile", {"profiles": ["kaspa-node"]})

        assert status == 500
        assert data["success"] is False
        assert data["kind"] == "engine"
        assert data["data"]["phase"] == "rolled_back"

    async def test_busy_agent_is_409(self, engine, fake_engine, tmp_path):
        fake_engine.gate = asyncio.Event()
        async with agent_client(engine, tmp_path) as client:
            task = asyncio.create_task(_command(client, "reconcile", {"profiles": ["kaspa-node"]}))
            while not engine.in_progress:
                await asyncio.sleep(0.01)

            status, data = await _command(client, "reconcile", {"profiles": ["kaspa-node"]})
            assert status == 409
            assert data["kind"] == "concurrency"

            status, _ = await _command(client, "stop", {"name": "kaspa-node"})
            assert status == 409

            status, _ = await _command(client, "validate", {"profiles": ["kaspa-node"]})
            assert status == 200

            fake_engine.gate.set()
            status, data = await task
            assert status == 200

    async def test_service_actions(self, engine, fake_engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, data = await _command(client, "start", {"profiles": ["kaspa-explorer-bundle"]})
            assert status == 200
            assert fake_engine.calls_for("start") == [
                "timescaledb-explorer", "simply-kaspa-indexer", "kaspa-explorer",
            ]

            status, data = await _command(client, "stop", {"name": "kaspa-explorer"})
            assert status == 200
            assert fake_engine.containers["kaspa-explorer"] == ContainerStatus.STOPPED

            status, data = await _command(client, "restart", {"name": "no-such-service"})
            assert status == 400

    async def test_backups(self, engine, tmp_path):
        async with agent_client(engine, tmp_path) as client:
            status, created = await _command(client, "backup_create", {"reason": "Manual"})
            assert status == 200

            status, data = await _command(client, "backup_list")
            assert [b["id"] for b in data["data"]["backups"]] == [created["data"]["id"]]

            status, data = await _command(client, "backup_usage")
            assert data["data"]["backup_count"] == 1

            status, data = await _command(client, "backup_restore", {"id": "999"})
            assert status == 500
            assert data["kind"] == "storage"

            status, data = await _command(client, "backup_delete", {"id": created["data"]["id"]})
            assert data["data"]["deleted"] is True

    async def test_backup_restore_holds_engine_lock(self, engine, store, tmp_path):
        await engine.reconcile(["kaspa-node"])
        second = await engine.reconcile(["kaspa-node", "kasia-app"])
        gate = asyncio.Event()
        restore_backup = store.restore_backup

        async def gated_restore(*args, **kwargs):
            await gate.wait()
            return await restore_backup(*args, **kwargs)

        with patch.object(store, "restore_backup", gated_restore):
            async with agent_client(engine, tmp_path) as client:
                task = asyncio.create_task(_command(client, "backup_restore", {"id": second.snapshot_id}))
                while not engine.in_progress:
                    await asyncio.sleep(0.01)

                status, data = await _command(client, "reconcile", {"profiles": ["kaspa-node", "kasia-app"]})
                assert status == 409
                assert data["kind"] == "concurrency"

                status, _ = await _command(client, "backup_create", {"reason": "Manual"})
                assert status == 409

                gate.set()
                status, data = await task
                assert status == 200
                assert data["data"]["backup_id"] == second.snapshot_id

                status, data = await _command(client, "history")
                assert [e["action"] for e in data["data"]["history"]] == ["reconfigure", "reconfigure", "restore"]

    async def test_unexpected_error_is_500(self, engine, tmp_path):
        with patch.object(engine, "detect_drift", AsyncMock(side_effect=RuntimeError("boom"))):
            async with agent_client(engine, tmp_path) as client:
                status, data = await _command(client, "drift")

        assert status == 500
        assert data["error"] == "boom"
