"""Tests for InstallationFiles."""

import pytest

from kaspa_aio.errors import StorageError
from kaspa_aio.models.config import InstallationConfig
from kaspa_aio.models.state import HistoryEntry, InstallationState, InstalledService
from kaspa_aio.store import InstallationFiles


@pytest.mark.asyncio
async def test_missing_state_is_fresh_installation(installation):
    state = await installation.load_state()
    assert state.mode == "initial"
    assert state.selected_profiles == []


@pytest.mark.asyncio
async def test_state_round_trip(installation):
    state = InstallationState(
        mode="reconfigure",
        selected_profiles=["kaspa-node"],
        configuration={"KASPA_NETWORK": "mainnet"},
        services=[InstalledService(name="kaspa-node", owner_profiles=["kaspa-node"])],
    )
    state.append_history(HistoryEntry(action="reconfigure", profiles=["kaspa-node"]))

    await installation.save_state(state)
    loaded = await installation.load_state()

    assert loaded == state
    assert loaded.last_modified == state.history[0].timestamp


@pytest.mark.asyncio
async def test_corrupt_state(installation):
    await installation.write("state", "{not json")
    with pytest.raises(StorageError, match="corrupt"):
        await installation.load_state()


@pytest.mark.asyncio
async def test_unknown_state_fields_ignored(installation):
    await installation.write("state", '{"selected_profiles": ["kaspa-node"], "wizard_step": 4}')
    state = await installation.load_state()
    assert state.selected_profiles == ["kaspa-node"]


@pytest.mark.asyncio
async def test_compose_round_trip(installation):
    document = {"services": {"kaspa-node": {"image": "kaspanet/rusty-kaspad:latest", "ports": ["16110:16110"]}}}
    await installation.save_compose(document)

    loaded = await installation.load_compose()
    assert loaded["services"]["kaspa-node"]["ports"] == ["16110:16110"]


@pytest.mark.asyncio
async def test_missing_files(installation):
    assert await installation.load_compose() == {}
    assert await installation.load_env() == {}
    assert await installation.remove("compose") is False


@pytest.mark.asyncio
async def test_no_temp_files_left(installation, tmp_path):
    await installation.write("env", "KASPA_NETWORK=mainnet\n")
    assert [p.name for p in tmp_path.iterdir()] == [".env"]


def test_from_config(tmp_path):
    config = InstallationConfig(project_dir=str(tmp_path), state_file="/var/lib/kaspa/state.json")
    files = InstallationFiles.from_config(config)

    assert files.compose_file == tmp_path / "docker-compose.yml"
    assert files.env_file == tmp_path / ".env"
    assert str(files.state_file) == "/var/lib/kaspa/state.json"


def test_without_services():
    state = InstallationState(
        services=[InstalledService(name="a"), InstalledService(name="b")],
    )
    updated = state.without_services(["a"])

    assert updated.service_names == ["b"]
    assert state.service_names == ["a", "b"]
