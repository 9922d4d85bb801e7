"""Tests for the JSON settings store."""

import json

import pytest

from rolotabs.daemon.store import COLLAPSED_FOLDERS, ONBOARDING_DONE, PINNED_IDS, SettingsStore


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "rolotabs" / "settings.json"


@pytest.mark.asyncio
async def test_missing_file_loads_empty(settings_path):
    store = SettingsStore(settings_path)
    assert await store.load() == {}
    assert store.loaded
    assert store.pinned_ids() == []
    assert store.collapsed_folders() == []
    assert not store.onboarding_done()


@pytest.mark.asyncio
async def test_round_trip(settings_path):
    """Values written by one store are read back by another."""
    store = SettingsStore(settings_path)
    await store.load()
    await store.set_pinned_ids(["4", "9"])
    await store.set(ONBOARDING_DONE, True)

    on_disk = json.loads(settings_path.read_text())
    assert on_disk[PINNED_IDS] == ["4", "9"]

    reloaded = SettingsStore(settings_path)
    await reloaded.load()
    assert reloaded.pinned_ids() == ["4", "9"]
    assert reloaded.onboarding_done()
    assert not settings_path.with_suffix(".json.tmp").exists()


@pytest.mark.asyncio
async def test_corrupt_file_loads_empty(settings_path):
    settings_path.parent.mkdir(parents=True)
    settings_path.write_text("{not json")

    store = SettingsStore(settings_path)
    assert await store.load() == {}

    settings_path.write_text("[1, 2, 3]")
    assert await store.load() == {}


@pytest.mark.asyncio
async def test_ids_are_strings(settings_path):
    settings_path.parent.mkdir(parents=True)
    settings_path.write_text(json.dumps({PINNED_IDS: [12, "13"], COLLAPSED_FOLDERS: [5]}))

    store = SettingsStore(settings_path)
    await store.load()
    assert store.pinned_ids() == ["12", "13"]
    assert store.collapsed_folders() == ["5"]


@pytest.mark.asyncio
async def test_toggle_folder(settings_path):
    store = SettingsStore(settings_path)
    await store.load()

    assert await store.toggle_folder("6")
    assert store.collapsed_folders() == ["6"]
    assert not await store.toggle_folder("6")
    assert store.collapsed_folders() == []


@pytest.mark.asyncio
async def test_delete(settings_path):
    store = SettingsStore(settings_path)
    await store.set(ONBOARDING_DONE, True)
    await store.delete(ONBOARDING_DONE)
    await store.delete("never-set")

    reloaded = SettingsStore(settings_path)
    await reloaded.load()
    assert reloaded.get(ONBOARDING_DONE) is None


@pytest.mark.asyncio
async def test_memory_store_never_touches_disk(tmp_path):
    store = SettingsStore()
    await store.load()
    await store.set_pinned_ids(["1"])

    assert store.pinned_ids() == ["1"]
    assert list(tmp_path.iterdir()) == []
