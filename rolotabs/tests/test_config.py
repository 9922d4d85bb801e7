"""Tests for configuration loading."""

from pathlib import Path

import pytest
import yaml

from rolotabs.daemon.config import Config, GroupsConfig
from rolotabs.daemon.error_handling import ConfigError


def test_defaults():
    config = Config.default()
    assert config.root_folder_name == "Rolotabs"
    assert config.debounce_ms == 50
    assert config.debounce_seconds == pytest.approx(0.05)
    assert config.max_parent_depth == 20
    assert config.groups.enabled
    assert config.groups.pinned.color == "blue"
    assert "chrome://" in config.hidden_url_prefixes
    assert config.store_path.name == "settings.json"


def test_save_and_load(tmp_path):
    path = tmp_path / "config.yaml"
    original = Config(root_folder_name="Tabs", debounce_ms=100, store_path=tmp_path / "s.json")
    original.save(path)

    loaded = Config.load(path)
    assert loaded.root_folder_name == "Tabs"
    assert loaded.debounce_ms == 100
    assert loaded.store_path == tmp_path / "s.json"
    assert loaded.groups == original.groups


def test_partial_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"groups": {"enabled": False}, "log_level": "DEBUG"}))

    config = Config.load(path)
    assert not config.groups.enabled
    assert config.groups.saved.title == GroupsConfig().saved.title
    assert config.log_level == "DEBUG"


def test_empty_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert Config.load(path).root_folder_name == "Rolotabs"


def test_invalid_values(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"debounce_ms": 5000}))

    with pytest.raises(ConfigError):
        Config.load(path)


def test_depth_must_be_positive():
    with pytest.raises(ValueError):
        Config(max_parent_depth=0)


def test_paths_expand_user():
    config = Config(store_path="~/rolotabs.json")
    assert config.store_path == Path.home() / "rolotabs.json"


def test_missing_config(tmp_path, monkeypatch):
    """No file in any default location is an error, not silent defaults."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "rolotabs.daemon.config.DEFAULT_CONFIG_LOCATIONS",
        [tmp_path / "rolotabs.yaml"],
    )
    with pytest.raises(FileNotFoundError):
        Config.load()


def test_default_location_found(tmp_path, monkeypatch):
    path = tmp_path / "rolotabs.yaml"
    path.write_text(yaml.safe_dump({"root_folder_name": "Found"}))
    monkeypatch.setattr("rolotabs.daemon.config.DEFAULT_CONFIG_LOCATIONS", [path])

    assert Config.load().root_folder_name == "Found"
