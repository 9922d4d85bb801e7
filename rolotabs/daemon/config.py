"""Configuration management for Rolotabs."""

from pathlib import Path
from typing import List, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from .error_handling import ConfigError
from .urls import DEFAULT_HIDDEN_PREFIXES

DEFAULT_CONFIG_LOCATIONS = [
    Path("rolotabs.yaml"),
    Path.home() / ".config" / "rolotabs" / "config.yaml",
]


class GroupStyle(BaseModel):
    title: str
    color: str = "grey"
    collapsed: bool = False


class GroupsConfig(BaseModel):
    enabled: bool = True
    pinned: GroupStyle = Field(default_factory=lambda: GroupStyle(title="📌 Pinned", color="blue"))
    saved: GroupStyle = Field(default_factory=lambda: GroupStyle(title="📚 Bookmarks", color="grey"))

    @field_validator('saved')
    @classmethod
    def validate_distinct_titles(cls, v: GroupStyle, info) -> GroupStyle:
        pinned = info.data.get('pinned')
        if pinned is not None and pinned.title == v.title:
            raise ValueError("pinned and saved groups need distinct titles")
        return v


class Config(BaseModel):
    """Main configuration for the Rolotabs daemon."""

    root_folder_name: str = "Rolotabs"
    store_path: Optional[Path] = Field(
        default_factory=lambda: Path.home() / ".local" / "share" / "rolotabs" / "settings.json"
    )
    debounce_ms: int = 50
    hidden_url_prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_HIDDEN_PREFIXES))
    max_parent_depth: int = 20
    groups: GroupsConfig = Field(default_factory=GroupsConfig)
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator('debounce_ms')
    @classmethod
    def validate_debounce(cls, v: int) -> int:
        if not 0 <= v <= 1000:
            raise ValueError("debounce_ms must be between 0 and 1000")
        return v

    @field_validator('max_parent_depth')
    @classmethod
    def validate_depth(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_parent_depth must be positive")
        return v

    @field_validator('store_path', 'log_file')
    @classmethod
    def expand_path(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return v
        return Path(v).expanduser()

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            for candidate in DEFAULT_CONFIG_LOCATIONS:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                raise FileNotFoundError(
                    f"No config file found. Searched: {[str(c) for c in DEFAULT_CONFIG_LOCATIONS]}"
                )

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {config_path}: {e}") from e

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False, allow_unicode=True)
