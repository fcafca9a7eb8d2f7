"""YAML configuration for the command line front end."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .registry import DEFAULT_DEFINITION_TYPES, DefinitionTypes, PatchKind
from .tree import DEFAULT_TAGS, Directive, TagTable

DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "name": "",
        "description": "",
    },
    "paths": {
        "data": "data",
        "db_path": "data/fpatch.sqlite",
    },
    "patches": ["patches.yaml"],
    "tags": {directive.value: name for directive, name in DEFAULT_TAGS.items()},
    "definition_types": {head: kind.value for head, kind in DEFAULT_DEFINITION_TYPES.items()},
    "logging": {
        "level": "WARNING",
    },
}


class ConfigModel(BaseModel):
    """Base model with strict field handling."""

    model_config = ConfigDict(extra="forbid")


class ProjectSection(ConfigModel):
    name: str = ""
    description: str = ""


class PathsSection(ConfigModel):
    data: str = "data"
    db_path: str = "data/fpatch.sqlite"


class LoggingSection(ConfigModel):
    level: str = "WARNING"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown logging level '{value}'")
        return level


class EngineConfig(ConfigModel):
    """Validated configuration document."""

    project: ProjectSection = Field(default_factory=ProjectSection)
    paths: PathsSection = Field(default_factory=PathsSection)
    patches: List[str] = Field(default_factory=list)
    tags: Dict[Directive, str] = Field(default_factory=dict)
    definition_types: Dict[str, PatchKind] = Field(default_factory=dict)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    def tag_table(self) -> TagTable:
        return TagTable(self.tags)

    def definition_type_table(self) -> DefinitionTypes:
        types = DefinitionTypes()
        for head, kind in self.definition_types.items():
            types.register(head, kind)
        return types

    def resolve_path(self, value: str, base: Path) -> Path:
        candidate = Path(value)
        if not candidate.is_absolute():
            candidate = (base / candidate).resolve()
        return candidate

    def patch_files(self, base: Path) -> List[Path]:
        return [self.resolve_path(entry, base) for entry in self.patches]

    def db_path(self, base: Path) -> Path:
        return self.resolve_path(self.paths.db_path, base)


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> EngineConfig:
    """Load and validate a YAML configuration file."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        config = EngineConfig.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {config_path}: {error}") from error

    try:
        config.tag_table()
    except ValueError as error:
        raise ConfigError(f"Invalid tags in {config_path}: {error}") from error
    return config


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "EngineConfig",
    "copy_config_template",
    "load_config",
    "write_config",
]
