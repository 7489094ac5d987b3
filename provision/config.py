"""Configuration management for provision."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .recipes import InstallRecipe, parse_recipe
from .utils import log

logger = logging.getLogger(__name__)

BUNDLED_RECIPES = Path(__file__).parent / "recipes.yaml"
DEFAULT_CONFIG_PATH = Path("~/.config/provision/config.yaml")

_PATH_FIELDS = ("profile_dir", "opt_dir", "download_dir")


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as file:
            data = yaml.safe_load(file)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in configuration file {path}: {e}"
        raise ConfigError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Configuration file {path} must contain a mapping"
        raise ConfigError(msg)
    return data


def _bundled_recipes() -> dict[str, dict[str, Any]]:
    return dict(_load_yaml(BUNDLED_RECIPES).get("recipes", {}))


@dataclass
class ProvisionConfig:
    """Configuration for provision."""

    profile_dir: Path = field(default_factory=lambda: Path("/etc/profile.d"))
    opt_dir: Path = field(default_factory=lambda: Path("/opt"))
    download_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "provision",
    )
    network_timeout: float = 30
    command_timeout: float = 1800
    use_sudo: bool | None = None
    versions: dict[str, str] = field(default_factory=dict)
    recipes: dict[str, dict[str, Any]] = field(default_factory=_bundled_recipes)

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            setattr(self, name, Path(os.path.expanduser(str(value))))
        self.versions = dict(self.versions or {})
        for name, version in self.versions.items():
            if not isinstance(version, str):
                msg = f"Version of {name} must be a string; quote it in YAML (got {version!r})"
                raise ConfigError(msg)
        self.versions = {str(k): v for k, v in self.versions.items()}

    def validate(self) -> None:
        """Validate the configuration."""
        for name, raw in self.recipes.items():
            self._validate_recipe(name, raw)
        for name in self.versions:
            if name not in self.recipes:
                log(f"Version pinned for unknown recipe '{name}'", "warning", "⚠️")

    def _validate_recipe(self, name: str, raw: dict[str, Any]) -> None:
        """Validate a single recipe."""
        recipe = parse_recipe(name, raw)
        if not recipe.verify_command:
            log(f"Recipe {name} has no 'verify' command", "warning", "⚠️")
        if not recipe.steps:
            log(f"Recipe {name} has no install steps", "warning", "⚠️")

    @property
    def recipe_names(self) -> list[str]:
        return sorted(self.recipes)

    def recipe(self, name: str) -> InstallRecipe:
        """Return the parsed recipe ``name`` with any configured version pin applied."""
        if name not in self.recipes:
            msg = f"Unknown tool: {name}"
            raise ConfigError(msg)
        return parse_recipe(name, self.recipes[name], version=self.versions.get(name))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionConfig:
        """Build a configuration, merging ``recipes`` over the bundled catalogue."""
        data = dict(data)
        unknown = set(data) - set(cls.__dataclass_fields__)
        if unknown:
            msg = f"Unknown configuration option(s): {', '.join(sorted(unknown))}"
            raise ConfigError(msg)
        recipes = _bundled_recipes()
        recipes.update(data.pop("recipes", None) or {})
        config = cls(recipes=recipes, **data)
        config.validate()
        return config

    @classmethod
    def load_from_file(cls, config_path: str | None = None) -> ProvisionConfig:
        """Load configuration from a YAML file."""
        path = Path(os.path.expanduser(config_path or DEFAULT_CONFIG_PATH))
        try:
            data = _load_yaml(path)
        except FileNotFoundError:
            if config_path:
                log(f"Configuration file not found: {path}", "warning", "⚠️")
            return cls.from_dict({})
        log(f"Loaded configuration from {path}", "debug", "📄")
        return cls.from_dict(data)
