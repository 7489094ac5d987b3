"""Declarative install recipes.

A recipe is loaded from YAML and looks like::

    maven:
      description: Apache Maven build tool
      version: 3.9.6
      steps:
        any:
          - download_extract:
              url: https://dlcdn.apache.org/maven/maven-3/{version}/binaries/apache-maven-{version}-bin.tar.gz
              dest: "{opt_dir}"
              creates: "{opt_dir}/apache-maven-{version}"
          - symlink: {src: "{opt_dir}/apache-maven-{version}", dst: "{opt_dir}/maven"}
      env:
        - path: "{profile_dir}/maven.sh"
          exports:
            MAVEN_HOME: "{opt_dir}/maven"
            PATH: "$MAVEN_HOME/bin:$PATH"
      verify: mvn -version

Step lists are keyed by package manager kind (``apt``, ``yum_dnf``,
``pacman``, ``brew``, ``manual``); ``any`` applies to every kind that has
no list of its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .env_writer import EnvFragment
from .errors import ConfigError
from .package_manager import PackageManagerKind, RepositorySpec

ANY = "any"
_KIND_KEYS = {kind.value for kind in PackageManagerKind} - {"unsupported"}


@dataclass(frozen=True)
class RunPackageManagerInstall:
    names: tuple[str, ...]


@dataclass(frozen=True)
class AddRepository:
    spec: RepositorySpec


@dataclass(frozen=True)
class DownloadExtract:
    url: str
    dest_dir: str
    creates: str = ""


@dataclass(frozen=True)
class DownloadFile:
    url: str
    dest: str


@dataclass(frozen=True)
class Symlink:
    src: str
    dst: str


@dataclass(frozen=True)
class WriteFile:
    path: str
    content: str
    mode: int = 0o644


@dataclass(frozen=True)
class RunCommand:
    argv: tuple[str, ...]
    privileged: bool = False


Action = Union[
    RunPackageManagerInstall,
    AddRepository,
    DownloadExtract,
    DownloadFile,
    Symlink,
    WriteFile,
    RunCommand,
]


@dataclass(frozen=True)
class InstallRecipe:
    """How to install one tool."""

    name: str
    verify_command: str
    description: str = ""
    prerequisites: dict[str, tuple[str, ...]] = field(default_factory=dict)
    steps: dict[str, tuple[Action, ...]] = field(default_factory=dict)
    env_fragments: tuple[EnvFragment, ...] = ()
    version: str = ""
    releases_url: str = ""
    check: str = ""
    refresh: bool = False
    refresh_is_fatal: bool = False
    home_of: str = ""
    home_fallback: dict[str, str] = field(default_factory=dict)

    @property
    def check_command(self) -> str:
        """Command whose presence means the tool is already installed."""
        if self.check:
            return self.check
        return self.verify_command.split()[0] if self.verify_command else ""

    @property
    def supports_manual(self) -> bool:
        """Whether the recipe can run without a package manager."""
        return PackageManagerKind.MANUAL.value in self.steps or ANY in self.steps

    def supported_kinds(self) -> list[str]:
        """Return the package manager kinds this recipe has steps for."""
        if ANY in self.steps:
            return [ANY]
        return [key for key in self.steps if key in _KIND_KEYS]

    def steps_for(self, kind: PackageManagerKind) -> tuple[Action, ...] | None:
        """Return the steps for ``kind``, or None if the recipe does not support it."""
        if kind.value in self.steps:
            return self.steps[kind.value]
        return self.steps.get(ANY)

    def prerequisites_for(self, kind: PackageManagerKind) -> tuple[str, ...]:
        """Return the prerequisite packages for ``kind``."""
        if kind.value in self.prerequisites:
            return self.prerequisites[kind.value]
        return self.prerequisites.get(ANY, ())


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _parse_action(recipe: str, raw: Any) -> Action:  # noqa: PLR0911
    if not isinstance(raw, dict) or len(raw) != 1:
        msg = f"Recipe {recipe}: each step must be a mapping with a single key, got {raw!r}"
        raise ConfigError(msg)
    key, value = next(iter(raw.items()))

    if key == "install":
        return RunPackageManagerInstall(_as_tuple(value))
    if key == "add_repository":
        try:
            return AddRepository(RepositorySpec(**value))
        except TypeError as e:
            msg = f"Recipe {recipe}: invalid repository {value!r}: {e}"
            raise ConfigError(msg) from e
    if key == "download_extract":
        return DownloadExtract(value["url"], value["dest"], value.get("creates", ""))
    if key == "download":
        return DownloadFile(value["url"], value["dest"])
    if key == "symlink":
        return Symlink(value["src"], value["dst"])
    if key == "write_file":
        mode = value.get("mode", 0o644)
        return WriteFile(value["path"], value["content"], int(str(mode), 8) if isinstance(mode, str) else mode)
    if key in ("run", "run_privileged"):
        return RunCommand(_as_tuple(value), privileged=key == "run_privileged")

    msg = f"Recipe {recipe}: unknown step type {key!r}"
    raise ConfigError(msg)


def _parse_by_kind(recipe: str, raw: Any, what: str) -> dict[str, Any]:
    if isinstance(raw, dict):
        unknown = set(raw) - _KIND_KEYS - {ANY}
        if unknown:
            msg = f"Recipe {recipe}: unknown package manager(s) in {what}: {', '.join(sorted(unknown))}"
            raise ConfigError(msg)
        return raw
    return {ANY: raw}


def _parse_env(recipe: str, raw: Any) -> tuple[EnvFragment, ...]:
    fragments = []
    for entry in raw or []:
        if "path" not in entry:
            msg = f"Recipe {recipe}: env fragment is missing 'path'"
            raise ConfigError(msg)
        exports = tuple((str(k), str(v)) for k, v in (entry.get("exports") or {}).items())
        fragments.append(EnvFragment(entry["path"], exports))
    return tuple(fragments)


def parse_recipe(name: str, raw: dict[str, Any], version: str | None = None) -> InstallRecipe:
    """Build an InstallRecipe from its YAML mapping.

    ``version`` overrides the version declared in the recipe.
    """
    if not isinstance(raw, dict):
        msg = f"Recipe {name} must be a mapping"
        raise ConfigError(msg)

    try:
        steps = {
            kind: tuple(_parse_action(name, step) for step in step_list or [])
            for kind, step_list in _parse_by_kind(name, raw.get("steps", {}), "steps").items()
        }
    except KeyError as e:
        msg = f"Recipe {name}: step is missing required field {e}"
        raise ConfigError(msg) from e

    prerequisites = {
        kind: _as_tuple(names)
        for kind, names in _parse_by_kind(name, raw.get("prerequisites", []), "prerequisites").items()
    }

    declared = raw.get("version", "")
    if declared is not None and not isinstance(declared, str):
        msg = f"Recipe {name}: version must be a string; quote it in YAML (got {declared!r})"
        raise ConfigError(msg)
    recipe_version = version or declared or ""
    if recipe_version == "latest" and not raw.get("releases_url"):
        msg = f"Recipe {name}: version 'latest' needs a releases_url"
        raise ConfigError(msg)

    return InstallRecipe(
        name=name,
        description=raw.get("description", ""),
        verify_command=raw.get("verify", ""),
        prerequisites=prerequisites,
        steps=steps,
        env_fragments=_parse_env(name, raw.get("env")),
        version=recipe_version,
        releases_url=raw.get("releases_url", ""),
        check=raw.get("check", ""),
        refresh=bool(raw.get("refresh", False)),
        refresh_is_fatal=bool(raw.get("refresh_is_fatal", False)),
        home_of=raw.get("home_of", ""),
        home_fallback=dict(raw.get("home_fallback") or {}),
    )
