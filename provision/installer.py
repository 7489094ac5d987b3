"""Run install recipes against a package manager adapter."""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from . import download
from .env_writer import EnvFragment, EnvironmentWriter
from .errors import (
    CommandError,
    DownloadError,
    ConfigError,
    ProvisionError,
    RefreshError,
    UnsupportedOsError,
    VerificationMissing,
)
from .package_manager import (
    PackageManagerAdapter,
    PackageManagerKind,
    RepositorySpec,
    for_profile,
    manual_adapter,
)
from .recipes import (
    Action,
    AddRepository,
    DownloadExtract,
    DownloadFile,
    InstallRecipe,
    RunCommand,
    RunPackageManagerInstall,
    Symlink,
    WriteFile,
)
from .utils import CommandRunner, command_exists, current_platform, current_user, log, write_file
from .verify import verification_env, verify

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .config import ProvisionConfig
    from .os_profile import OsProfile

logger = logging.getLogger(__name__)


class RecipeState(Enum):
    """Progress of a single recipe."""

    PENDING = "pending"
    PREREQUISITES_CHECKED = "prerequisites checked"
    INSTALLED = "installed"
    ENV_WRITTEN = "env written"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass
class InstallResult:
    """Outcome of installing one recipe."""

    name: str
    state: RecipeState = RecipeState.PENDING
    version: str = ""
    verified: str = ""
    already_installed: bool = False
    warnings: list[str] = field(default_factory=list)
    error: ProvisionError | None = None
    failed_in: RecipeState | None = None

    @property
    def ok(self) -> bool:
        return self.state is RecipeState.VERIFIED

    @property
    def status(self) -> str:
        if not self.ok:
            return "failed"
        return "warn" if self.warnings else "ok"

    def advance(self, state: RecipeState) -> None:
        self.state = state
        log(f"{self.name}: {state.value}", "debug")

    def fail(self, error: ProvisionError) -> None:
        self.failed_in = self.state
        self.state = RecipeState.FAILED
        self.error = error


def render(template: str, context: dict[str, Any]) -> str:
    """Fill ``{placeholders}`` in a recipe string."""
    try:
        return template.format_map(context)
    except KeyError as e:
        msg = f"Unknown placeholder {e} in {template!r}"
        raise ConfigError(msg) from e
    except (ValueError, IndexError) as e:
        msg = f"Malformed template {template!r}: {e}"
        raise ConfigError(msg) from e


class Installer:
    """Installs recipes one after another.

    ``adapter`` is None when the OS has no supported package manager; in
    that case only recipes with ``manual`` or ``any`` steps can run.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        profile: OsProfile,
        adapter: PackageManagerAdapter | None,
        runner: CommandRunner,
        *,
        force: bool = False,
    ) -> None:
        self.config = config
        self.profile = profile
        self.adapter = adapter
        self.runner = runner
        self.force = force
        self.env_writer = EnvironmentWriter(runner)

    @classmethod
    def for_profile(
        cls,
        config: ProvisionConfig,
        profile: OsProfile,
        runner: CommandRunner,
        *,
        force: bool = False,
    ) -> Installer:
        """Create an installer, selecting the adapter once for the whole run."""
        try:
            adapter: PackageManagerAdapter | None = for_profile(
                profile,
                runner,
                config.network_timeout,
            )
        except UnsupportedOsError as e:
            log(f"{e}; only manual installs are available", "warning", "⚠️")
            adapter = None
        return cls(config, profile, adapter, runner, force=force)

    # Context

    def context(self, recipe: InstallRecipe, version: str) -> dict[str, Any]:
        """Return the placeholder values for ``recipe``."""
        _, arch = current_platform()
        machine = "aarch64" if arch == "arm64" else "x86_64"
        return {
            "id": self.profile.id,
            "version_id": self.profile.version_id,
            "codename": self.profile.codename,
            "version": version,
            "arch": arch,
            "machine": machine,
            "dpkg_arch": arch,
            "aws_arch": machine,
            "opt_dir": str(self.config.opt_dir),
            "profile_dir": str(self.config.profile_dir),
            "download_dir": str(self.config.download_dir),
            "home": os.path.expanduser("~"),
            "user": current_user(),
            "tool_home": "",
        }

    def _tool_home(self, recipe: InstallRecipe, kind: PackageManagerKind, context: dict[str, Any]) -> str:
        """Resolve a tool's home directory from the real path of its command."""
        if not recipe.home_of:
            return ""
        found = shutil.which(recipe.home_of)
        if found:
            return str(Path(found).resolve().parent.parent)
        fallback = recipe.home_fallback.get(kind.value, "")
        if fallback:
            log(f"Could not determine the home of {recipe.home_of}; using {fallback}", "warning", "⚠️")
        return render(fallback, context)

    def fragments(self, recipe: InstallRecipe, kind: PackageManagerKind, context: dict[str, Any]) -> list[EnvFragment]:
        """Render the recipe's env fragments for ``kind``."""
        context = {**context, "tool_home": self._tool_home(recipe, kind, context)}
        return [
            EnvFragment(
                render(fragment.path, context),
                tuple((key, render(value, context)) for key, value in fragment.exports),
            )
            for fragment in recipe.env_fragments
        ]

    # Recipe execution

    def _adapter_for(self, recipe: InstallRecipe) -> PackageManagerAdapter:
        if self.adapter is not None:
            return self.adapter
        if recipe.supports_manual:
            return manual_adapter(self.runner, self.config.network_timeout)
        raise UnsupportedOsError(
            self.profile.id,
            f"{recipe.name} cannot be installed on {self.profile.id or 'unknown'}: "
            "no supported package manager and no manual install steps",
        )

    def _already_installed(self, recipe: InstallRecipe, env: dict[str, str]) -> bool:
        check = recipe.check_command
        return bool(check) and not self.force and command_exists(check, path=env.get("PATH"))

    def _pin_version(self, recipe: InstallRecipe) -> str:
        if recipe.version != "latest":
            return recipe.version
        return download.latest_version(recipe.releases_url, timeout=self.config.network_timeout)

    def _refresh(self, recipe: InstallRecipe, adapter: PackageManagerAdapter, result: InstallResult) -> None:
        try:
            adapter.refresh()
        except RefreshError as e:
            if recipe.refresh_is_fatal:
                raise
            log(f"{e}; continuing", "warning", "⚠️")
            result.warnings.append(str(e))

    def install(self, recipe: InstallRecipe) -> InstallResult:
        """Install one recipe; fatal errors are recorded in the result, not raised."""
        log(f"Installing {recipe.name}", "info", "🔧")
        result = InstallResult(recipe.name, version=recipe.version)
        try:
            self._install(recipe, result)
        except ProvisionError as e:
            log(f"{recipe.name} failed: {e}", "error", "❌")
            result.fail(e)
        except OSError as e:
            log(f"{recipe.name} failed: {e}", "error", "❌")
            result.fail(ProvisionError(str(e)))
        return result

    def _install(self, recipe: InstallRecipe, result: InstallResult) -> None:
        adapter = self._adapter_for(recipe)
        steps = recipe.steps_for(adapter.kind)
        if steps is None:
            raise UnsupportedOsError(
                self.profile.id,
                f"{recipe.name} has no install steps for {adapter.kind.value} ({self.profile.id})",
            )

        adapter.ensure_installed(recipe.prerequisites_for(adapter.kind))
        result.advance(RecipeState.PREREQUISITES_CHECKED)

        context = self.context(recipe, recipe.version)
        fragments = self.fragments(recipe, adapter.kind, context)
        if self._already_installed(recipe, verification_env(fragments)):
            log(f"{recipe.name} is already installed (use --force to reinstall)", "success", "✅")
            result.already_installed = True
        else:
            result.version = self._pin_version(recipe)
            context["version"] = result.version
            if recipe.refresh and adapter.kind is not PackageManagerKind.MANUAL:
                self._refresh(recipe, adapter, result)
            for action in steps:
                self._run_action(action, adapter, context)
            fragments = self.fragments(recipe, adapter.kind, context)
        result.advance(RecipeState.INSTALLED)

        for fragment in fragments:
            try:
                self.env_writer.write(fragment)
            except OSError as e:
                msg = f"Failed to write {fragment.path}: {e}"
                raise ProvisionError(msg) from e
        result.advance(RecipeState.ENV_WRITTEN)

        self._verify(recipe, fragments, result)
        result.advance(RecipeState.VERIFIED)

    def _verify(self, recipe: InstallRecipe, fragments: list[EnvFragment], result: InstallResult) -> None:
        if not recipe.verify_command:
            result.warnings.append(f"{recipe.name} has no verification command")
            return
        try:
            result.verified = verify(recipe.verify_command, env=verification_env(fragments), runner=self.runner)
        except VerificationMissing as e:
            log(f"{e}. Installation might have failed or PATH is not set yet.", "warning", "⚠️")
            result.warnings.append(str(e))
        else:
            log(f"{recipe.name}: {result.verified}", "success", "✅")

    def _run_action(self, action: Action, adapter: PackageManagerAdapter, context: dict[str, Any]) -> None:  # noqa: C901
        if isinstance(action, RunPackageManagerInstall):
            adapter.ensure_installed([render(name, context) for name in action.names])
        elif isinstance(action, AddRepository):
            spec = RepositorySpec(
                **{key: render(value, context) for key, value in dataclasses.asdict(action.spec).items()},
            )
            adapter.add_repository(spec)
        elif isinstance(action, DownloadExtract):
            creates = render(action.creates, context)
            if creates and Path(creates).exists():
                log(f"{creates} already exists, skipping download", "success", "✅")
                return
            download.download_and_extract(
                render(action.url, context),
                Path(render(action.dest_dir, context)),
                self.runner,
                download_dir=self.config.download_dir,
                timeout=self.config.network_timeout,
            )
        elif isinstance(action, DownloadFile):
            dest = Path(render(action.dest, context))
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                msg = f"Cannot create download directory {dest.parent}: {e}"
                raise DownloadError(msg) from e
            download.download_file(render(action.url, context), str(dest), timeout=self.config.network_timeout)
        elif isinstance(action, Symlink):
            download.replace_symlink(
                Path(render(action.src, context)),
                Path(render(action.dst, context)),
                self.runner,
            )
        elif isinstance(action, WriteFile):
            path = Path(render(action.path, context))
            try:
                write_file(path, render(action.content, context), self.runner, mode=action.mode)
            except OSError as e:
                msg = f"Failed to write {path}: {e}"
                raise ProvisionError(msg) from e
        elif isinstance(action, RunCommand):
            argv = [render(arg, context) for arg in action.argv]
            log(f"Running {' '.join(argv)}", "info", "▶️")
            run = self.runner.run(argv, privileged=action.privileged)
            if not run.ok:
                msg = f"{argv[0]} failed: {run.output()[-500:]}"
                raise CommandError(msg, run.command, run.returncode)
        else:  # pragma: no cover
            msg = f"Unknown action {action!r}"
            raise ConfigError(msg)

    def install_all(self, recipes: Iterable[InstallRecipe]) -> list[InstallResult]:
        """Install recipes sequentially; one failure does not stop the batch."""
        return [self.install(recipe) for recipe in recipes]
