"""provision - Developer Tool Installer.

Installs language toolchains, cloud CLIs and container runtimes on macOS
and Linux. The host OS is detected once, mapped onto its package manager
(apt, yum/dnf, pacman, Homebrew) and every requested tool is installed
from a declarative recipe, falling back to vendor archives where no
package exists. Each tool gets a shell profile fragment exporting its
home and PATH variables.
"""

from __future__ import annotations

__version__ = "0.1.0"

from . import cli, config, download, installer, os_profile, package_manager, recipes, utils
from .cli import main
from .config import ProvisionConfig
from .env_writer import EnvFragment, EnvironmentWriter
from .installer import InstallResult, Installer, RecipeState
from .os_profile import OsProfile, resolve
from .package_manager import PackageManagerKind, for_profile
from .recipes import InstallRecipe, parse_recipe

__all__ = [
    "EnvFragment",
    "EnvironmentWriter",
    "InstallRecipe",
    "InstallResult",
    "Installer",
    "OsProfile",
    "PackageManagerKind",
    "ProvisionConfig",
    "RecipeState",
    "cli",
    "config",
    "download",
    "for_profile",
    "installer",
    "main",
    "os_profile",
    "package_manager",
    "parse_recipe",
    "recipes",
    "resolve",
    "utils",
]
