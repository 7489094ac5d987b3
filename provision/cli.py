"""Command-line interface for provision."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import ProvisionConfig
from .errors import ConfigError, ProvisionError, VerificationMissing
from .installer import InstallResult, Installer
from .os_profile import OsProfile, resolve
from .package_manager import kind_for_profile
from .utils import CommandRunner, console, is_verbose, log, setup_logging
from .verify import verification_env, verify

logger = logging.getLogger(__name__)

_STATUS_STYLES = {"ok": "green", "warn": "yellow", "failed": "bold red"}


def _resolve_profile(args: argparse.Namespace) -> OsProfile:
    profile = resolve()
    if getattr(args, "os_override", None):
        profile = profile.with_override(args.os_override)
        log(f"Using OS override: {profile.id}", "info", "🖥️")
    return profile


def _validate_tools(tools: list[str], config: ProvisionConfig) -> None:
    """Validate that all tools exist in the configuration."""
    unknown = [tool for tool in tools if tool not in config.recipes]
    if unknown:
        msg = f"Unknown tool(s): {', '.join(unknown)}. Available: {', '.join(config.recipe_names)}"
        raise ConfigError(msg)


def _apply_pins(pins: list[str], config: ProvisionConfig) -> None:
    for pin in pins:
        tool, sep, version = pin.partition("=")
        if not sep or not tool or not version:
            msg = f"Invalid --pin {pin!r}, expected tool=version"
            raise ConfigError(msg)
        config.versions[tool] = version


def install_tools(args: argparse.Namespace, config: ProvisionConfig) -> int:
    """Install the requested tools and print a summary."""
    _validate_tools(args.tools, config)
    _apply_pins(args.pin or [], config)
    profile = _resolve_profile(args)
    log(f"Detected OS: {profile}", "info", "🔍")

    runner = CommandRunner(timeout=config.command_timeout, use_sudo=config.use_sudo)
    installer = Installer.for_profile(config, profile, runner, force=args.force)
    results = installer.install_all(config.recipe(tool) for tool in args.tools)
    _print_summary(results)
    return 0 if all(result.ok for result in results) else 1


def _print_summary(results: list[InstallResult]) -> None:
    """Print completion summary."""
    table = Table(title="Installation summary")
    table.add_column("Tool", style="bold")
    table.add_column("Status")
    table.add_column("Details")
    for result in results:
        style = _STATUS_STYLES[result.status]
        if result.error is not None:
            details = str(result.error)
        else:
            details = result.verified or ""
            if result.already_installed:
                details = f"already installed {details}".strip()
            if result.warnings:
                details = "; ".join([details, *result.warnings]) if details else "; ".join(result.warnings)
        table.add_row(result.name, f"[{style}]{result.status}[/{style}]", escape(details))
    console.print(table)

    success_count = sum(result.ok for result in results)
    log(f"Completed: {success_count}/{len(results)} tools installed successfully", "info", "🔄")
    if success_count:
        log(
            "Log out and back in (or source the files in your profile directory) to pick up new environment variables",
            "info",
            "💡",
        )


def verify_tools(args: argparse.Namespace, config: ProvisionConfig) -> int:
    """Run the verification command of each tool."""
    _validate_tools(args.tools, config)
    profile = resolve()
    kind = kind_for_profile(profile)
    installer = Installer(config, profile, None, CommandRunner(timeout=60))
    missing = 0
    for tool in args.tools:
        recipe = config.recipe(tool)
        fragments = installer.fragments(recipe, kind, installer.context(recipe, recipe.version))
        try:
            version = verify(recipe.verify_command, env=verification_env(fragments))
        except VerificationMissing as e:
            missing += 1
            console.print(f"❌ [bold red]{tool}: missing[/bold red] ({escape(str(e))})")
        else:
            console.print(f"✅ [green]{tool}: installed[/green] {escape(version)}")
    return 1 if missing else 0


def list_tools(_args: argparse.Namespace, config: ProvisionConfig) -> int:
    """List available tools."""
    console.print("🔧 [blue]Available tools:[/blue]")
    for name in config.recipe_names:
        recipe = config.recipe(name)
        kinds = ", ".join(recipe.supported_kinds())
        version = f" {recipe.version}" if recipe.version else ""
        console.print(f"  [green]{name}[/green]{version} - {recipe.description} ({kinds})")
    return 0


def detect(args: argparse.Namespace, _config: ProvisionConfig) -> int:
    """Print the detected OS profile and package manager."""
    profile = _resolve_profile(args)
    console.print(f"🖥️ [blue]OS:[/blue] {profile}")
    if profile.id_like:
        console.print(f"   [blue]Like:[/blue] {' '.join(profile.id_like)}")
    console.print(f"📦 [blue]Package manager:[/blue] {kind_for_profile(profile).value}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="provision",
        description="provision - Install developer tools with the host package manager",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--config-file",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--profile-dir",
        type=str,
        help="Directory for shell profile fragments",
    )
    parser.add_argument(
        "--opt-dir",
        type=str,
        help="Directory for manually installed archives",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # install command
    install_parser = subparsers.add_parser("install", help="Install tools")
    install_parser.add_argument(
        "tools",
        nargs="+",
        help="Tools to install",
    )
    install_parser.add_argument(
        "--os-override",
        help="Use this OS id instead of the detected one",
    )
    install_parser.add_argument(
        "--pin",
        action="append",
        metavar="TOOL=VERSION",
        help="Install a specific version of a tool (repeatable)",
    )
    install_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Run the install steps even if the tool is already present",
    )
    install_parser.set_defaults(func=install_tools)

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Check that tools are installed")
    verify_parser.add_argument("tools", nargs="+", help="Tools to verify")
    verify_parser.set_defaults(func=verify_tools)

    # list command
    list_parser = subparsers.add_parser("list", help="List available tools")
    list_parser.set_defaults(func=list_tools)

    # detect command
    detect_parser = subparsers.add_parser("detect", help="Show the detected OS and package manager")
    detect_parser.add_argument(
        "--os-override",
        help="Use this OS id instead of the detected one",
    )
    detect_parser.set_defaults(func=detect)

    # version command
    version_parser = subparsers.add_parser("version", help="Print version information")
    version_parser.set_defaults(
        func=lambda _, __: console.print(f"[yellow]provision[/] [bold]v{__version__}[/]") or 0,
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main function to parse arguments and execute commands."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(0)

    try:
        # Create config
        config = ProvisionConfig.load_from_file(args.config_file)

        # Override directories if specified
        if args.profile_dir:
            config.profile_dir = Path(args.profile_dir)
        if args.opt_dir:
            config.opt_dir = Path(args.opt_dir)

        exit_code = args.func(args, config)
    except ProvisionError as e:
        console.print(f"❌ [bold red]Error: {escape(str(e))}[/bold red]")
        if is_verbose():
            console.print_exception()
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
