"""Verify installed tools by running their version commands."""

from __future__ import annotations

import os
import shlex
from string import Template
from typing import TYPE_CHECKING

from .errors import VerificationMissing
from .utils import CommandRunner, command_exists

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .env_writer import EnvFragment


def verification_env(
    fragments: Iterable[EnvFragment],
    base: dict[str, str] | None = None,
) -> dict[str, str]:
    """Return the environment a new login shell would see after sourcing ``fragments``."""
    env = dict(os.environ if base is None else base)
    for fragment in fragments:
        for key, value in fragment.exports:
            env[key] = Template(value).safe_substitute(env)
    return env


def verify(
    command: str,
    env: dict[str, str] | None = None,
    runner: CommandRunner | None = None,
) -> str:
    """Run a version command and return the first line it prints.

    Raises VerificationMissing when the executable cannot be found or
    the command fails.
    """
    argv = shlex.split(command)
    if not argv:
        msg = "No verification command configured"
        raise VerificationMissing(msg)
    path = (env or os.environ).get("PATH")
    if not command_exists(argv[0], path=path):
        msg = f"{argv[0]} command not found"
        raise VerificationMissing(msg, command, 127)

    runner = runner or CommandRunner(timeout=60)
    result = runner.run(argv, env=env)
    if not result.ok:
        msg = f"{argv[0]} is installed but its version check failed"
        raise VerificationMissing(msg, result.command, result.returncode)
    output = result.output()
    return output.splitlines()[0] if output else ""
