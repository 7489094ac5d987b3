"""Write shell profile fragments for installed tools."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .utils import CommandRunner, log, write_file

HEADER = "# Managed by provision; this file is overwritten on every run.\n"

# $ stays unescaped so values can reference other variables.
_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"', "`": "\\`"})


@dataclass(frozen=True)
class EnvFragment:
    """A sourceable file exporting variables for one tool."""

    path: str
    exports: tuple[tuple[str, str], ...]

    def render(self) -> str:
        """Return the fragment as shell source."""
        lines = [f'export {key}="{value.translate(_ESCAPES)}"' for key, value in self.exports]
        return HEADER + "\n".join(lines) + "\n"


class EnvironmentWriter:
    """Writes env fragments, replacing earlier versions wholesale."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def write(self, fragment: EnvFragment) -> Path:
        """Write ``fragment`` and make it executable.

        The whole file is replaced, so re-running never accumulates
        duplicate PATH entries.
        """
        path = Path(fragment.path)
        write_file(path, fragment.render(), self.runner, mode=0o755)
        log(f"Wrote {path}", "success", "📝")
        return path
