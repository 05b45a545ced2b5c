"""External tool invocation.

esbuild, terser and the frontend build are Node.js programs. They are always
launched through :func:`run_tool`, so callers only deal with a
:class:`ToolResult` and tests can swap the runner out.
"""

from dataclasses import dataclass
import logging
import pathlib
import subprocess
from typing import Callable

from gas_flattener.errors import ToolError


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one external tool invocation.

    :ivar returncode: Process exit status.
    :ivar stdout: Decoded standard output (empty when not captured).
    :ivar stderr: Decoded standard error (empty when not captured).
    """

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Whether the tool exited with status 0."""

        return self.returncode == 0


ToolRunner = Callable[..., ToolResult]


def run_tool(
    cmd: list[str],
    *,
    stdin_text: str | None = None,
    cwd: pathlib.Path | None = None,
    capture: bool = True,
    logger: logging.Logger | None = None,
) -> ToolResult:
    """Run an external command to completion.

    A non-zero exit status is reported through the result, not raised; each
    caller decides which error kind it maps to.

    :param cmd: Full argument vector.
    :param stdin_text: Optional text fed to standard input (UTF-8).
    :param cwd: Optional working directory.
    :param capture: Capture stdout/stderr instead of inheriting them.
    :param logger: Optional logger for debug output.
    :returns: Tool result.
    :raises ToolError: If the executable cannot be started.
    """

    if logger is not None and logger.isEnabledFor(logging.DEBUG) is True:
        where: str = f" (cwd={cwd})" if cwd is not None else ""
        logger.debug(f"gas-flattener: running: {' '.join(cmd)}{where}")

    try:
        proc = subprocess.run(
            cmd,
            input=stdin_text,
            cwd=cwd,
            capture_output=capture,
            text=True,
            encoding="utf-8",
            check=False,
        )
    except FileNotFoundError as e:
        raise ToolError(f"External tool not found: {cmd[0]} (is Node.js installed?)") from e
    except OSError as e:
        raise ToolError(f"Could not start external tool {cmd[0]}: {e}") from e

    return ToolResult(
        returncode=proc.returncode,
        stdout=proc.stdout if proc.stdout is not None else "",
        stderr=proc.stderr if proc.stderr is not None else "",
    )
