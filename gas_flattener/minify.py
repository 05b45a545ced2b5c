"""Validation, minification and artifact writing.

The flattened script is first checked for residual module syntax and parsed
by esbuild in transform mode. Only a script that parses is handed to terser,
which is told to keep the protected top-level names intact. Any failure
leaves the offending text in a debug file next to the artifacts and raises;
nothing is ever written to the artifact path in that case.
"""

import json
import logging
import pathlib
import re
import tempfile

from gas_flattener.config import ProjectMetadata, ToolCommands
from gas_flattener.errors import MinificationError, SyntaxValidationError
from gas_flattener.flatten import find_module_syntax
from gas_flattener.log import get_logger
from gas_flattener.tools import ToolResult, ToolRunner, run_tool

CONTEXT_RADIUS: int = 5

_ESBUILD_LOCATION_RE: re.Pattern[str] = re.compile(r":(?P<line>\d+):(?P<col>\d+):")
_TERSER_LOCATION_RE: re.Pattern[str] = re.compile(r":(?P<line>\d+),(?P<col>\d+)")
_TERSER_LINE_RE: re.Pattern[str] = re.compile(r"\bline\W+(?P<line>\d+)(?:\D+col(?:umn)?\W+(?P<col>\d+))?", re.I)


def terser_options(protected_names: frozenset[str] | set[str], *, toplevel: bool = True) -> dict[str, object]:
    """Build terser ``minify()`` options for a flat host script.

    With ``toplevel`` off, top-level names are neither renamed nor dropped
    as unused. Scripts that share one global scope with other scripts are
    minified that way.

    :param protected_names: Top-level names that must not be renamed or dropped.
    :param toplevel: Allow renaming and dropping top-level names.
    :returns: JSON-serializable options.
    """

    reserved: list[str] = sorted(protected_names)
    return {
        "compress": {
            "passes": 2,
            "dead_code": True,
            "drop_console": False,
            "toplevel": toplevel,
            "top_retain": reserved,
        },
        "mangle": {
            "toplevel": toplevel,
            "reserved": reserved,
        },
        "format": {
            "comments": False,
            "ascii_only": False,
        },
    }


def source_context(text: str, line: int, *, radius: int = CONTEXT_RADIUS) -> list[str]:
    """Render the lines around ``line`` with a marker on ``line`` itself.

    :param text: Source text.
    :param line: 1-based line number.
    :param radius: Lines to show on each side.
    :returns: Formatted lines, e.g. ``"> 12 | foo(;"``.
    """

    lines: list[str] = text.splitlines()
    if len(lines) == 0:
        return []
    line = min(max(line, 1), len(lines))
    first: int = max(1, line - radius)
    last: int = min(len(lines), line + radius)
    width: int = len(str(last))
    out: list[str] = []
    for n in range(first, last + 1):
        marker: str = ">" if n == line else " "
        out.append(f"{marker} {n:>{width}} | {lines[n - 1]}")
    return out


def _log_context(logger: logging.Logger, text: str, line: int | None) -> None:
    if line is None:
        return
    logger.error(f"gas-flattener: source around line {line}:")
    for row in source_context(text, line):
        logger.error(f"gas-flattener:   {row}")


def write_debug_artifact(path: pathlib.Path, text: str, *, logger: logging.Logger) -> None:
    """Persist ``text`` for post-mortem inspection."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.error(f"gas-flattener: wrote debug artifact {path}")


def validate_script(
    text: str,
    *,
    name: str,
    tools: ToolCommands,
    debug_path: pathlib.Path,
    cwd: pathlib.Path | None = None,
    runner: ToolRunner | None = None,
    logger: logging.Logger | None = None,
) -> None:
    """Check that ``text`` is a standalone script that parses.

    :param text: Flattened script.
    :param name: Display name used in parser diagnostics.
    :param tools: External tool commands.
    :param debug_path: Where to write ``text`` if validation fails.
    :param cwd: Working directory for the parser process.
    :param runner: Tool runner override.
    :param logger: Logger for progress output.
    :raises SyntaxValidationError: If module syntax remains or parsing fails.
    """

    logger = get_logger(logger)
    runner = runner if runner is not None else run_tool

    leftovers: list[tuple[str, int]] = find_module_syntax(text)
    if len(leftovers) > 0:
        keyword, line = leftovers[0]
        write_debug_artifact(debug_path, text, logger=logger)
        _log_context(logger, text, line)
        raise SyntaxValidationError(
            f"{name}:{line}: unsupported {keyword!r} statement left after flattening",
            debug_path=debug_path,
            line=line,
        )

    cmd: list[str] = [*tools.esbuild, "--loader=js", "--log-level=error", f"--sourcefile={name}"]
    result: ToolResult = runner(cmd, stdin_text=text, cwd=cwd, logger=logger)
    if result.ok is True:
        return

    diagnostics: str = result.stderr or result.stdout
    m = _ESBUILD_LOCATION_RE.search(diagnostics)
    line_no: int | None = int(m.group("line")) if m is not None else None
    write_debug_artifact(debug_path, text, logger=logger)
    _log_context(logger, text, line_no)
    where: str = f"{name}:{line_no}" if line_no is not None else name
    raise SyntaxValidationError(
        f"{where}: flattened script does not parse",
        debug_path=debug_path,
        diagnostics=diagnostics,
        line=line_no,
    )


def minify_script(
    text: str,
    *,
    protected_names: frozenset[str],
    tools: ToolCommands,
    debug_path: pathlib.Path,
    toplevel: bool = True,
    cwd: pathlib.Path | None = None,
    runner: ToolRunner | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Minify ``text`` with terser, keeping ``protected_names`` unrenamed.

    :param text: Validated flattened script.
    :param protected_names: Names excluded from renaming and dead-code removal.
    :param toplevel: Mangle and drop other top-level names (see :func:`terser_options`).
    :param tools: External tool commands.
    :param debug_path: Where to write ``text`` if terser fails.
    :param cwd: Working directory for the terser process.
    :param runner: Tool runner override.
    :param logger: Logger for progress output.
    :returns: Minified script.
    :raises MinificationError: If terser fails.
    """

    logger = get_logger(logger)
    runner = runner if runner is not None else run_tool

    with tempfile.TemporaryDirectory(prefix="gas_flattener_minify_") as td:
        work: pathlib.Path = pathlib.Path(td)
        input_path: pathlib.Path = work / "input.js"
        config_path: pathlib.Path = work / "terser.config.json"
        input_path.write_text(text, encoding="utf-8")
        options: dict[str, object] = terser_options(protected_names, toplevel=toplevel)
        config_path.write_text(json.dumps(options, indent=2), encoding="utf-8")

        cmd: list[str] = [*tools.terser, str(input_path), "--config-file", str(config_path)]
        result: ToolResult = runner(cmd, cwd=cwd, logger=logger)

    if result.ok is True:
        return result.stdout

    diagnostics: str = result.stderr or result.stdout
    line_no: int | None = None
    col_no: int | None = None
    m = _TERSER_LOCATION_RE.search(diagnostics) or _TERSER_LINE_RE.search(diagnostics)
    if m is not None:
        line_no = int(m.group("line"))
        col_no = int(m.group("col")) if m.group("col") is not None else None

    write_debug_artifact(debug_path, text, logger=logger)
    for row in diagnostics.strip().splitlines():
        logger.error(f"gas-flattener:   terser: {row}")
    _log_context(logger, text, line_no)
    where: str = f" at line {line_no}" if line_no is not None else ""
    raise MinificationError(
        f"terser failed{where} (exit={result.returncode})",
        debug_path=debug_path,
        line=line_no,
        column=col_no,
        diagnostics=diagnostics,
    )


def render_banner(metadata: ProjectMetadata) -> str:
    """Render the comment header of an artifact.

    Each line appears only when its field is present; no fields means no
    banner at all.

    :param metadata: Project metadata.
    :returns: Banner text ending in a newline, or ``""``.
    """

    lines: list[str] = []
    if metadata.name is not None:
        title: str = metadata.name
        if metadata.version is not None:
            title += f" v{metadata.version}"
        lines.append(title)
    elif metadata.version is not None:
        lines.append(f"v{metadata.version}")
    if metadata.description is not None:
        lines.append(metadata.description)
    if metadata.author is not None:
        lines.append(f"@author {metadata.author}")
    if metadata.repository is not None:
        lines.append(f"@see {metadata.repository}")
    if metadata.license is not None:
        lines.append(f"@license {metadata.license}")

    if len(lines) == 0:
        return ""
    body: str = "".join(f" * {line.replace('*/', '* /')}\n" for line in lines)
    return f"/**\n{body} */\n"


def write_artifact(path: pathlib.Path, text: str, *, banner: str) -> None:
    """Write the final artifact with its banner."""

    path.parent.mkdir(parents=True, exist_ok=True)
    content: str = text if text.endswith("\n") else text + "\n"
    path.write_text(banner + content, encoding="utf-8")
