"""Command line interface for gas-flattener."""

import argparse
import logging
import pathlib
import sys

from gas_flattener import __version__
from gas_flattener.builder import build_project
from gas_flattener.config import (
    DEFAULT_ESBUILD_COMMAND,
    DEFAULT_FRONTEND_COMMAND,
    DEFAULT_TERSER_COMMAND,
    BuildConfig,
    ConfigError,
    resolve_build_config,
)
from gas_flattener.errors import BuildError
from gas_flattener.log import LOGGER_NAME


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the gas-flattener logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="gas-flattener",
        description="Flatten a tree of ES modules into one script with no import/export syntax.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build the frontend and the flattened backend script.",
    )
    p_build.add_argument(
        "--project-root",
        type=pathlib.Path,
        default=pathlib.Path("."),
        help="Directory relative paths are resolved against (default: current directory).",
    )
    p_build.add_argument(
        "--src",
        default="src/backend",
        help="Backend module root (default: src/backend).",
    )
    p_build.add_argument(
        "-o",
        "--out-dir",
        default="dist",
        help="Output directory; it is deleted and recreated on every run (default: dist).",
    )
    p_build.add_argument(
        "--out-file",
        default="Code.js",
        help="Artifact file name in concatenated mode (default: Code.js).",
    )
    p_build.add_argument(
        "--manifest",
        default="src/appsscript.json",
        help="Manifest copied into the output directory if present (default: src/appsscript.json).",
    )
    p_build.add_argument(
        "--package-json",
        default="package.json",
        help="Project metadata used for the banner (default: package.json).",
    )
    p_build.add_argument(
        "--priority",
        action="append",
        default=None,
        metavar="RELPATH",
        help=(
            "Module path (relative to --src) pinned to the front of the script. "
            "Repeat to pin several, in order. Default: config.js, utils/logger.js."
        ),
    )
    p_build.add_argument(
        "--no-concatenate",
        action="store_true",
        help="Write one flattened file per module instead of a single script.",
    )
    p_build.add_argument(
        "--no-minify",
        action="store_true",
        help="Skip terser (the script is still validated).",
    )
    p_build.add_argument(
        "--no-frontend",
        action="store_true",
        help="Skip the frontend build.",
    )
    p_build.add_argument(
        "--no-backend",
        action="store_true",
        help="Skip the backend build.",
    )
    p_build.add_argument(
        "--esbuild",
        default=DEFAULT_ESBUILD_COMMAND,
        help=f"Command used to run esbuild (default: {DEFAULT_ESBUILD_COMMAND!r}).",
    )
    p_build.add_argument(
        "--terser",
        default=DEFAULT_TERSER_COMMAND,
        help=f"Command used to run terser (default: {DEFAULT_TERSER_COMMAND!r}).",
    )
    p_build.add_argument(
        "--frontend-command",
        default=DEFAULT_FRONTEND_COMMAND,
        help=f"Frontend build command (default: {DEFAULT_FRONTEND_COMMAND!r}).",
    )
    p_build.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Bundle up to N imports of a module concurrently (default: 1).",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the gas-flattener CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code: 0 on success, 1 on any build failure.
    """

    parser: argparse.ArgumentParser = _build_parser()
    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        try:
            config: BuildConfig = resolve_build_config(
                project_root=ns.project_root,
                backend_root=ns.src,
                out_dir=ns.out_dir,
                manifest=ns.manifest,
                package_json=ns.package_json,
                priority_order=ns.priority,
                out_file=ns.out_file,
                concatenate=not ns.no_concatenate,
                minify=not ns.no_minify,
                frontend=not ns.no_frontend,
                backend=not ns.no_backend,
                esbuild_command=ns.esbuild,
                terser_command=ns.terser,
                frontend_command=ns.frontend_command,
                jobs=ns.jobs,
            )
            build_project(config, logger=logger)
        except ConfigError as e:
            logger.error(f"gas-flattener: {e}")
            return 1
        except BuildError as e:
            logger.error(f"gas-flattener: build failed: {e}")
            if e.__cause__ is not None and logger.isEnabledFor(logging.DEBUG) is True:
                logger.debug(f"gas-flattener: caused by {type(e.__cause__).__name__}: {e.__cause__}")
            return 1
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
