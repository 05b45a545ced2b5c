"""Build configuration helpers.

This module turns loosely-typed command line values into the immutable
:class:`BuildConfig` threaded through every stage, and reads the project
metadata descriptor (``package.json``) used for the artifact banner.
"""

from dataclasses import dataclass
import json
import logging
import pathlib
import shlex


class ConfigError(ValueError):
    """Raised when build options cannot be resolved into a usable config."""


DEFAULT_PRIORITY_ORDER: tuple[str, ...] = ("config.js", "utils/logger.js")

DEFAULT_ESBUILD_COMMAND: str = "npx --no-install esbuild"
DEFAULT_TERSER_COMMAND: str = "npx --no-install terser"
DEFAULT_FRONTEND_COMMAND: str = "npx vite build"


@dataclass(frozen=True, slots=True)
class ToolCommands:
    """Argument vectors used to launch external tools.

    :ivar esbuild: Command prefix for esbuild.
    :ivar terser: Command prefix for terser.
    :ivar frontend: Full command for the frontend build.
    """

    esbuild: tuple[str, ...]
    terser: tuple[str, ...]
    frontend: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ProjectMetadata:
    """Fields of the project descriptor rendered into the banner.

    Every field is optional; absent fields produce no banner line.
    """

    name: str | None = None
    version: str | None = None
    description: str | None = None
    author: str | None = None
    repository: str | None = None
    license: str | None = None


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """Resolved build configuration.

    :ivar project_root: Directory the relative defaults are resolved against.
    :ivar backend_root: Root of the module tree to flatten.
    :ivar out_dir: Output directory, recreated empty on every run.
    :ivar manifest_path: Manifest copied verbatim into ``out_dir`` if present.
    :ivar package_json_path: Project metadata descriptor.
    :ivar priority_order: Relative paths pinned first in the concatenation.
    :ivar out_file: Artifact name in concatenated mode.
    :ivar concatenate: Write one artifact instead of one file per source.
    :ivar minify: Run the external minifier after validation.
    :ivar frontend: Run the frontend build subprocess.
    :ivar backend: Run the flattening pipeline.
    :ivar tools: External tool commands.
    :ivar jobs: Concurrent bundler invocations per file.
    :ivar source_suffix: Extension of collected source files.
    """

    project_root: pathlib.Path
    backend_root: pathlib.Path
    out_dir: pathlib.Path
    manifest_path: pathlib.Path
    package_json_path: pathlib.Path
    priority_order: tuple[str, ...]
    out_file: str
    concatenate: bool
    minify: bool
    frontend: bool
    backend: bool
    tools: ToolCommands
    jobs: int = 1
    source_suffix: str = ".js"

    @property
    def manifest_name(self) -> str:
        """Name of the manifest inside the output directory."""

        return self.manifest_path.name


def parse_command(text: str, *, option: str) -> tuple[str, ...]:
    """Split a shell-style command string into an argument vector.

    :param text: Command string (e.g. ``npx --no-install esbuild``).
    :param option: Option name, used in error messages.
    :returns: Argument vector.
    :raises ConfigError: If the string is empty or cannot be split.
    """

    try:
        argv: list[str] = shlex.split(text)
    except ValueError as e:
        raise ConfigError(f"Invalid {option} {text!r}: {e}") from e
    if len(argv) == 0:
        raise ConfigError(f"Invalid {option}: command must not be empty.")
    return tuple(argv)


def resolve_build_config(
    *,
    project_root: pathlib.Path,
    backend_root: str,
    out_dir: str,
    manifest: str,
    package_json: str,
    priority_order: list[str] | None,
    out_file: str,
    concatenate: bool,
    minify: bool,
    frontend: bool,
    backend: bool,
    esbuild_command: str,
    terser_command: str,
    frontend_command: str,
    jobs: int,
) -> BuildConfig:
    """Resolve user-supplied options into a :class:`~BuildConfig`.

    Relative paths are resolved against ``project_root``.

    :returns: Resolved build config.
    :raises ConfigError: If the options are inconsistent or unsafe.
    """

    root: pathlib.Path = project_root.resolve()
    backend_path: pathlib.Path = _resolve_path(root, backend_root)
    out_path: pathlib.Path = _resolve_path(root, out_dir)

    if jobs < 1:
        raise ConfigError(f"Invalid --jobs={jobs}; expected 1 or more.")
    if out_file == "" or pathlib.PurePath(out_file).name != out_file:
        raise ConfigError(f"Invalid --out-file {out_file!r}; expected a bare file name.")

    # The output directory is wiped at the start of every run.
    if out_path == root or root.is_relative_to(out_path) is True:
        raise ConfigError(f"Refusing to use {out_path} as output directory: it contains the project root.")
    if backend_path.is_relative_to(out_path) is True:
        raise ConfigError(f"Refusing to use {out_path} as output directory: it contains the backend root.")

    order: tuple[str, ...]
    if priority_order is None:
        order = DEFAULT_PRIORITY_ORDER
    else:
        order = tuple(priority_order)

    tools: ToolCommands = ToolCommands(
        esbuild=parse_command(esbuild_command, option="--esbuild"),
        terser=parse_command(terser_command, option="--terser"),
        frontend=parse_command(frontend_command, option="--frontend-command"),
    )

    return BuildConfig(
        project_root=root,
        backend_root=backend_path,
        out_dir=out_path,
        manifest_path=_resolve_path(root, manifest),
        package_json_path=_resolve_path(root, package_json),
        priority_order=order,
        out_file=out_file,
        concatenate=concatenate,
        minify=minify,
        frontend=frontend,
        backend=backend,
        tools=tools,
        jobs=jobs,
    )


def _resolve_path(root: pathlib.Path, value: str) -> pathlib.Path:
    """Resolve ``value`` against ``root`` unless it is already absolute.

    :param root: Base directory.
    :param value: User-supplied path.
    :returns: Absolute, normalized path.
    """

    p: pathlib.Path = pathlib.Path(value)
    if p.is_absolute() is False:
        p = root / p
    return p.resolve()


def load_project_metadata(path: pathlib.Path, *, logger: logging.Logger) -> ProjectMetadata:
    """Read banner fields from a ``package.json``-style descriptor.

    A missing or malformed descriptor degrades to empty metadata.

    :param path: Descriptor path.
    :param logger: Logger for warnings.
    :returns: Project metadata.
    """

    if path.is_file() is False:
        logger.warning(f"gas-flattener: project metadata not found: {path}")
        return ProjectMetadata()

    try:
        raw: object = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"gas-flattener: could not read project metadata {path}: {e}")
        return ProjectMetadata()

    if isinstance(raw, dict) is False:
        logger.warning(f"gas-flattener: project metadata is not a JSON object: {path}")
        return ProjectMetadata()

    return ProjectMetadata(
        name=_text_field(raw.get("name")),
        version=_text_field(raw.get("version")),
        description=_text_field(raw.get("description")),
        author=_person_field(raw.get("author")),
        repository=_repository_field(raw.get("repository")),
        license=_text_field(raw.get("license")),
    )


def _text_field(value: object) -> str | None:
    if isinstance(value, str) and value.strip() != "":
        return value.strip()
    return None


def _person_field(value: object) -> str | None:
    """Normalize npm's ``author`` field (string or ``{name, email, url}``)."""

    if isinstance(value, dict):
        name: str | None = _text_field(value.get("name"))
        email: str | None = _text_field(value.get("email"))
        if name is not None and email is not None:
            return f"{name} <{email}>"
        return name or email
    return _text_field(value)


def _repository_field(value: object) -> str | None:
    """Normalize npm's ``repository`` field (string or ``{type, url}``)."""

    if isinstance(value, dict):
        return _text_field(value.get("url"))
    return _text_field(value)
