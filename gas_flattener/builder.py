"""Build orchestration.

This module runs the whole flattening build:

- It clears the output directory so nothing from an aborted run survives.
- It optionally runs the frontend build (an external bundler subprocess).
- It collects and orders the backend modules, inlines their imports, strips
  ``export`` keywords and concatenates them into one script.
- It extracts the protected top-level names, validates and minifies the
  script, and writes it with a banner.
- It copies the host manifest next to the artifact.

Stages raise :class:`~gas_flattener.errors.BuildError` subclasses; none of
them exit the process.
"""

from dataclasses import dataclass
import logging
import pathlib
import shutil
import time

from gas_flattener.bundler import ImportBundler
from gas_flattener.config import BuildConfig, ProjectMetadata, load_project_metadata
from gas_flattener.errors import BuildError, FrontendBuildError, SourceProcessingError
from gas_flattener.flatten import concatenate, extract_protected_names, find_module_syntax, strip_exports
from gas_flattener.imports import inline_imports
from gas_flattener.log import get_logger, success
from gas_flattener.minify import minify_script, render_banner, validate_script, write_artifact
from gas_flattener.sources import ProcessedFile, SourceFile, collect_sources, order_sources
from gas_flattener.tools import ToolResult, ToolRunner, run_tool

PRE_MINIFY_DEBUG_NAME: str = "debug.pre-minify.js"
MINIFY_FAILED_DEBUG_NAME: str = "debug.minify-failed.js"


@dataclass(frozen=True, slots=True)
class BuildReport:
    """Summary of a successful build.

    :ivar artifacts: Files written to the output directory.
    :ivar files_processed: Number of backend modules flattened.
    :ivar imports_bundled: Number of bundler invocations.
    :ivar protected_names: Names kept unrenamed (concatenated mode).
    :ivar elapsed: Wall-clock seconds.
    """

    artifacts: tuple[pathlib.Path, ...]
    files_processed: int
    imports_bundled: int
    protected_names: frozenset[str]
    elapsed: float


@dataclass(frozen=True, slots=True)
class BackendResult:
    artifacts: tuple[pathlib.Path, ...]
    files_processed: int
    imports_bundled: int
    protected_names: frozenset[str]


def build_project(
    config: BuildConfig,
    *,
    logger: logging.Logger | None = None,
    runner: ToolRunner | None = None,
) -> BuildReport:
    """Run a full build.

    :param config: Resolved build configuration.
    :param logger: Optional logger for progress output.
    :param runner: Tool runner override (tests).
    :returns: Build summary.
    :raises BuildError: If any stage fails.
    """

    logger = get_logger(logger)
    runner = runner if runner is not None else run_tool

    t0: float = time.perf_counter()
    logger.info(f"gas-flattener: project={config.project_root}")
    logger.info(f"gas-flattener: output={config.out_dir}")

    clean_out_dir(config.out_dir, logger=logger)

    if config.frontend is True:
        build_frontend(config, runner=runner, logger=logger)

    backend: BackendResult = BackendResult(artifacts=(), files_processed=0, imports_bundled=0, protected_names=frozenset())
    if config.backend is True:
        metadata: ProjectMetadata = load_project_metadata(config.package_json_path, logger=logger)
        backend = build_backend(config, metadata=metadata, runner=runner, logger=logger)

    copy_manifest(config, logger=logger)

    t1: float = time.perf_counter()
    success(logger, f"gas-flattener: done in {t1 - t0:.2f}s")
    return BuildReport(
        artifacts=backend.artifacts,
        files_processed=backend.files_processed,
        imports_bundled=backend.imports_bundled,
        protected_names=backend.protected_names,
        elapsed=t1 - t0,
    )


def clean_out_dir(out_dir: pathlib.Path, *, logger: logging.Logger) -> None:
    """Delete and recreate the output directory."""

    if out_dir.exists() is True:
        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"gas-flattener: removing {out_dir}")
        if out_dir.is_dir() is True:
            shutil.rmtree(out_dir)
        else:
            out_dir.unlink()
    out_dir.mkdir(parents=True, exist_ok=True)


def build_frontend(config: BuildConfig, *, runner: ToolRunner, logger: logging.Logger) -> None:
    """Run the frontend build command with inherited stdio.

    :raises FrontendBuildError: If the command exits non-zero.
    """

    logger.info("gas-flattener: building frontend")
    t0: float = time.perf_counter()
    result: ToolResult = runner(list(config.tools.frontend), cwd=config.project_root, capture=False, logger=logger)
    if result.ok is False:
        raise FrontendBuildError(
            f"Frontend build failed (exit={result.returncode}): {' '.join(config.tools.frontend)}",
            returncode=result.returncode,
        )
    t1: float = time.perf_counter()
    success(logger, f"gas-flattener: frontend built in {t1 - t0:.2f}s")


def process_source(source: SourceFile, *, bundler: ImportBundler, jobs: int, logger: logging.Logger) -> ProcessedFile:
    """Inline imports and strip exports of one module.

    :raises SourceProcessingError: If the module cannot be flattened; the
        underlying error is chained.
    """

    try:
        inlined: str = inline_imports(source, bundler=bundler, jobs=jobs, logger=logger)
    except BuildError as e:
        raise SourceProcessingError(f"{source.rel_path}: {e}", rel_path=source.rel_path) from e

    flat: str = strip_exports(inlined)
    leftovers: list[tuple[str, int]] = find_module_syntax(flat)
    if len(leftovers) > 0:
        keyword, line = leftovers[0]
        raise SourceProcessingError(
            f"{source.rel_path}:{line}: {keyword!r} statement cannot be flattened "
            "(only exported function/const/let/var/class declarations are supported)",
            rel_path=source.rel_path,
        )
    return ProcessedFile(rel_path=source.rel_path, text=flat)


def process_sources(
    config: BuildConfig,
    *,
    bundler: ImportBundler,
    logger: logging.Logger,
) -> list[ProcessedFile]:
    """Collect, order and flatten every backend module.

    :returns: Processed files in concatenation order (empty if the backend
        root is missing or holds no sources).
    """

    if config.backend_root.is_dir() is False:
        logger.warning(f"gas-flattener: backend root not found, skipping: {config.backend_root}")
        return []

    sources: list[SourceFile] = order_sources(
        collect_sources(config.backend_root, suffix=config.source_suffix),
        config.priority_order,
    )
    if len(sources) == 0:
        logger.warning(f"gas-flattener: no *{config.source_suffix} files under {config.backend_root}")
        return []

    logger.info(f"gas-flattener: flattening {len(sources)} modules")
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"gas-flattener: order={[s.rel_path for s in sources]}")

    processed: list[ProcessedFile] = []
    for source in sources:
        logger.info(f"gas-flattener: processing {source.rel_path}")
        try:
            processed.append(process_source(source, bundler=bundler, jobs=config.jobs, logger=logger))
        except SourceProcessingError:
            logger.error(f"gas-flattener: failed to process {source.rel_path}")
            raise
    return processed


def build_backend(
    config: BuildConfig,
    *,
    metadata: ProjectMetadata,
    runner: ToolRunner,
    logger: logging.Logger,
) -> BackendResult:
    """Flatten the backend tree into the output directory.

    :returns: Artifacts and counters.
    :raises BuildError: If any module fails, or validation/minification fails.
    """

    logger.info("gas-flattener: building backend")
    t0: float = time.perf_counter()

    bundler: ImportBundler = ImportBundler(config.tools, runner=runner, logger=logger)
    processed: list[ProcessedFile] = process_sources(config, bundler=bundler, logger=logger)
    if len(processed) == 0:
        return BackendResult(artifacts=(), files_processed=0, imports_bundled=0, protected_names=frozenset())

    banner: str = render_banner(metadata)
    artifacts: list[pathlib.Path] = []
    protected: frozenset[str] = frozenset()

    if config.concatenate is True:
        logger.info("gas-flattener: concatenating modules")
        blob: str = concatenate(processed)
        protected = extract_protected_names(blob)
        logger.info(f"gas-flattener: {len(protected)} protected top-level names")
        if logger.isEnabledFor(logging.DEBUG) is True:
            logger.debug(f"gas-flattener: protected={sorted(protected)}")
        out_path: pathlib.Path = config.out_dir / config.out_file
        final: str = finalize_script(
            blob,
            name=config.out_file,
            protected_names=protected,
            toplevel=True,
            config=config,
            pre_minify_debug=config.out_dir / PRE_MINIFY_DEBUG_NAME,
            minify_debug=config.out_dir / MINIFY_FAILED_DEBUG_NAME,
            runner=runner,
            logger=logger,
        )
        write_artifact(out_path, final, banner=banner)
        artifacts.append(out_path)
        success(logger, f"gas-flattener: wrote {out_path.name} ({out_path.stat().st_size} bytes)")
    else:
        for pf in processed:
            out_path = config.out_dir / pf.rel_path
            debug_stem: str = pf.rel_path.replace("/", "__")
            final = finalize_script(
                pf.text,
                name=pf.rel_path,
                protected_names=extract_protected_names(pf.text),
                toplevel=False,
                config=config,
                pre_minify_debug=config.out_dir / f"debug.pre-minify.{debug_stem}",
                minify_debug=config.out_dir / f"debug.minify-failed.{debug_stem}",
                runner=runner,
                logger=logger,
            )
            write_artifact(out_path, final, banner=banner)
            artifacts.append(out_path)
            logger.info(f"gas-flattener:   -> {pf.rel_path}")

    t1: float = time.perf_counter()
    success(logger, f"gas-flattener: backend built ({len(processed)} modules, {bundler.invocations} bundled imports) in {t1 - t0:.2f}s")
    return BackendResult(
        artifacts=tuple(artifacts),
        files_processed=len(processed),
        imports_bundled=bundler.invocations,
        protected_names=protected,
    )


def finalize_script(
    text: str,
    *,
    name: str,
    protected_names: frozenset[str],
    toplevel: bool,
    config: BuildConfig,
    pre_minify_debug: pathlib.Path,
    minify_debug: pathlib.Path,
    runner: ToolRunner,
    logger: logging.Logger,
) -> str:
    """Validate, then (optionally) minify one flattened script.

    A single concatenated script owns the whole global scope, so terser may
    rename and drop its unprotected top-level names. Per-file outputs share
    that scope with each other and are minified with ``toplevel`` off.

    :returns: Text to write (without banner).
    :raises SyntaxValidationError: If the script does not parse.
    :raises MinificationError: If terser fails.
    """

    logger.info(f"gas-flattener: validating {name}")
    validate_script(
        text,
        name=name,
        tools=config.tools,
        debug_path=pre_minify_debug,
        cwd=config.project_root,
        runner=runner,
        logger=logger,
    )
    if config.minify is False:
        return text

    logger.info(f"gas-flattener: minifying {name}")
    return minify_script(
        text,
        protected_names=protected_names,
        tools=config.tools,
        debug_path=minify_debug,
        toplevel=toplevel,
        cwd=config.project_root,
        runner=runner,
        logger=logger,
    )


def copy_manifest(config: BuildConfig, *, logger: logging.Logger) -> None:
    """Copy the host manifest into the output directory, if present."""

    if config.manifest_path.is_file() is False:
        logger.warning(f"gas-flattener: manifest not found: {config.manifest_path}")
        return
    shutil.copy2(config.manifest_path, config.out_dir / config.manifest_name)
    success(logger, f"gas-flattener: manifest copied ({config.manifest_name})")
