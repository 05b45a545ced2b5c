"""Import bundling.

An import is turned into a single JavaScript expression in four steps:

1. Synthesize a one-line entry module that only re-exports the requested
   names from the import path.
2. Bundle that entry with esbuild (bundling, tree shaking, minification, no
   legal comments), resolving the import path from the importing file's
   directory. The output has no remaining imports and ends in exactly one
   ``export`` statement.
3. Split the output into its body and that trailing export statement, and
   parse the statement into an :class:`ExportShape`.
4. Render ``(() => { <body>; return { <exported>: <local>, ... }; })()``.
"""

from concurrent.futures import Future
from dataclasses import dataclass
import json
import logging
import pathlib
import re
import threading

from gas_flattener.config import ToolCommands
from gas_flattener.errors import ResolutionError
from gas_flattener.scanner import MaskedSource, mask_source, statement_keywords
from gas_flattener.tools import ToolResult, ToolRunner, run_tool

VIRTUAL_ENTRY_NAME: str = "virtual-entry.js"

ESBUILD_BUNDLE_ARGS: tuple[str, ...] = (
    "--bundle",
    "--minify",
    "--tree-shaking=true",
    "--legal-comments=none",
    "--charset=utf8",
    "--format=esm",
    "--target=esnext",
    "--loader=js",
    f"--sourcefile={VIRTUAL_ENTRY_NAME}",
    "--log-level=error",
)

_IDENT: str = r"[A-Za-z_$][\w$]*"
_TRAILING_TERMINATORS_RE: re.Pattern[str] = re.compile(r"[;\s]+$")
_NAMED_TAIL_RE: re.Pattern[str] = re.compile(r"^export\s*\{(?P<names>[^{}]*)\}$")
_DEFAULT_TAIL_RE: re.Pattern[str] = re.compile(r"^export\s+default\b\s*(?P<value>[\s\S]+)$")
_TAIL_ENTRY_RE: re.Pattern[str] = re.compile(rf"^(?P<local>{_IDENT})(?:\s+as\s+(?P<exported>{_IDENT}))?$")


@dataclass(frozen=True, slots=True)
class ImportEntry:
    """One named binding of an import statement.

    :ivar imported: Name exported by the dependency.
    :ivar local: Name bound in the importing module.
    """

    imported: str
    local: str

    def render(self) -> str:
        if self.imported == self.local:
            return self.local
        return f"{self.imported} as {self.local}"


@dataclass(frozen=True, slots=True)
class ExportEntry:
    """One binding of a bundled module's trailing export list.

    :ivar local: Name inside the bundled body.
    :ivar exported: Name the binding is exported as.
    """

    local: str
    exported: str


@dataclass(frozen=True, slots=True)
class ExportShape:
    """What a bundled module exports.

    :ivar kind: ``empty`` (no export statement), ``default``
        (``export default <value>``) or ``named`` (``export { ... }``).
    :ivar entries: Export list for ``named``.
    :ivar value: Exported expression for ``default``.
    """

    kind: str
    entries: tuple[ExportEntry, ...] = ()
    value: str | None = None

    def render_object(self) -> str:
        """Render the object literal mapping export names to values."""

        if self.kind == "default":
            return f"{{ default: {self.value} }}"
        if self.kind == "named" and len(self.entries) > 0:
            props: str = ", ".join(f"{e.exported}: {e.local}" for e in self.entries)
            return f"{{ {props} }}"
        return "{}"


def synthesize_entry(import_path: str, entries: tuple[ImportEntry, ...], *, is_default: bool) -> str:
    """Build the re-export module fed to the bundler.

    Named entries are re-exported under their local names, so the keys of
    the resulting object are exactly the names the importing module binds.

    :param import_path: Module specifier.
    :param entries: Named bindings (ignored for default imports).
    :param is_default: Re-export the default export instead.
    :returns: Entry module source.
    """

    specifier: str = json.dumps(import_path, ensure_ascii=False)
    if is_default is True:
        return f"export {{ default }} from {specifier};\n"
    names: str = ", ".join(e.render() for e in entries)
    return f"export {{ {names} }} from {specifier};\n"


def split_export_tail(code: str) -> tuple[str, str | None]:
    """Split bundler output into body and trailing export statement.

    Trailing semicolons and whitespace are dropped first. The tail is the
    last top-level ``export`` statement; ``None`` means there is none.

    :param code: Bundler output.
    :returns: ``(body, tail)``.
    """

    trimmed: str = _TRAILING_TERMINATORS_RE.sub("", code.strip())
    src: MaskedSource = mask_source(trimmed)
    exports: list[int] = [
        offset for keyword, offset in statement_keywords(src, top_level_only=True) if keyword == "export"
    ]
    if len(exports) == 0:
        return trimmed, None
    last: int = exports[-1]
    return trimmed[0:last].strip(), trimmed[last:].strip()


def parse_export_tail(tail: str, *, import_path: str, working_dir: pathlib.Path) -> ExportShape:
    """Parse a trailing export statement into an :class:`ExportShape`.

    :param tail: Statement text, starting at ``export``.
    :param import_path: Import being bundled, for error context.
    :param working_dir: Resolution directory, for error context.
    :returns: Parsed shape.
    :raises ResolutionError: If the statement is not a recognised form.
    """

    m = _NAMED_TAIL_RE.match(tail)
    if m is not None:
        entries: list[ExportEntry] = []
        for raw in m.group("names").split(","):
            part: str = " ".join(raw.split())
            if part == "":
                continue
            em = _TAIL_ENTRY_RE.match(part)
            if em is None:
                raise ResolutionError(
                    f"Unrecognised export binding {part!r} in bundled output of {import_path!r}",
                    import_path=import_path,
                    working_dir=working_dir,
                    diagnostics=tail,
                )
            local: str = em.group("local")
            entries.append(ExportEntry(local=local, exported=em.group("exported") or local))
        return ExportShape(kind="named", entries=tuple(entries))

    m = _DEFAULT_TAIL_RE.match(tail)
    if m is not None:
        return ExportShape(kind="default", value=m.group("value").strip())

    raise ResolutionError(
        f"Unrecognised export statement in bundled output of {import_path!r}",
        import_path=import_path,
        working_dir=working_dir,
        diagnostics=tail,
    )


def render_expression(body: str, shape: ExportShape) -> str:
    """Render the immediately-invoked expression for a bundled import.

    :param body: Helper code that precedes the export statement.
    :param shape: Parsed exports (``empty`` yields ``{}``).
    :returns: A self-contained JavaScript expression.
    """

    body = body.strip()
    obj: str = shape.render_object()
    if body == "":
        return f"(() => {{ return {obj}; }})()"
    separator: str = "" if body.endswith(";") else ";"
    return f"(() => {{ {body}{separator} return {obj}; }})()"


def build_expression(code: str, *, import_path: str, working_dir: pathlib.Path) -> str:
    """Turn raw bundler output into an import expression.

    :param code: esbuild output for a synthetic entry module.
    :param import_path: Import being bundled, for error context.
    :param working_dir: Resolution directory, for error context.
    :returns: Expression text.
    :raises ResolutionError: If the output still contains module syntax or an
        unrecognised export statement.
    """

    body, tail = split_export_tail(code)

    residual: list[tuple[str, int]] = statement_keywords(mask_source(body), top_level_only=True)
    if len(residual) > 0:
        keyword, offset = residual[0]
        raise ResolutionError(
            f"Bundled output of {import_path!r} still contains an {keyword!r} statement",
            import_path=import_path,
            working_dir=working_dir,
            diagnostics=body[offset : offset + 120],
        )

    shape: ExportShape
    if tail is None:
        shape = ExportShape(kind="empty")
    else:
        shape = parse_export_tail(tail, import_path=import_path, working_dir=working_dir)
    return render_expression(body, shape)


class ImportBundler:
    """Resolves imports into expressions through esbuild.

    Results are memoized for the lifetime of the instance (one build), keyed
    by every input that affects the output. The memo holds one future per
    key, so worker threads asking for the same import while it is being
    bundled wait for that result instead of running esbuild again.
    """

    def __init__(
        self,
        tools: ToolCommands,
        *,
        runner: ToolRunner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._tools: ToolCommands = tools
        self._runner: ToolRunner = runner if runner is not None else run_tool
        self._logger: logging.Logger = logger if logger is not None else logging.getLogger("gas_flattener")
        self._memo: dict[tuple[str, str, tuple[ImportEntry, ...], bool], Future[str]] = {}
        self._lock: threading.Lock = threading.Lock()
        self.invocations: int = 0

    def bundle(
        self,
        import_path: str,
        entries: tuple[ImportEntry, ...] | None,
        *,
        is_default: bool,
        working_dir: pathlib.Path,
    ) -> str:
        """Bundle one import into an expression.

        :param import_path: Module specifier as written.
        :param entries: Named bindings; ``None`` or empty for default imports.
        :param is_default: Bundle the default export.
        :param working_dir: Directory the specifier is resolved from.
        :returns: Expression evaluating to the export mapping.
        :raises ResolutionError: If esbuild fails or its output is unusable.
        """

        names: tuple[ImportEntry, ...] = () if is_default is True or entries is None else tuple(entries)
        resolve_dir: pathlib.Path = working_dir.resolve()
        key: tuple[str, str, tuple[ImportEntry, ...], bool] = (import_path, str(resolve_dir), names, is_default)

        with self._lock:
            pending: Future[str] | None = self._memo.get(key)
            if pending is None:
                owned: Future[str] = Future()
                self._memo[key] = owned
                self.invocations += 1

        if pending is not None:
            if self._logger.isEnabledFor(logging.DEBUG) is True:
                self._logger.debug(f"gas-flattener: reusing bundled {import_path} from {resolve_dir}")
            return pending.result()

        try:
            expression: str = self._run_esbuild(import_path, names, is_default=is_default, resolve_dir=resolve_dir)
        except Exception as e:
            owned.set_exception(e)
            raise
        owned.set_result(expression)
        return expression

    def _run_esbuild(
        self,
        import_path: str,
        names: tuple[ImportEntry, ...],
        *,
        is_default: bool,
        resolve_dir: pathlib.Path,
    ) -> str:
        entry: str = synthesize_entry(import_path, names, is_default=is_default)
        cmd: list[str] = [*self._tools.esbuild, *ESBUILD_BUNDLE_ARGS]
        result: ToolResult = self._runner(cmd, stdin_text=entry, cwd=resolve_dir, logger=self._logger)
        if result.ok is False:
            raise ResolutionError(
                f"Could not bundle import {import_path!r} from {resolve_dir} (esbuild exit={result.returncode})",
                import_path=import_path,
                working_dir=resolve_dir,
                diagnostics=result.stderr or result.stdout,
            )
        return build_expression(result.stdout, import_path=import_path, working_dir=resolve_dir)
