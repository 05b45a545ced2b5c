"""Import inlining.

Every ``import X from 'p'`` and ``import { a, b as c } from 'p'`` statement in
a module is replaced by a ``const`` declaration bound to a self-contained
expression produced by :class:`~gas_flattener.bundler.ImportBundler`.

All statements of a file are found in one scan before anything is rewritten.
The rewritten file is then assembled forward by copying the spans between
statements, which gives the same result as splicing replacements in from the
last statement backwards.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
import re

from gas_flattener.bundler import ImportBundler, ImportEntry
from gas_flattener.errors import UnsupportedImportError
from gas_flattener.scanner import MaskedSource, mask_source, statement_keywords
from gas_flattener.sources import SourceFile

_IDENT: str = r"[A-Za-z_$][\w$]*"

_DEFAULT_IMPORT_RE: re.Pattern[str] = re.compile(
    rf"import\s+(?P<default>{_IDENT})\s+from\s*(?P<q>['\"])(?P<path>[^'\"\n]*)(?P=q)[ \t]*;?"
)
_NAMED_IMPORT_RE: re.Pattern[str] = re.compile(
    r"import\s*\{(?P<named>[^{}]*)\}\s*from\s*(?P<q>['\"])(?P<path>[^'\"\n]*)(?P=q)[ \t]*;?"
)
_NAMED_ENTRY_RE: re.Pattern[str] = re.compile(rf"^(?P<imported>{_IDENT})(?:\s+as\s+(?P<local>{_IDENT}))?$")


@dataclass(frozen=True, slots=True)
class ImportDirective:
    """One import statement found in a module.

    :ivar import_path: Module specifier as written.
    :ivar is_default: ``True`` for ``import X from``, ``False`` for ``import {..} from``.
    :ivar default_name: Local binding of a default import.
    :ivar entries: Named bindings, in source order.
    :ivar start: Offset of the statement in the owning file.
    :ivar end: Offset just past the statement.
    :ivar line: 1-based line of the statement.
    """

    import_path: str
    is_default: bool
    default_name: str | None
    entries: tuple[ImportEntry, ...]
    start: int
    end: int
    line: int

    @property
    def local_names(self) -> tuple[str, ...]:
        """Names this statement binds in the importing module."""

        if self.is_default is True:
            return (self.default_name,) if self.default_name is not None else ()
        return tuple(e.local for e in self.entries)


def parse_named_entries(text: str, *, rel_path: str, line: int) -> tuple[ImportEntry, ...]:
    """Parse the inside of ``{ ... }`` of a named import.

    :param text: Brace contents (comments already masked).
    :param rel_path: Owning file, for error messages.
    :param line: Statement line, for error messages.
    :returns: Entries in source order.
    :raises UnsupportedImportError: On malformed or duplicate bindings.
    """

    entries: list[ImportEntry] = []
    seen: set[str] = set()
    for raw in text.split(","):
        part: str = " ".join(raw.split())
        if part == "":
            continue
        m = _NAMED_ENTRY_RE.match(part)
        if m is None:
            raise UnsupportedImportError(f"{rel_path}:{line}: cannot parse import binding {part!r}")
        imported: str = m.group("imported")
        local: str = m.group("local") or imported
        if local == "default":
            raise UnsupportedImportError(f"{rel_path}:{line}: 'default' cannot be bound as a local name")
        if local in seen:
            raise UnsupportedImportError(f"{rel_path}:{line}: duplicate import binding {local!r}")
        seen.add(local)
        entries.append(ImportEntry(imported=imported, local=local))
    return tuple(entries)


def scan_imports(text: str, *, rel_path: str = "<source>", masked: MaskedSource | None = None) -> list[ImportDirective]:
    """Find every import statement in ``text``.

    ``import`` inside strings, comments, template literals and regex literals
    is ignored, as are dynamic ``import(...)`` calls, ``import.meta`` and
    anything nested in curly braces (import statements are top-level only).

    :param text: Module source.
    :param rel_path: Owning file, for error messages.
    :param masked: Pre-computed mask of ``text``, if available.
    :returns: Directives in source order.
    :raises UnsupportedImportError: For side-effect-only, namespace, mixed or
        otherwise unrecognised import statements.
    """

    src: MaskedSource = masked if masked is not None else mask_source(text)
    found: list[ImportDirective] = []

    for keyword, start in statement_keywords(src, top_level_only=True):
        if keyword != "import":
            continue
        line: int = src.line_of(start)

        m = _DEFAULT_IMPORT_RE.match(src.masked, start)
        if m is not None:
            found.append(
                ImportDirective(
                    import_path=text[m.start("path") : m.end("path")],
                    is_default=True,
                    default_name=m.group("default"),
                    entries=(),
                    start=start,
                    end=m.end(),
                    line=line,
                )
            )
            continue

        m = _NAMED_IMPORT_RE.match(src.masked, start)
        if m is not None:
            found.append(
                ImportDirective(
                    import_path=text[m.start("path") : m.end("path")],
                    is_default=False,
                    default_name=None,
                    entries=parse_named_entries(m.group("named"), rel_path=rel_path, line=line),
                    start=start,
                    end=m.end(),
                    line=line,
                )
            )
            continue

        snippet: str = text[start:].split("\n", 1)[0].strip()
        raise UnsupportedImportError(
            f"{rel_path}:{line}: unsupported import statement {snippet!r} "
            "(only 'import X from' and 'import { a, b as c } from' can be inlined)"
        )

    return found


def render_replacement(directive: ImportDirective, expression: str) -> str:
    """Render the declaration that replaces an import statement.

    :param directive: The import being replaced.
    :param expression: Bundled expression evaluating to the export mapping.
    :returns: A single ``const`` declaration.
    """

    if directive.is_default is True:
        return (
            f"const {directive.default_name} = "
            f'(function (r) {{ return "default" in r ? r.default : r; }})({expression});'
        )
    names: str = ", ".join(e.local for e in directive.entries)
    if names == "":
        return f"const {{}} = {expression};"
    return f"const {{ {names} }} = {expression};"


def inline_imports(
    source: SourceFile,
    *,
    bundler: ImportBundler,
    jobs: int = 1,
    logger: logging.Logger | None = None,
) -> str:
    """Replace every import statement of ``source`` with inlined code.

    With ``jobs > 1`` independent imports are bundled concurrently; the
    replacements are still applied in statement order.

    :param source: Module to rewrite.
    :param bundler: Bundler used to resolve each import.
    :param jobs: Maximum concurrent bundler invocations.
    :param logger: Optional logger for progress output.
    :returns: Rewritten module text.
    :raises UnsupportedImportError: For statements that cannot be inlined.
    :raises ResolutionError: If an import cannot be bundled.
    """

    if logger is None:
        logger = logging.getLogger("gas_flattener")

    directives: list[ImportDirective] = scan_imports(source.text, rel_path=source.rel_path)
    if len(directives) == 0:
        return source.text

    working_dir = source.path.parent

    def resolve(d: ImportDirective) -> str:
        logger.info(f"gas-flattener:   -> inlining {d.import_path} ({source.rel_path}:{d.line})")
        return bundler.bundle(
            d.import_path,
            d.entries,
            is_default=d.is_default,
            working_dir=working_dir,
        )

    expressions: list[str]
    if jobs > 1 and len(directives) > 1:
        with ThreadPoolExecutor(max_workers=min(jobs, len(directives))) as pool:
            expressions = list(pool.map(resolve, directives))
    else:
        expressions = [resolve(d) for d in directives]

    out: list[str] = []
    cursor: int = 0
    for d, expression in zip(directives, expressions):
        out.append(source.text[cursor : d.start])
        out.append(render_replacement(d, expression))
        cursor = d.end
    out.append(source.text[cursor:])
    return "".join(out)
