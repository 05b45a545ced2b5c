"""Export flattening, concatenation and protected-name extraction."""

import re

from gas_flattener.scanner import MaskedSource, mask_source, statement_keywords
from gas_flattener.sources import ProcessedFile

_IDENT: str = r"[A-Za-z_$][\w$]*"

_EXPORTED_DECLARATION_RE: re.Pattern[str] = re.compile(
    r"export\s+(?=(?:async\s+)?function\b|const\b|let\b|var\b|class\b)"
)

_FUNCTION_DECLARATION_RE: re.Pattern[str] = re.compile(
    rf"^[ \t]*(?:async[ \t]+)?function\b[ \t]*\*?[ \t]*(?P<name>{_IDENT})",
    re.M,
)
_CLASS_DECLARATION_RE: re.Pattern[str] = re.compile(rf"^[ \t]*class[ \t]+(?P<name>{_IDENT})", re.M)
_VARIABLE_DECLARATION_RE: re.Pattern[str] = re.compile(r"^[ \t]*(?:const|let|var)\b", re.M)
_DECLARATOR_NAME_RE: re.Pattern[str] = re.compile(rf"^\s*(?P<name>{_IDENT})")
_PATTERN_NAME_RE: re.Pattern[str] = re.compile(rf"(?:^|[{{\[,])\s*(?:\.\.\.)?\s*(?:{_IDENT}\s*:\s*)?(?P<name>{_IDENT})")

# A line ending in one of these continues the declaration on the next line.
_CONTINUATION_CHARS: str = ",=+-*/%&|^!?:<>.(["


def strip_exports(text: str) -> str:
    """Drop ``export`` in front of top-level declarations.

    ``export function``, ``export async function``, ``export const``,
    ``export let``, ``export var`` and ``export class`` lose the keyword and
    keep the declaration. Other export forms are left alone; see
    :func:`find_module_syntax`.

    :param text: Module source after import inlining.
    :returns: Source with declarations in plain script form.
    """

    src: MaskedSource = mask_source(text)
    out: list[str] = []
    cursor: int = 0
    for keyword, offset in statement_keywords(src, top_level_only=True):
        if keyword != "export":
            continue
        m = _EXPORTED_DECLARATION_RE.match(src.masked, offset)
        if m is None:
            continue
        out.append(text[cursor:offset])
        cursor = m.end()
    out.append(text[cursor:])
    return "".join(out)


def find_module_syntax(text: str) -> list[tuple[str, int]]:
    """Report top-level ``import``/``export`` statements left in ``text``.

    :param text: Flattened source.
    :returns: ``(keyword, line)`` pairs; empty when the text is plain script.
    """

    src: MaskedSource = mask_source(text)
    return [(keyword, src.line_of(offset)) for keyword, offset in statement_keywords(src, top_level_only=True)]


def origin_marker(rel_path: str) -> str:
    """Comment line naming the file a concatenated section came from."""

    return f"// --- {rel_path} ---"


def concatenate(files: list[ProcessedFile]) -> str:
    """Join processed files, in the given order, into one script.

    Each file is preceded by an :func:`origin_marker` line.

    :param files: Processed files in concatenation order.
    :returns: Concatenated script.
    """

    parts: list[str] = []
    for f in files:
        parts.append(f"\n{origin_marker(f.rel_path)}\n{f.text}\n")
    return "".join(parts)


def _split_declarators(masked: str, start: int) -> list[str]:
    """Split the declarator list of a ``const``/``let``/``var`` statement.

    ``start`` points just past the keyword. The list ends at a ``;`` or a
    closing bracket outside any nesting, or at a line break when the line
    cannot continue.
    """

    declarators: list[str] = []
    nesting: int = 0
    seg_start: int = start
    last_sig: str = ""
    i: int = start
    while i < len(masked):
        c: str = masked[i]
        if c in "([{":
            nesting += 1
        elif c in ")]}":
            if nesting == 0:
                break
            nesting -= 1
        elif nesting == 0:
            if c == ";":
                break
            if c == ",":
                declarators.append(masked[seg_start:i])
                seg_start = i + 1
            elif c == "\n" and last_sig != "" and last_sig not in _CONTINUATION_CHARS:
                break
        if c.isspace() is False:
            last_sig = c
        i += 1
    declarators.append(masked[seg_start:i])
    return declarators


def _pattern_end(text: str, start: int) -> int:
    depth: int = 0
    for i in range(start, len(text)):
        if text[i] in "{[":
            depth += 1
        elif text[i] in "}]":
            depth -= 1
            if depth == 0:
                return i + 1
    return len(text)


def _declarator_names(declarator: str) -> list[str]:
    target: str = declarator.lstrip()
    if target == "":
        return []
    if target[0] in "{[":
        pattern: str = target[: _pattern_end(target, 0)]
        return [pm.group("name") for pm in _PATTERN_NAME_RE.finditer(pattern)]
    m = _DECLARATOR_NAME_RE.match(target)
    return [m.group("name")] if m is not None else []


def extract_protected_names(text: str) -> frozenset[str]:
    """Collect names declared by top-level functions, classes and variables.

    These are the host's entry points (``doGet``, trigger handlers, ...)
    and must survive identifier mangling. Extraction is best-effort: a
    declaration has to start a line and sit outside every curly brace.
    Every declarator of ``const a = 1, b = 2`` counts, and destructuring
    patterns contribute each bound name. Over-collecting (a nested
    pattern's property key, say) only keeps an extra name unmangled.

    :param text: Flattened script.
    :returns: Immutable set of identifiers.
    """

    src: MaskedSource = mask_source(text)
    names: set[str] = set()

    for regex in (_FUNCTION_DECLARATION_RE, _CLASS_DECLARATION_RE):
        for m in regex.finditer(src.masked):
            if src.depth_at(m.start("name")) == 0:
                names.add(m.group("name"))

    for m in _VARIABLE_DECLARATION_RE.finditer(src.masked):
        if src.depth_at(m.start()) != 0:
            continue
        for declarator in _split_declarators(src.masked, m.end()):
            names.update(_declarator_names(declarator))

    return frozenset(names)
