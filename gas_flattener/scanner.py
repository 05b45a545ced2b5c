"""A small JavaScript lexer for targeted pattern matching.

Flattening does not parse JavaScript. It finds ``import`` statements,
``export`` keywords and top-level declarations with regular expressions, and
those expressions must not fire on text that merely looks like code inside a
string, comment, template literal or regex literal.

:func:`mask_source` produces a copy of the text with the same length in which
all such non-code characters are blanked out (newlines are kept, so line
numbers and offsets stay valid). Patterns run over the masked text and
offsets map straight back onto the original.

Quote characters of plain string literals survive masking, so a pattern can
still locate a string and read its value from the original text.
"""

from bisect import bisect_left
from dataclasses import dataclass
import re

_IDENT_TAIL_RE: re.Pattern[str] = re.compile(r"[A-Za-z_$][\w$]*$")

# Keywords after which a ``/`` starts a regex literal rather than a division.
_REGEX_KEYWORDS: frozenset[str] = frozenset(
    {
        "await",
        "case",
        "delete",
        "do",
        "else",
        "in",
        "instanceof",
        "new",
        "of",
        "return",
        "throw",
        "typeof",
        "void",
        "yield",
    }
)

_REGEX_PRECEDERS: str = "(,=:[!&|?{};+-*%<>~^"


@dataclass(frozen=True, slots=True)
class MaskedSource:
    """Original text plus its masked twin.

    :ivar original: Source text as given.
    :ivar masked: Same-length text with non-code characters blanked.
    """

    original: str
    masked: str
    brace_offsets: tuple[int, ...]
    brace_depths: tuple[int, ...]

    def depth_at(self, offset: int) -> int:
        """Curly-brace nesting depth just before ``offset``.

        Braces inside strings, comments, template literals and regex literals
        are not counted.
        """

        idx: int = bisect_left(self.brace_offsets, offset) - 1
        if idx < 0:
            return 0
        return self.brace_depths[idx]

    def line_of(self, offset: int) -> int:
        """1-based line number of ``offset``."""

        return self.original.count("\n", 0, offset) + 1


def _blank(chars: list[str], start: int, end: int) -> None:
    for k in range(start, end):
        if chars[k] != "\n" and chars[k] != "\r":
            chars[k] = " "


def _regex_allowed(text: str, last_sig: int) -> bool:
    """Decide whether a ``/`` after ``text[last_sig]`` opens a regex literal."""

    if last_sig < 0:
        return True
    c: str = text[last_sig]
    if c in _REGEX_PRECEDERS:
        return True
    if c.isalnum() or c in "_$":
        m = _IDENT_TAIL_RE.search(text, 0, last_sig + 1)
        return m is not None and m.group(0) in _REGEX_KEYWORDS
    return False


def _scan_regex(text: str, i: int) -> int | None:
    """Return the offset just past a regex literal body starting at ``i``.

    ``None`` means the slash did not open a well-formed regex on this line.
    """

    n: int = len(text)
    j: int = i + 1
    in_class: bool = False
    while j < n:
        c: str = text[j]
        if c == "\n":
            return None
        if c == "\\":
            j += 2
            continue
        if in_class is True:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
        elif c == "/":
            return j + 1
        j += 1
    return None


def mask_source(text: str) -> MaskedSource:
    """Blank out everything in ``text`` that is not code.

    :param text: JavaScript source.
    :returns: The masked source with a brace-depth index.
    """

    chars: list[str] = list(text)
    n: int = len(text)
    i: int = 0
    depth: int = 0
    # Brace depth at which each open ``${`` interpolation closes.
    interp_stack: list[int] = []
    in_template: bool = False
    last_sig: int = -1
    brace_offsets: list[int] = []
    brace_depths: list[int] = []

    while i < n:
        c: str = text[i]

        if in_template is True:
            if c == "\\":
                _blank(chars, i, min(i + 2, n))
                i += 2
                continue
            if c == "`":
                in_template = False
                if len(interp_stack) > 0:
                    _blank(chars, i, i + 1)
                last_sig = i
                i += 1
                continue
            if c == "$" and i + 1 < n and text[i + 1] == "{":
                _blank(chars, i, i + 2)
                interp_stack.append(depth)
                depth += 1
                in_template = False
                last_sig = i + 1
                i += 2
                continue
            _blank(chars, i, i + 1)
            i += 1
            continue

        masking: bool = len(interp_stack) > 0

        if c == '"' or c == "'":
            j: int = i + 1
            while j < n and text[j] != c and text[j] != "\n":
                j += 2 if text[j] == "\\" else 1
            end: int = min(j, n)
            _blank(chars, i + 1, end)
            if masking is True:
                _blank(chars, i, min(end + 1, n))
            last_sig = min(end, n - 1)
            i = end + 1
            continue

        if c == "`":
            if masking is True:
                _blank(chars, i, i + 1)
            in_template = True
            i += 1
            continue

        if c == "/" and i + 1 < n and text[i + 1] == "/":
            j = text.find("\n", i)
            if j < 0:
                j = n
            _blank(chars, i, j)
            i = j
            continue

        if c == "/" and i + 1 < n and text[i + 1] == "*":
            j = text.find("*/", i + 2)
            j = n if j < 0 else j + 2
            _blank(chars, i, j)
            i = j
            continue

        if c == "/" and _regex_allowed(text, last_sig) is True:
            j_end: int | None = _scan_regex(text, i)
            if j_end is not None:
                _blank(chars, i + 1, j_end - 1)
                if masking is True:
                    _blank(chars, i, j_end)
                last_sig = j_end - 1
                i = j_end
                continue

        if c == "{":
            depth += 1
            if masking is False:
                brace_offsets.append(i)
                brace_depths.append(depth)
        elif c == "}":
            if len(interp_stack) > 0 and depth - 1 == interp_stack[-1]:
                depth -= 1
                interp_stack.pop()
                _blank(chars, i, i + 1)
                in_template = True
                i += 1
                continue
            depth = max(depth - 1, 0)
            if masking is False:
                brace_offsets.append(i)
                brace_depths.append(depth)

        if c.isspace() is False:
            last_sig = i
        if masking is True:
            _blank(chars, i, i + 1)
        i += 1

    return MaskedSource(
        original=text,
        masked="".join(chars),
        brace_offsets=tuple(brace_offsets),
        brace_depths=tuple(brace_depths),
    )


_STATEMENT_KEYWORD_RE: re.Pattern[str] = re.compile(
    r"(?:^|(?<=[;{}]))[ \t]*(?P<kw>import|export)\b(?![ \t]*[(.:])",
    re.M,
)


def statement_keywords(src: MaskedSource, *, top_level_only: bool = False) -> list[tuple[str, int]]:
    """Locate ``import``/``export`` keywords that start a statement.

    Dynamic ``import(...)``, ``import.meta`` and object keys such as
    ``import: handler`` are not statements and are skipped.

    :param src: Masked source.
    :param top_level_only: Only report keywords outside any curly braces.
    :returns: ``(keyword, offset)`` pairs in source order.
    """

    found: list[tuple[str, int]] = []
    for m in _STATEMENT_KEYWORD_RE.finditer(src.masked):
        offset: int = m.start("kw")
        if top_level_only is True and src.depth_at(offset) != 0:
            continue
        found.append((m.group("kw"), offset))
    return found
