"""Source discovery and deterministic ordering."""

from dataclasses import dataclass
import os
import pathlib
import posixpath

from gas_flattener.errors import SourceProcessingError


@dataclass(frozen=True, slots=True)
class SourceFile:
    """One discovered module, as read from disk.

    :ivar path: Absolute path.
    :ivar rel_path: Path relative to the backend root (POSIX separators).
    :ivar text: Raw source text (a leading BOM is dropped).
    """

    path: pathlib.Path
    rel_path: str
    text: str


@dataclass(frozen=True, slots=True)
class ProcessedFile:
    """A module after import inlining and export flattening.

    :ivar rel_path: Path relative to the backend root (POSIX separators).
    :ivar text: Transformed source text.
    """

    rel_path: str
    text: str


def collect_sources(root: pathlib.Path, *, suffix: str = ".js") -> list[SourceFile]:
    """Recursively collect source files under ``root``.

    A missing root is not an error; it yields no files. The returned list
    carries no ordering guarantee, see :func:`order_sources`.

    :param root: Backend root directory.
    :param suffix: File extension to include.
    :returns: Discovered files.
    :raises SourceProcessingError: If a file cannot be read or is not UTF-8.
    """

    if root.is_dir() is False:
        return []

    found: list[SourceFile] = []
    for root_str, _dirs, files in os.walk(root):
        root_path: pathlib.Path = pathlib.Path(root_str)
        for name in files:
            if name.endswith(suffix) is False:
                continue
            path: pathlib.Path = root_path / name
            if path.is_file() is False:
                continue
            rel_path: str = path.relative_to(root).as_posix()
            try:
                text: str = path.read_text(encoding="utf-8-sig")
            except UnicodeDecodeError as e:
                raise SourceProcessingError(
                    f"{rel_path}: not valid UTF-8 ({e.reason} at byte {e.start})",
                    rel_path=rel_path,
                ) from e
            except OSError as e:
                raise SourceProcessingError(f"{rel_path}: cannot read file: {e}", rel_path=rel_path) from e
            found.append(SourceFile(path=path, rel_path=rel_path, text=text))
    return found


def normalize_rel_path(rel_path: str) -> str:
    """Normalize a user-written relative path for priority matching.

    ``./utils\\logger.js`` and ``utils/logger.js`` compare equal afterwards.
    """

    return posixpath.normpath(rel_path.replace("\\", "/"))


def order_sources(files: list[SourceFile], priority_order: tuple[str, ...] | list[str]) -> list[SourceFile]:
    """Sort files into concatenation order.

    Files named in ``priority_order`` come first, by index of first
    appearance in that list. Everything else follows, sorted by relative
    path using plain code point comparison. Duplicate or unknown priority
    entries are harmless: duplicates keep their first index and unknown
    paths simply never match.

    Matching is exact and case-sensitive on every platform, so a priority
    entry that differs from the file name only in letter case falls through
    to the default ordering.

    :param files: Files from :func:`collect_sources`.
    :param priority_order: Relative paths to pin first.
    :returns: A new, ordered list.
    """

    rank: dict[str, int] = {}
    for i, entry in enumerate(priority_order):
        key: str = normalize_rel_path(entry)
        if key not in rank:
            rank[key] = i

    def sort_key(f: SourceFile) -> tuple[int, int, str]:
        idx: int | None = rank.get(f.rel_path)
        if idx is None:
            return (1, 0, f.rel_path)
        return (0, idx, f.rel_path)

    return sorted(files, key=sort_key)
