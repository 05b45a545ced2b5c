import pytest

from gas_flattener.errors import SourceProcessingError
from gas_flattener.sources import SourceFile, collect_sources, normalize_rel_path, order_sources


def _sf(rel):
    return SourceFile(path=None, rel_path=rel, text="")


def test_priority_files_first_then_lexicographic():
    files = [_sf("utils/logger.js"), _sf("main.js"), _sf("config.js")]
    ordered = order_sources(files, ["config.js", "utils/logger.js"])
    assert [f.rel_path for f in ordered] == ["config.js", "utils/logger.js", "main.js"]


def test_non_priority_files_sorted_by_relative_path():
    files = [_sf("b/z.js"), _sf("a.js"), _sf("b/a.js"), _sf("B.js")]
    ordered = order_sources(files, [])
    assert [f.rel_path for f in ordered] == ["B.js", "a.js", "b/a.js", "b/z.js"]


def test_duplicate_and_unknown_priority_entries_do_not_crash():
    files = [_sf("main.js"), _sf("config.js"), _sf("api.js")]
    ordered = order_sources(files, ["missing.js", "config.js", "config.js", "main.js"])
    assert [f.rel_path for f in ordered] == ["config.js", "main.js", "api.js"]


def test_priority_entries_are_normalized():
    assert normalize_rel_path("./utils\\logger.js") == "utils/logger.js"
    files = [_sf("main.js"), _sf("utils/logger.js")]
    ordered = order_sources(files, ["./utils/logger.js"])
    assert [f.rel_path for f in ordered] == ["utils/logger.js", "main.js"]


def test_priority_match_is_case_sensitive():
    files = [_sf("main.js"), _sf("Config.js")]
    ordered = order_sources(files, ["main.js", "config.js"])
    assert [f.rel_path for f in ordered] == ["main.js", "Config.js"]


def test_order_is_independent_of_discovery_order():
    a = [_sf("x.js"), _sf("config.js"), _sf("m/n.js")]
    b = list(reversed(a))
    prio = ["config.js"]
    assert [f.rel_path for f in order_sources(a, prio)] == [f.rel_path for f in order_sources(b, prio)]


def test_collect_missing_root_returns_empty(tmp_path):
    assert collect_sources(tmp_path / "nope") == []


def test_collect_recurses_and_filters_by_suffix(write_tree, tmp_path):
    root = tmp_path / "backend"
    write_tree(
        {
            "main.js": "function doGet() {}\n",
            "utils/logger.js": "\ufefffunction log() {}\n",
            "README.md": "# docs\n",
            "data/table.json": "{}",
        },
        root=root,
    )
    found = {f.rel_path: f for f in collect_sources(root)}
    assert set(found) == {"main.js", "utils/logger.js"}
    assert found["utils/logger.js"].text == "function log() {}\n"
    assert found["main.js"].path == root / "main.js"


def test_collect_rejects_undecodable_file(tmp_path):
    bad = tmp_path / "api" / "bad.js"
    bad.parent.mkdir()
    bad.write_bytes(b"const s = '\xff';\n")
    with pytest.raises(SourceProcessingError, match=r"api/bad\.js: not valid UTF-8") as exc:
        collect_sources(tmp_path)
    assert exc.value.rel_path == "api/bad.js"
    assert isinstance(exc.value.__cause__, UnicodeDecodeError)
