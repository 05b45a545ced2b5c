import json
import logging

import pytest

from gas_flattener import builder, cli
from gas_flattener.builder import build_project
from gas_flattener.errors import (
    FrontendBuildError,
    MinificationError,
    ResolutionError,
    SourceProcessingError,
    SyntaxValidationError,
)
from gas_flattener.flatten import find_module_syntax

from conftest import FakeRunner

MATH_BUNDLE = "function c(n,l,h){return Math.min(h,Math.max(l,n))}export{c as clamp}"
DESCRIBE_BUNDLE = "var d=s=>`Grid ${s}`;export{d as default}"

BACKEND = {
    "src/backend/main.js": (
        "import { clamp } from '../shared/math.js';\n"
        "import describe from '../shared/describe.js';\n"
        "\n"
        "export function doGet() {\n"
        "  logInfo(describe(GRID_SIZE));\n"
        "  return clamp(1, 0, GRID_SIZE);\n"
        "}\n"
    ),
    "src/backend/config.js": "export const GRID_SIZE = 10;\n",
    "src/backend/utils/logger.js": "export function logInfo(msg) {\n  console.log(msg);\n}\n",
    "src/backend/api/cells.js": "export function attackCell(x, y) {\n  return { x, y };\n}\n",
    "src/appsscript.json": '{"runtimeVersion": "V8"}\n',
    "package.json": json.dumps({"name": "hello", "version": "1.0.0", "license": "MIT"}),
}


@pytest.fixture()
def runner():
    return FakeRunner({"../shared/math.js": MATH_BUNDLE, "../shared/describe.js": DESCRIBE_BUNDLE})


@pytest.fixture()
def restore_package_logger():
    logger = logging.getLogger("gas_flattener")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_full_build_writes_flat_minified_script(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    root = write_tree(BACKEND)
    config = make_config()

    report = build_project(config, logger=logger, runner=runner)

    out = root / "dist" / "Code.js"
    assert report.artifacts == (out,)
    assert report.files_processed == 4
    assert report.imports_bundled == 2
    text = out.read_text(encoding="utf-8")
    assert text.startswith("/**\n * hello v1.0.0\n * @license MIT\n */\n")
    assert (root / "dist" / "appsscript.json").read_text(encoding="utf-8") == '{"runtimeVersion": "V8"}\n'

    (blob,) = runner.terser_inputs
    markers = [line for line in blob.splitlines() if line.startswith("// --- ")]
    assert markers == [
        "// --- config.js ---",
        "// --- utils/logger.js ---",
        "// --- api/cells.js ---",
        "// --- main.js ---",
    ]
    assert find_module_syntax(blob) == []
    assert "const { clamp } = (() => { function c(n,l,h){return Math.min(h,Math.max(l,n))}; return { clamp: c }; })();" in blob
    assert "const describe = (function (r) {" in blob
    assert "return { default: d }; })());" in blob

    reserved = runner.terser_configs[0]["mangle"]["reserved"]
    assert set(reserved) == {"GRID_SIZE", "logInfo", "attackCell", "clamp", "describe", "doGet"}
    assert report.protected_names == frozenset(reserved)
    assert runner.renamed == []
    for name in reserved:
        assert name in text


def test_pre_minify_output_is_deterministic(write_tree, make_config, capture_logger):
    logger, _ = capture_logger
    write_tree(BACKEND)
    blobs = []
    for _ in range(2):
        r = FakeRunner({"../shared/math.js": MATH_BUNDLE, "../shared/describe.js": DESCRIBE_BUNDLE})
        build_project(make_config(), logger=logger, runner=r)
        blobs.append(r.terser_inputs[0])
    assert blobs[0] == blobs[1]


def test_syntax_error_aborts_without_artifact(write_tree, make_config, runner, capture_logger):
    logger, handler = capture_logger
    files = dict(BACKEND)
    files["src/backend/broken.js"] = "function broken() {\n  @@SYNTAX_ERROR@@\n}\n"
    root = write_tree(files)

    with pytest.raises(SyntaxValidationError) as exc:
        build_project(make_config(), logger=logger, runner=runner)

    assert (root / "dist" / "Code.js").exists() is False
    debug = root / "dist" / "debug.pre-minify.js"
    assert exc.value.debug_path == debug
    assert "@@SYNTAX_ERROR@@" in debug.read_text(encoding="utf-8")
    assert runner.terser_inputs == []
    assert any(m.startswith("gas-flattener:   >") for m in handler.messages)


def test_minifier_failure_writes_separate_debug_artifact(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    root = write_tree(BACKEND)
    runner.terser_error = "Parse error at input.js:3,0\n"
    with pytest.raises(MinificationError) as exc:
        build_project(make_config(), logger=logger, runner=runner)
    assert exc.value.line == 3
    assert (root / "dist" / "debug.minify-failed.js").is_file()
    assert (root / "dist" / "Code.js").exists() is False


def test_unresolvable_import_aborts_with_file_context(write_tree, make_config, capture_logger):
    logger, _ = capture_logger
    root = write_tree(BACKEND)
    with pytest.raises(SourceProcessingError) as exc:
        build_project(make_config(), logger=logger, runner=FakeRunner())
    assert exc.value.rel_path == "main.js"
    assert isinstance(exc.value.__cause__, ResolutionError)
    assert (root / "dist" / "Code.js").exists() is False


def test_unsupported_export_form_aborts(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    files = dict(BACKEND)
    files["src/backend/extra.js"] = "const a = 1;\nexport default a;\n"
    write_tree(files)
    with pytest.raises(SourceProcessingError, match=r"extra\.js:2"):
        build_project(make_config(), logger=logger, runner=runner)


def test_output_dir_is_recreated_empty(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    root = write_tree(BACKEND)
    stale = root / "dist" / "stale.js"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")
    build_project(make_config(), logger=logger, runner=runner)
    assert stale.exists() is False


def test_missing_manifest_and_backend_are_warnings(write_tree, make_config, runner, capture_logger):
    logger, handler = capture_logger
    root = write_tree({"package.json": "{}"})
    report = build_project(make_config(), logger=logger, runner=runner)
    assert report.artifacts == ()
    assert (root / "dist").is_dir()
    warnings = [r.getMessage() for r in handler.records if r.levelno == logging.WARNING]
    assert any("backend root not found" in m for m in warnings)
    assert any("manifest not found" in m for m in warnings)


def test_per_file_mode_writes_each_module(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    root = write_tree(BACKEND)
    report = build_project(make_config(concatenate=False), logger=logger, runner=runner)
    assert len(report.artifacts) == 4
    cells = (root / "dist" / "api" / "cells.js").read_text(encoding="utf-8")
    assert cells.startswith("/**\n * hello v1.0.0\n")
    assert "function attackCell(x, y)" in cells
    assert "export" not in cells
    assert (root / "dist" / "Code.js").exists() is False


def test_no_minify_writes_validated_blob(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    root = write_tree(BACKEND)
    build_project(make_config(minify=False), logger=logger, runner=runner)
    text = (root / "dist" / "Code.js").read_text(encoding="utf-8")
    assert "// --- main.js ---" in text
    assert runner.terser_inputs == []
    assert len(runner.validated) == 1


def test_frontend_failure_aborts_before_backend(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    write_tree(BACKEND)
    runner.frontend_returncode = 2
    with pytest.raises(FrontendBuildError) as exc:
        build_project(make_config(frontend=True), logger=logger, runner=runner)
    assert exc.value.returncode == 2
    assert runner.calls == [["vite", "build"]]


def test_cli_exit_codes(write_tree, tmp_path, monkeypatch, runner, restore_package_logger):
    files = dict(BACKEND)
    write_tree(files)
    monkeypatch.setattr(builder, "run_tool", runner)
    argv = ["build", "--project-root", str(tmp_path), "--no-frontend", "-q"]
    assert cli.main(argv) == 0
    assert (tmp_path / "dist" / "Code.js").is_file()

    write_tree({"src/backend/broken.js": "@@SYNTAX_ERROR@@\n"})
    assert cli.main(argv) == 1
    assert (tmp_path / "dist" / "Code.js").exists() is False
    assert (tmp_path / "dist" / "debug.pre-minify.js").is_file()

    assert cli.main([*argv, "--jobs", "0"]) == 1


def test_cli_reports_undecodable_source(write_tree, tmp_path, monkeypatch, runner, restore_package_logger):
    write_tree(BACKEND)
    (tmp_path / "src" / "backend" / "main.js").write_bytes(b"export const s = '\xff';\n")
    monkeypatch.setattr(builder, "run_tool", runner)
    argv = ["build", "--project-root", str(tmp_path), "--no-frontend", "-q"]
    assert cli.main(argv) == 1
    assert (tmp_path / "dist" / "Code.js").exists() is False


def test_per_file_mode_keeps_globals_shared_across_files(write_tree, make_config, runner, capture_logger):
    logger, _ = capture_logger
    files = dict(BACKEND)
    files["src/backend/config.js"] = "export const GRID_SIZE = 10, STATE_KEY = 'k';\nexport class Board {}\n"
    root = write_tree(files)

    build_project(make_config(concatenate=False), logger=logger, runner=runner)

    assert all(c["mangle"]["toplevel"] is False for c in runner.terser_configs)
    assert all(c["compress"]["toplevel"] is False for c in runner.terser_configs)
    assert runner.renamed == []
    config = (root / "dist" / "config.js").read_text(encoding="utf-8")
    for name in ("GRID_SIZE", "STATE_KEY", "Board"):
        assert name in config
