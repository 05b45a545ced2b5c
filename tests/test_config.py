import json

import pytest

from gas_flattener.config import (
    DEFAULT_PRIORITY_ORDER,
    ConfigError,
    ProjectMetadata,
    load_project_metadata,
    parse_command,
    resolve_build_config,
)


def _resolve(tmp_path, **overrides):
    values = dict(
        project_root=tmp_path,
        backend_root="src/backend",
        out_dir="dist",
        manifest="src/appsscript.json",
        package_json="package.json",
        priority_order=None,
        out_file="Code.js",
        concatenate=True,
        minify=True,
        frontend=True,
        backend=True,
        esbuild_command="npx --no-install esbuild",
        terser_command="npx --no-install terser",
        frontend_command="npx vite build",
        jobs=1,
    )
    values.update(overrides)
    return resolve_build_config(**values)


def test_parse_command_splits_shell_words():
    assert parse_command("node 'node_modules/.bin/esbuild'", option="--esbuild") == ("node", "node_modules/.bin/esbuild")


@pytest.mark.parametrize("bad", ["", "   ", "npx 'unterminated"])
def test_parse_command_rejects_bad_input(bad):
    with pytest.raises(ConfigError):
        parse_command(bad, option="--esbuild")


def test_defaults_resolve_against_project_root(tmp_path):
    config = _resolve(tmp_path)
    root = tmp_path.resolve()
    assert config.backend_root == root / "src" / "backend"
    assert config.out_dir == root / "dist"
    assert config.manifest_name == "appsscript.json"
    assert config.priority_order == DEFAULT_PRIORITY_ORDER
    assert config.tools.esbuild == ("npx", "--no-install", "esbuild")


def test_explicit_priority_order_is_kept(tmp_path):
    config = _resolve(tmp_path, priority_order=["a.js", "b/c.js"])
    assert config.priority_order == ("a.js", "b/c.js")


@pytest.mark.parametrize("out_dir", [".", "..", "src"])
def test_output_dir_must_not_contain_sources(tmp_path, out_dir):
    (tmp_path / "sub").mkdir()
    with pytest.raises(ConfigError):
        _resolve(tmp_path / "sub" if out_dir == ".." else tmp_path, out_dir=out_dir)


@pytest.mark.parametrize("overrides", [{"jobs": 0}, {"out_file": "nested/Code.js"}, {"out_file": ""}])
def test_invalid_options(tmp_path, overrides):
    with pytest.raises(ConfigError):
        _resolve(tmp_path, **overrides)


def test_metadata_with_npm_object_fields(tmp_path, capture_logger):
    logger, _ = capture_logger
    path = tmp_path / "package.json"
    path.write_text(
        json.dumps(
            {
                "name": "hello",
                "version": "2.0.0",
                "author": {"name": "Ann", "email": "ann@example.com"},
                "repository": {"type": "git", "url": "https://example.com/r.git"},
                "license": "MIT",
            }
        ),
        encoding="utf-8",
    )
    assert load_project_metadata(path, logger=logger) == ProjectMetadata(
        name="hello",
        version="2.0.0",
        author="Ann <ann@example.com>",
        repository="https://example.com/r.git",
        license="MIT",
    )


def test_metadata_string_fields(tmp_path, capture_logger):
    logger, _ = capture_logger
    path = tmp_path / "package.json"
    path.write_text('{"author": "Bob", "repository": "github:bob/app", "description": " "}', encoding="utf-8")
    meta = load_project_metadata(path, logger=logger)
    assert meta.author == "Bob"
    assert meta.repository == "github:bob/app"
    assert meta.description is None


@pytest.mark.parametrize("content", [None, "{not json", "[1, 2]"])
def test_metadata_degrades_to_empty_with_warning(tmp_path, capture_logger, content):
    logger, handler = capture_logger
    path = tmp_path / "package.json"
    if content is not None:
        path.write_text(content, encoding="utf-8")
    assert load_project_metadata(path, logger=logger) == ProjectMetadata()
    assert any(r.levelname == "WARNING" for r in handler.records)
