import json
import logging
import pathlib
import re

import pytest

from gas_flattener.config import BuildConfig, ToolCommands
from gas_flattener.tools import ToolResult

_ENTRY_PATH_RE = re.compile(r'from "(?P<path>[^"]*)";')
_TOP_LEVEL_NAME_RE = re.compile(
    r"^(?:async\s+)?(?:function\*?|class|const|let|var)\s+(?P<name>[A-Za-z_$][\w$]*)",
    re.M,
)


class FakeRunner:
    """Stands in for esbuild/terser/vite.

    :ivar modules: Import path -> canned esbuild bundle output.
    :ivar syntax_error_marker: Text that makes validation fail.
    """

    def __init__(self, modules=None):
        self.modules = dict(modules or {})
        self.calls = []
        self.bundle_calls = []
        self.terser_configs = []
        self.terser_inputs = []
        self.renamed = []
        self.validated = []
        self.syntax_error_marker = "@@SYNTAX_ERROR@@"
        self.terser_error = None
        self.frontend_returncode = 0

    def __call__(self, cmd, *, stdin_text=None, cwd=None, capture=True, logger=None):
        self.calls.append(list(cmd))
        if "--bundle" in cmd:
            return self._bundle(stdin_text, cwd)
        if "--config-file" in cmd:
            return self._terser(cmd)
        if "--loader=js" in cmd:
            return self._validate(cmd, stdin_text)
        return ToolResult(returncode=self.frontend_returncode, stdout="", stderr="")

    def _bundle(self, entry, cwd):
        path = _ENTRY_PATH_RE.search(entry).group("path")
        self.bundle_calls.append((path, entry, cwd))
        if path not in self.modules:
            return ToolResult(
                returncode=1,
                stdout="",
                stderr=f'✘ [ERROR] Could not resolve "{path}"\n\n    virtual-entry.js:1:20:\n',
            )
        return ToolResult(returncode=0, stdout=self.modules[path] + "\n", stderr="")

    def _validate(self, cmd, text):
        self.validated.append(text)
        if self.syntax_error_marker in text:
            line = text[: text.index(self.syntax_error_marker)].count("\n") + 1
            name = [a for a in cmd if a.startswith("--sourcefile=")][0].split("=", 1)[1]
            return ToolResult(
                returncode=1,
                stdout="",
                stderr=f'✘ [ERROR] Unexpected "@"\n\n    {name}:{line}:0:\n',
            )
        return ToolResult(returncode=0, stdout=text, stderr="")

    def _terser(self, cmd):
        config_path = pathlib.Path(cmd[cmd.index("--config-file") + 1])
        input_path = pathlib.Path([a for a in cmd if a.endswith("input.js")][0])
        self.terser_configs.append(json.loads(config_path.read_text(encoding="utf-8")))
        text = input_path.read_text(encoding="utf-8")
        self.terser_inputs.append(text)
        if self.terser_error is not None:
            return ToolResult(returncode=1, stdout="", stderr=self.terser_error)
        config = self.terser_configs[-1]
        if config["mangle"]["toplevel"] is True:
            text = self._mangle(text, set(config["mangle"]["reserved"]))
        minified = "\n".join(line for line in text.splitlines() if line.startswith("// --- ") is False)
        return ToolResult(returncode=0, stdout=minified.strip() + "\n", stderr="")

    def _mangle(self, text, reserved):
        # Renames like terser would, so a name missing from "reserved" shows up.
        for i, name in enumerate(sorted(set(_TOP_LEVEL_NAME_RE.findall(text)) - reserved)):
            self.renamed.append(name)
            text = re.sub(rf"(?<![\w$.]){re.escape(name)}(?![\w$])", f"_m{i}", text)
        return text


@pytest.fixture()
def fake_runner():
    return FakeRunner()


@pytest.fixture()
def write_tree(tmp_path):
    def _write(files, root=None):
        base = tmp_path if root is None else root
        for rel, text in files.items():
            p = base / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        return base

    return _write


TOOLS = ToolCommands(esbuild=("esbuild",), terser=("terser",), frontend=("vite", "build"))


@pytest.fixture()
def make_config(tmp_path):
    def _make(**overrides):
        values = dict(
            project_root=tmp_path,
            backend_root=tmp_path / "src" / "backend",
            out_dir=tmp_path / "dist",
            manifest_path=tmp_path / "src" / "appsscript.json",
            package_json_path=tmp_path / "package.json",
            priority_order=("config.js", "utils/logger.js"),
            out_file="Code.js",
            concatenate=True,
            minify=True,
            frontend=False,
            backend=True,
            tools=TOOLS,
            jobs=1,
        )
        values.update(overrides)
        return BuildConfig(**values)

    return _make


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)

    @property
    def messages(self):
        return [r.getMessage() for r in self.records]


@pytest.fixture()
def capture_logger(request):
    logger = logging.getLogger(f"gas_flattener.test.{request.node.name}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = ListHandler()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)
