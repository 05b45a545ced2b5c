"""Build error taxonomy.

Every stage raises a subclass of :class:`BuildError`; none of them terminate
the process. :func:`gas_flattener.cli.main` is the only place that turns a
failure into an exit code.
"""

import pathlib


class BuildError(RuntimeError):
    """Raised when flattening fails."""


class ToolError(BuildError):
    """Raised when an external tool cannot be started."""


class UnsupportedImportError(BuildError):
    """Raised for import statements that cannot be inlined.

    Side-effect-only, namespace and mixed default+named imports are rejected
    rather than silently dropped.
    """


class ResolutionError(BuildError):
    """Raised when an import path cannot be bundled into an expression.

    :ivar import_path: The import specifier as written in the source file.
    :ivar working_dir: Directory the specifier was resolved from.
    :ivar diagnostics: Diagnostics reported by the external bundler.
    """

    def __init__(self, message: str, *, import_path: str, working_dir: pathlib.Path, diagnostics: str = "") -> None:
        super().__init__(message)
        self.import_path: str = import_path
        self.working_dir: pathlib.Path = working_dir
        self.diagnostics: str = diagnostics

    def __str__(self) -> str:
        text: str = super().__str__()
        if self.diagnostics:
            return f"{text}\n{self.diagnostics.rstrip()}"
        return text


BundleError = ResolutionError


class SourceProcessingError(BuildError):
    """Raised when a single source file cannot be processed.

    :ivar rel_path: Path of the failing file relative to the backend root.
    """

    def __init__(self, message: str, *, rel_path: str) -> None:
        super().__init__(message)
        self.rel_path: str = rel_path


class SyntaxValidationError(BuildError):
    """Raised when the concatenated blob does not parse before minification.

    :ivar debug_path: Where the offending blob was written.
    :ivar diagnostics: Parser diagnostics.
    :ivar line: 1-based line of the first reported error, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        debug_path: pathlib.Path | None,
        diagnostics: str = "",
        line: int | None = None,
    ) -> None:
        super().__init__(message)
        self.debug_path: pathlib.Path | None = debug_path
        self.diagnostics: str = diagnostics
        self.line: int | None = line


class MinificationError(BuildError):
    """Raised when the external minifier rejects its input.

    :ivar debug_path: Where the failing blob was written.
    :ivar line: 1-based line reported by the minifier, when known.
    :ivar column: Column reported by the minifier, when known.
    :ivar diagnostics: Raw minifier output.
    """

    def __init__(
        self,
        message: str,
        *,
        debug_path: pathlib.Path | None,
        line: int | None = None,
        column: int | None = None,
        diagnostics: str = "",
    ) -> None:
        super().__init__(message)
        self.debug_path: pathlib.Path | None = debug_path
        self.line: int | None = line
        self.column: int | None = column
        self.diagnostics: str = diagnostics


class FrontendBuildError(BuildError):
    """Raised when the frontend build subprocess fails.

    :ivar returncode: Exit status of the frontend build command.
    """

    def __init__(self, message: str, *, returncode: int) -> None:
        super().__init__(message)
        self.returncode: int = returncode
