"""Exceptions raised while processing documents.

Every error carries the source location it should be reported at, so the CLI
can print ``path:line: message`` without knowing which layer failed.
"""
from typing import Optional


class PlotdeckError(Exception):
    """Base class for all located processing errors."""

    def __init__(
        self,
        path: Optional[str],
        line: Optional[int],
        message: str,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.path = path
        self.line = line
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def message_with_location(self) -> str:
        """Message prefixed with ``path:line:`` where known."""
        if self.path is None:
            return self.message
        if not self.line:
            return f"{self.path}: {self.message}"
        return f"{self.path}:{self.line}: {self.message}"

    def __str__(self):
        return self.message_with_location


class FileAccessError(PlotdeckError):
    """A source, include or query file cannot be read."""


class ParseError(PlotdeckError):
    """Markdown or YAML content is malformed."""


class UnsupportedExtensionError(PlotdeckError):
    """An include points at a file type that cannot be processed."""


class MissingFieldError(PlotdeckError):
    """A required field of a directive is absent."""


class ExpansionError(PlotdeckError):
    """A ``${name}`` reference names an unbound variable."""

    def __init__(self, path, line, name: str, cause=None):
        super().__init__(path, line, f"Undefined variable: {name}", cause)
        self.name = name


class DatabaseConnectionError(PlotdeckError):
    """The database session cannot be opened, initialized or configured."""


class QueryExecutionError(PlotdeckError):
    """A SQL statement failed."""


class ArgumentFormatError(PlotdeckError):
    """A command-line argument is malformed."""


class InclusionCycleError(PlotdeckError):
    """A file includes itself, directly or through other files."""
