"""Markdown/YAML document processing with DuckDB query execution."""
from .blocks import Block, parse_markdown
from .errors import (
    PlotdeckError,
    FileAccessError,
    ParseError,
    UnsupportedExtensionError,
    MissingFieldError,
    ExpansionError,
    DatabaseConnectionError,
    QueryExecutionError,
    ArgumentFormatError,
    InclusionCycleError,
)
from .models import (
    Located,
    Configuration,
    ParameterDeclaration,
    QueryColumn,
    QueryResultSet,
)
from .loader import ConfigurationLoader
from .session import DatabaseSession
from .executor import QueryExecutor
from .processor import QueryProcessor, ProcessingContext, ProcessingResult, process

__all__ = [
    "Block",
    "parse_markdown",
    "PlotdeckError",
    "FileAccessError",
    "ParseError",
    "UnsupportedExtensionError",
    "MissingFieldError",
    "ExpansionError",
    "DatabaseConnectionError",
    "QueryExecutionError",
    "ArgumentFormatError",
    "InclusionCycleError",
    "Located",
    "Configuration",
    "ParameterDeclaration",
    "QueryColumn",
    "QueryResultSet",
    "ConfigurationLoader",
    "DatabaseSession",
    "QueryExecutor",
    "QueryProcessor",
    "ProcessingContext",
    "ProcessingResult",
    "process",
]
