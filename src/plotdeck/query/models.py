"""
Domain models for document processing.
Provides located values, parsed configurations and query results.
"""
import os
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

from .errors import ParseError


@dataclass(frozen=True)
class Located:
    """
    A value together with the file and line it was read from.

    Configuration nodes are Located all the way down: a mapping holds
    ``Dict[str, Located]``, a sequence ``List[Located]`` and a scalar ``str``
    (or ``None`` for YAML null).
    """
    path: Optional[str]
    line: int
    value: Any

    def map(self, function) -> "Located":
        """Apply function to the value, keeping the location."""
        return Located(self.path, self.line, function(self.value))

    def plain(self) -> Any:
        """Strip locations recursively."""
        if isinstance(self.value, dict):
            return {k: v.plain() for k, v in self.value.items()}
        if isinstance(self.value, list):
            return [v.plain() for v in self.value]
        return self.value

    def error(self, error_class, message: str, cause=None):
        """Build a located error pointing at this value."""
        return error_class(self.path, self.line, message, cause)


# Keys with dedicated fields on Configuration. Everything else is kept in
# Configuration.options for the renderer.
DIRECTIVE_KEYS = (
    "include",
    "parameters",
    "data_source",
    "db_config",
    "query",
    "query_file",
    "output",
    "template",
)


def _get_string(node: Located, key: str) -> Optional[Located]:
    item = node.value.get(key)
    if item is None or item.value is None:
        return None
    if not isinstance(item.value, str):
        raise item.error(ParseError, f"String is expected for '{key}'.")
    return item


class ParameterDeclaration(BaseModel):
    """A document parameter: a variable with an optional default value."""
    model_config = ConfigDict(frozen=True)

    location: Located
    name: Optional[Located] = None
    description: Optional[Located] = None
    default: Optional[Located] = None

    @classmethod
    def from_node(cls, node: Located) -> "ParameterDeclaration":
        if not isinstance(node.value, dict):
            raise node.error(ParseError, "Mapping is expected.")
        return cls(
            location=node,
            name=_get_string(node, "name"),
            description=_get_string(node, "description"),
            default=_get_string(node, "default"),
        )


class Configuration(BaseModel):
    """
    Directives parsed from one configuration block or included YAML file.

    Immutable once parsed. The fields cover the directives the query
    processor acts on; any other top-level key (slide and chart settings)
    is preserved in ``options`` for downstream rendering.
    """
    model_config = ConfigDict(frozen=True)

    location: Optional[Located] = None
    include: Optional[Located] = None
    parameters: Optional[Located] = None
    data_source: Optional[Located] = None
    db_config: Optional[Located] = None
    query: Optional[Located] = None
    query_file: Optional[Located] = None
    output: Optional[Located] = None
    template: Optional[Located] = None
    options: Dict[str, Located] = Field(default_factory=dict)

    @classmethod
    def from_node(cls, node: Located) -> "Configuration":
        """
        Build a configuration from a located YAML mapping.

        Args:
            node: Root mapping node (values already variable-expanded)

        Returns:
            Configuration instance

        Raises:
            ParseError: If a directive has the wrong shape
        """
        if not isinstance(node.value, dict):
            raise node.error(ParseError, "Mapping is expected.")

        parameters = node.value.get("parameters")
        if parameters is not None and parameters.value is not None:
            if not isinstance(parameters.value, list):
                raise parameters.error(ParseError, "Sequence is expected for 'parameters'.")
            parameters = parameters.map(
                lambda items: tuple(ParameterDeclaration.from_node(i) for i in items)
            )
        else:
            parameters = None

        db_config = node.value.get("db_config")
        if db_config is not None and db_config.value is not None:
            if not isinstance(db_config.value, dict):
                raise db_config.error(ParseError, "Mapping is expected for 'db_config'.")
            for key, item in db_config.value.items():
                if not isinstance(item.value, str):
                    raise item.error(ParseError, f"String is expected for '{key}'.")
        else:
            db_config = None

        return cls(
            location=node,
            include=_get_string(node, "include"),
            parameters=parameters,
            data_source=_get_string(node, "data_source"),
            db_config=db_config,
            query=_get_string(node, "query"),
            query_file=_get_string(node, "query_file"),
            output=_get_string(node, "output"),
            template=_get_string(node, "template"),
            options={
                k: v for k, v in node.value.items() if k not in DIRECTIVE_KEYS
            },
        )

    @property
    def settings(self) -> Dict[str, str]:
        """db_config as a plain name -> value dict."""
        if self.db_config is None:
            return {}
        return {k: v.value for k, v in self.db_config.value.items()}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain values (locations dropped)."""
        result: Dict[str, Any] = {}
        for key in DIRECTIVE_KEYS:
            item = getattr(self, key)
            if item is None:
                continue
            if key == "parameters":
                result[key] = [
                    {
                        name: getattr(p, name).value
                        for name in ("name", "description", "default")
                        if getattr(p, name) is not None
                    }
                    for p in item.value
                ]
            else:
                result[key] = item.plain()
        result.update({k: v.plain() for k, v in self.options.items()})
        return result


def resolve_path(item: Located, base_directory: str) -> str:
    """
    Resolve a path value relative to the file it was declared in.

    Args:
        item: Path value; its location path is relative to base_directory
        base_directory: Directory the run was invoked from

    Returns:
        Absolute path
    """
    declared_in = os.path.dirname(item.path or "")
    return os.path.normpath(
        os.path.join(base_directory, declared_in, item.value)
    )


@dataclass(frozen=True)
class QueryColumn:
    """Name and engine type of a result column."""
    name: str
    type: str


@dataclass
class QueryResultSet:
    """Columns and fully fetched rows of one executed statement."""
    columns: List[QueryColumn] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for JSON output)."""
        return {
            'columns': [{'name': c.name, 'type': c.type} for c in self.columns],
            'rows': [[_json_value(v) for v in row] for row in self.rows],
        }


def _json_value(value: Any) -> Any:
    # Convert temporal and decimal values for JSON serialization
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value
