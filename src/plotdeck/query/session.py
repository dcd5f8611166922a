"""DuckDB session - the single connection shared by a processing run."""

import logging
from typing import Any, Iterator, Mapping, Optional

try:
    import duckdb
    DUCKDB_AVAILABLE = True
except ImportError:
    DUCKDB_AVAILABLE = False

from .errors import DatabaseConnectionError, QueryExecutionError
from .models import Located, QueryColumn, QueryResultSet


logger = logging.getLogger(__name__)

DEFAULT_DATA_SOURCE = ":memory:"


def quote_identifier(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def quote_string(value: str) -> str:
    """
    Quote a string literal for DuckDB SQL.

    SET statements cannot be prepared, so values are embedded as literals.
    """
    return "'" + value.replace("'", "''") + "'"


class DatabaseSession:
    """
    Owns at most one live DuckDB connection.

    Opening a new connection closes the previous one. Every opened
    connection gets all current variables bound as session variables,
    readable from SQL with ``getvariable('name')``.
    """

    def __init__(self, default_data_source: str = DEFAULT_DATA_SOURCE):
        if not DUCKDB_AVAILABLE:
            logger.warning("duckdb not available - SQL queries will fail")

        self.default_data_source = default_data_source
        self.connection: Optional[Any] = None
        self.data_source: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.connection is not None

    def open(
        self,
        data_source: Optional[str],
        settings: Mapping[str, str],
        variables: Mapping[str, str],
        location: Optional[Located] = None
    ):
        """
        Close any open connection and open a new one.

        Args:
            data_source: Database file or ``:memory:``; default if None
            settings: DuckDB configuration passed at connect time
            variables: Variables to bind into the new connection
            location: Directive that triggered the open, for errors

        Raises:
            DatabaseConnectionError: If the connection cannot be opened
                                     or initialized
        """
        self.close()

        database = data_source or self.default_data_source
        path, line = (location.path, location.line) if location else (None, None)

        if not DUCKDB_AVAILABLE:
            raise DatabaseConnectionError(
                path, line, "duckdb not installed - cannot open connection"
            )

        logger.debug(f"Opening database connection: {database}")
        try:
            self.connection = duckdb.connect(database=database, config=dict(settings))
            self.data_source = database
            self.bind_variables(variables)
        except duckdb.Error as e:
            self.close()
            raise DatabaseConnectionError(
                path, line, f"Cannot open and initialize connection: {e}", e
            ) from e

    def ensure_open(self, variables: Mapping[str, str], location: Optional[Located] = None):
        """Open the default in-memory database if nothing is open yet."""
        if not self.is_open:
            self.open(None, {}, variables, location)

    def bind_variables(self, variables: Mapping[str, str]):
        """
        Set each variable as a DuckDB session variable of type VARCHAR.

        Raises:
            duckdb.Error: If a SET VARIABLE statement fails
        """
        for name, value in variables.items():
            self.connection.execute(
                f"SET VARIABLE {quote_identifier(name)} = {quote_string(value)}"
            )

    def update_variables(self, variables: Mapping[str, str], location: Optional[Located] = None):
        """
        Bind newly declared variables into the open connection.

        Raises:
            DatabaseConnectionError: If a variable cannot be set
        """
        path, line = (location.path, location.line) if location else (None, None)
        try:
            self.bind_variables(variables)
        except duckdb.Error as e:
            raise DatabaseConnectionError(path, line, f"Cannot set variables: {e}", e) from e

    def update(self, settings: Mapping[str, str], location: Optional[Located] = None):
        """
        Apply settings to the open connection.

        Names DuckDB does not recognize are skipped, so documents written
        for another DuckDB version still run.

        Raises:
            DatabaseConnectionError: If a recognized setting is rejected
        """
        path, line = (location.path, location.line) if location else (None, None)
        try:
            known = {row[0] for row in self.connection.execute(
                "SELECT name FROM duckdb_settings()"
            ).fetchall()}

            for key, value in settings.items():
                if key not in known:
                    logger.debug(f"Skipping unknown database setting: {key}")
                    continue
                self.connection.execute(f"SET {key} = {quote_string(value)}")
        except duckdb.Error as e:
            raise DatabaseConnectionError(path, line, f"Cannot set options: {e}", e) from e

    def execute(self, sql: Located) -> Iterator[QueryResultSet]:
        """
        Execute each statement of sql in order, yielding its results.

        A statement runs only after the previous statement's result set has
        been fully fetched.

        Raises:
            QueryExecutionError: If parsing or executing a statement fails
        """
        try:
            statements = self.connection.extract_statements(sql.value)
        except duckdb.Error as e:
            raise sql.error(QueryExecutionError, f"Cannot execute query: {e}", e) from e

        for statement in statements:
            try:
                cursor = self.connection.execute(statement)
                yield _fetch_result_set(cursor)
            except duckdb.Error as e:
                raise sql.error(QueryExecutionError, f"Cannot execute query: {e}", e) from e

    def close(self):
        """Close the connection if one is open."""
        if self.connection is None:
            return
        try:
            self.connection.close()
            logger.debug(f"Closed connection: {self.data_source}")
        except duckdb.Error as e:
            logger.error(f"Error closing connection {self.data_source}: {e}")
        finally:
            self.connection = None
            self.data_source = None


def _fetch_result_set(cursor: Any) -> QueryResultSet:
    description = cursor.description
    if not description:
        return QueryResultSet()

    columns = [QueryColumn(name=d[0], type=str(d[1])) for d in description]
    rows = [tuple(row) for row in cursor.fetchall()]
    return QueryResultSet(columns=columns, rows=rows)
