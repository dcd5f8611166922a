"""Run a configuration's queries and attach the results to its block."""

import logging
from datetime import datetime, UTC
from typing import List

from .blocks import Block
from .loader import read_text
from .models import Configuration, Located, QueryResultSet
from .session import DatabaseSession


logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("plotdeck_query_audit")


class QueryExecutor:
    """
    Executes ``query_file`` and ``query`` directives against a session.

    Holds no state of its own; the session is owned by the processing run.
    """

    def __init__(self, session: DatabaseSession):
        self.session = session

    def execute(self, block: Block, config: Configuration, context) -> List[QueryResultSet]:
        """
        Execute query_file statements, then query statements.

        Results are appended after any results already on the block.

        Args:
            block: Block the configuration came from
            config: Configuration holding query and/or query_file
            context: Processing context (variables, log prefix)

        Returns:
            The block's full result list

        Raises:
            FileAccessError: If query_file cannot be read
            DatabaseConnectionError: If the lazy default connection fails
            QueryExecutionError: If a statement fails
        """
        self.session.ensure_open(context.variables, config.query_file or config.query)

        results = list(block.get_data("query_results") or [])

        if config.query_file is not None:
            source = config.query_file.map(lambda _: read_text(config.query_file))
            results.extend(self._run(source, context))

        if config.query is not None:
            results.extend(self._run(config.query, context))

        block.set_data("query_results", results)
        return results

    def _run(self, sql: Located, context) -> List[QueryResultSet]:
        start_time = datetime.now(UTC)
        try:
            results = list(self.session.execute(sql))
        except Exception as e:
            self._audit_log(context, sql, success=False, error=str(e))
            raise
        execution_time = (datetime.now(UTC) - start_time).total_seconds()

        row_count = sum(len(r.rows) for r in results)
        self._audit_log(context, sql, success=True, result_sets=len(results), row_count=row_count)
        logger.info(
            f"{context} Query at {sql.path}:{sql.line} successful: "
            f"{len(results)} result sets, {row_count} rows in {execution_time:.2f}s"
        )
        return results

    def _audit_log(self, context, sql: Located, success: bool,
                   result_sets: int = 0, row_count: int = 0, error=None):
        """Log execution for audit trail."""
        audit_logger.info(
            f"{context} source={sql.path}:{sql.line} sql={sql.value!r} "
            f"success={success} result_sets={result_sets} rows={row_count} error={error}"
        )
