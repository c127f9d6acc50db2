"""Helpers for running verifier statements and inspecting their tables."""

import logging
from typing import List

from ..context import VerificationContext
from ..schemas import Column, QueryResult, QueryStage
from .base import QueryExecutor
from .exceptions import QueryException

logger = logging.getLogger(__name__)


def fetch_columns(executor: QueryExecutor, relation: str, stage: QueryStage) -> List[Column]:
    """Describe a table or query and return its columns in order.

    Args:
        executor: Executor used to run the DESCRIBE statement.
        relation: Table name or SELECT statement to describe.
        stage: Stage tag; selects the cluster.

    Returns:
        List of Column with the engine type name.
    """
    result = executor.execute(f"DESCRIBE {relation}", stage)
    rows = result.as_dicts()
    columns = [Column(name=row["column_name"], type=str(row["column_type"])) for row in rows]
    logger.debug("%s has %d columns", relation, len(columns))
    return columns


def execute_and_record(
    executor: QueryExecutor,
    context: VerificationContext,
    sql: str,
    stage: QueryStage,
) -> QueryResult:
    """Execute a statement and record its query id under its stage.

    The id of a failed statement is recorded too when the failure carries one.
    """
    try:
        result = executor.execute(sql, stage)
    except QueryException as e:
        if e.query_id:
            context.record_query_id(stage, e.query_id)
        raise
    context.record_query_id(stage, result.stats.query_id)
    return result
