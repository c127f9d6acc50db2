"""Protocol for cluster executors."""

from typing import Any, Callable, Optional, Protocol

from ..schemas import QueryResult, QueryStage

RowConverter = Callable[[tuple], Any]


class QueryExecutor(Protocol):
    """Protocol for executors that run statements against the clusters.

    The stage decides the target cluster. Failures are raised as
    QueryException after the executor's own retries are exhausted.
    """

    def execute(
        self,
        sql: str,
        stage: QueryStage,
        converter: Optional[RowConverter] = None,
    ) -> QueryResult:
        """Execute one statement and return its rows, columns and stats."""
        ...
