"""Query failures raised by executors and the classifier that builds them."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Type

import duckdb

from ..errors import VerifierError
from ..schemas import QueryStage, QueryStats


class QueryException(VerifierError):
    """A statement failed on a cluster.

    Carries the classified error code, whether the failure is worth retrying,
    the stage it happened in and, when available, stats of the failed query.
    """

    source = "DUCKDB"

    def __init__(
        self,
        message: str,
        error_code: str,
        stage: QueryStage,
        retryable: bool = False,
        query_stats: Optional[QueryStats] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.stage = stage
        self.retryable = retryable
        self.query_stats = query_stats

    @property
    def error_code_name(self) -> str:
        """Error code as reported on events, e.g. ``DUCKDB(SYNTAX_ERROR)``."""
        return f"{self.source}({self.error_code})"

    @property
    def query_id(self) -> Optional[str]:
        return self.query_stats.query_id if self.query_stats else None

    def __str__(self) -> str:
        return f"{self.error_code_name}: {self.message}"


class ClusterConnectionException(QueryException):
    """Transport-level failure talking to a cluster. Always retryable."""

    def __init__(
        self,
        message: str,
        stage: QueryStage,
        query_stats: Optional[QueryStats] = None,
    ):
        super().__init__(
            message,
            error_code="REMOTE_ERROR",
            stage=stage,
            retryable=True,
            query_stats=query_stats,
        )


# Ordered (exception types, error code, retryable). First match wins.
DUCKDB_ERROR_CODES: Sequence[Tuple[Tuple[Type[BaseException], ...], str, bool]] = (
    ((duckdb.ParserException,), "SYNTAX_ERROR", False),
    ((duckdb.CatalogException,), "CATALOG_ERROR", False),
    ((duckdb.BinderException,), "BINDER_ERROR", False),
    ((duckdb.ConversionException, duckdb.InvalidInputException), "INVALID_INPUT", False),
    ((duckdb.OutOfMemoryException,), "EXCEEDED_GLOBAL_MEMORY_LIMIT", False),
    ((duckdb.InterruptException,), "EXCEEDED_TIME_LIMIT", False),
    ((duckdb.InternalException,), "COMPILER_ERROR", False),
    ((duckdb.NotImplementedException,), "NOT_SUPPORTED", False),
    (
        (duckdb.IOException, duckdb.ConnectionException, duckdb.TransactionException),
        "REMOTE_ERROR",
        True,
    ),
)


class DuckDBExceptionClassifier:
    """Maps raw DuckDB exceptions to QueryException error codes."""

    def __init__(
        self,
        error_codes: Sequence[Tuple[Tuple[Type[BaseException], ...], str, bool]] = DUCKDB_ERROR_CODES,
        default_code: str = "GENERIC_ERROR",
    ):
        self.error_codes = error_codes
        self.default_code = default_code

    def classify(
        self,
        error: BaseException,
        stage: QueryStage,
        query_stats: Optional[QueryStats] = None,
    ) -> QueryException:
        if isinstance(error, QueryException):
            return error

        message = str(error).strip() or type(error).__name__
        for types, code, retryable in self.error_codes:
            if isinstance(error, types):
                if code == "REMOTE_ERROR":
                    return ClusterConnectionException(message, stage, query_stats)
                return QueryException(message, code, stage, retryable, query_stats)
        return QueryException(message, self.default_code, stage, False, query_stats)
