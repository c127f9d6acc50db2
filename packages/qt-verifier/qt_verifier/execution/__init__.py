"""Cluster execution: executors, error classification and retries."""

from .base import QueryExecutor, RowConverter
from .database_utils import execute_and_record, fetch_columns
from .duckdb_executor import DuckDBExecutor, new_query_id
from .exceptions import (
    ClusterConnectionException,
    DuckDBExceptionClassifier,
    QueryException,
)
from .retry import RetryPolicy

__all__ = [
    "QueryExecutor",
    "RowConverter",
    "execute_and_record",
    "fetch_columns",
    "DuckDBExecutor",
    "new_query_id",
    "ClusterConnectionException",
    "DuckDBExceptionClassifier",
    "QueryException",
    "RetryPolicy",
]
