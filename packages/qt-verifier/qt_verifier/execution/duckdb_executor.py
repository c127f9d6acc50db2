"""DuckDB executor standing in for the control and test clusters."""

from __future__ import annotations

import itertools
import logging
import re
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import duckdb
from sqlglot import exp

from ..schemas import ClusterType, QueryConfiguration, QueryResult, QueryStage, QueryStats
from .base import RowConverter
from .exceptions import DuckDBExceptionClassifier, QueryException
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

SETTING_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_QUERY_COUNTER = itertools.count(1)


def new_query_id() -> str:
    """Generate a query id in the ``YYYYMMDD_HHMMSS_NNNNN_xxxxx`` form."""
    now = datetime.now(timezone.utc)
    return f"{now:%Y%m%d_%H%M%S}_{next(_QUERY_COUNTER):05d}_{uuid.uuid4().hex[:5]}"


class DuckDBExecutor:
    """Runs verifier statements on two DuckDB databases.

    One database plays the control cluster, the other the test cluster.
    Each statement runs on its own cursor, so one executor can be shared by
    many verifications running on different threads. Per-verification query
    configurations are attached with ``with_configurations``.

    Usage:
        with DuckDBExecutor("control.duckdb", "test.duckdb") as executor:
            result = executor.execute("SELECT 1", QueryStage.CONTROL_MAIN)

    Args:
        control_database: Path to the control database or ":memory:".
        test_database: Path to the test database or ":memory:".
        timeouts: Optional per-cluster statement timeout in seconds.
        retry_policy: Retry policy for retryable failures.
        classifier: Maps DuckDB exceptions to error codes.
    """

    def __init__(
        self,
        control_database: str = ":memory:",
        test_database: str = ":memory:",
        timeouts: Optional[Dict[ClusterType, Optional[float]]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        classifier: Optional[DuckDBExceptionClassifier] = None,
    ):
        self.databases = {
            ClusterType.CONTROL: control_database,
            ClusterType.TEST: test_database,
        }
        self.timeouts = dict(timeouts or {})
        self.retry_policy = retry_policy or RetryPolicy()
        self.classifier = classifier or DuckDBExceptionClassifier()
        self.configurations: Dict[ClusterType, QueryConfiguration] = {}
        self._connections: Dict[ClusterType, duckdb.DuckDBPyConnection] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "DuckDBExecutor":
        return cls(
            control_database=settings.control_database,
            test_database=settings.test_database,
            timeouts={
                ClusterType.CONTROL: settings.control_timeout_seconds,
                ClusterType.TEST: settings.test_timeout_seconds,
            },
            retry_policy=RetryPolicy.from_settings(settings),
        )

    def connect(self) -> None:
        """Open both cluster connections."""
        for cluster in ClusterType:
            self._connection(cluster)

    def close(self) -> None:
        """Close both cluster connections."""
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()

    def __enter__(self) -> "DuckDBExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def with_configurations(
        self,
        control_configuration: QueryConfiguration,
        test_configuration: QueryConfiguration,
    ) -> "DuckDBExecutor":
        """Return a view of this executor bound to per-cluster configurations.

        The view shares connections with this executor; closing either
        closes both.
        """
        bound = DuckDBExecutor.__new__(DuckDBExecutor)
        bound.__dict__.update(self.__dict__)
        bound.configurations = {
            ClusterType.CONTROL: control_configuration,
            ClusterType.TEST: test_configuration,
        }
        return bound

    def _connection(self, cluster: ClusterType) -> duckdb.DuckDBPyConnection:
        with self._lock:
            conn = self._connections.get(cluster)
            if conn is None:
                conn = duckdb.connect(database=self.databases[cluster])
                self._connections[cluster] = conn
            return conn

    def execute_script(self, sql_script: str, cluster: ClusterType) -> None:
        """Execute a multi-statement script on one cluster, e.g. to seed tables."""
        self._connection(cluster).execute(sql_script)

    def execute(
        self,
        sql: str,
        stage: QueryStage,
        converter: Optional[RowConverter] = None,
    ) -> QueryResult:
        """Execute SQL on the stage's cluster.

        Args:
            sql: Statement to execute.
            stage: Stage tag; decides the target cluster.
            converter: Optional function applied to every returned row.

        Returns:
            QueryResult with rows, column names and stats.

        Raises:
            QueryException: If the statement fails after retries.
        """
        return self.retry_policy.run(
            lambda: self._execute_once(sql, stage, converter),
            description=f"{stage.value} query",
        )

    def _execute_once(
        self,
        sql: str,
        stage: QueryStage,
        converter: Optional[RowConverter],
    ) -> QueryResult:
        cluster = stage.target_cluster
        query_id = new_query_id()
        cursor = self._connection(cluster).cursor()
        timer: Optional[threading.Timer] = None
        wall_started = time.monotonic()
        cpu_started = time.process_time()

        def _stats() -> QueryStats:
            return QueryStats(
                query_id=query_id,
                wall_time_secs=time.monotonic() - wall_started,
                cpu_time_secs=time.process_time() - cpu_started,
            )

        try:
            self._apply_configuration(cursor, cluster, stage)
            timeout = self.timeouts.get(cluster)
            if timeout:
                timer = threading.Timer(timeout, cursor.interrupt)
                timer.daemon = True
                timer.start()

            cursor.execute(sql)
            if cursor.description:
                columns = tuple(desc[0] for desc in cursor.description)
                rows = cursor.fetchall()
            else:
                columns, rows = (), []
        except duckdb.Error as e:
            error = self.classifier.classify(e, stage, _stats())
            logger.debug("[%s] %s failed: %s", query_id, stage.value, error)
            raise error from e
        finally:
            if timer is not None:
                timer.cancel()
            cursor.close()

        if converter is not None:
            rows = [converter(row) for row in rows]

        stats = _stats()
        logger.debug(
            "[%s] %s on %s: %d rows in %.3fs",
            query_id, stage.value, cluster.value, len(rows), stats.wall_time_secs,
        )
        return QueryResult(rows=tuple(rows), columns=columns, stats=stats)

    def _apply_configuration(
        self,
        cursor: duckdb.DuckDBPyConnection,
        cluster: ClusterType,
        stage: QueryStage,
    ) -> None:
        configuration = self.configurations.get(cluster)
        if configuration is None:
            return

        if configuration.catalog or configuration.schema:
            target = ".".join(
                exp.to_identifier(part, quoted=True).sql(dialect="duckdb")
                for part in (configuration.catalog, configuration.schema)
                if part
            )
            cursor.execute(f"USE {target}")

        for name, value in configuration.session_properties.items():
            if not SETTING_NAME_PATTERN.match(name):
                raise QueryException(
                    f"Invalid session property name: {name!r}",
                    error_code="INVALID_SESSION_PROPERTY",
                    stage=stage,
                )
            cursor.execute(f"SET {name} = {exp.Literal.string(str(value)).sql(dialect='duckdb')}")
