"""QueryTorque verifier schemas.

Data structures shared by the verification pipeline:
- Inputs: SourceQuery, QueryConfiguration
- Execution: ClusterType, QueryStage, QueryStats, QueryResult, Column
- Outcomes: EventStatus, SkippedReason, QueryState, DeterminismAnalysis
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ClusterType(str, Enum):
    CONTROL = "CONTROL"
    TEST = "TEST"


class QueryStage(str, Enum):
    """Stage tag attached to every statement sent to a cluster.

    The stage decides which cluster the statement runs on.
    """

    CONTROL_REWRITE = "CONTROL_REWRITE"
    TEST_REWRITE = "TEST_REWRITE"
    CONTROL_SETUP = "CONTROL_SETUP"
    CONTROL_MAIN = "CONTROL_MAIN"
    CONTROL_TEARDOWN = "CONTROL_TEARDOWN"
    TEST_SETUP = "TEST_SETUP"
    TEST_MAIN = "TEST_MAIN"
    TEST_TEARDOWN = "TEST_TEARDOWN"
    CONTROL_DESCRIBE = "CONTROL_DESCRIBE"
    TEST_DESCRIBE = "TEST_DESCRIBE"
    CONTROL_CHECKSUM = "CONTROL_CHECKSUM"
    TEST_CHECKSUM = "TEST_CHECKSUM"
    DETERMINISM_ANALYSIS_SETUP = "DETERMINISM_ANALYSIS_SETUP"
    DETERMINISM_ANALYSIS_MAIN = "DETERMINISM_ANALYSIS_MAIN"
    DETERMINISM_ANALYSIS_DESCRIBE = "DETERMINISM_ANALYSIS_DESCRIBE"
    DETERMINISM_ANALYSIS_CHECKSUM = "DETERMINISM_ANALYSIS_CHECKSUM"
    DETERMINISM_ANALYSIS_TEARDOWN = "DETERMINISM_ANALYSIS_TEARDOWN"
    LIMIT_QUERY_ANALYSIS = "LIMIT_QUERY_ANALYSIS"

    @property
    def target_cluster(self) -> ClusterType:
        if self.value.startswith("TEST_"):
            return ClusterType.TEST
        return ClusterType.CONTROL

    @property
    def display_name(self) -> str:
        """Name used in error messages, e.g. ``CONTROL SETUP`` or ``REWRITE``."""
        if self in (QueryStage.CONTROL_REWRITE, QueryStage.TEST_REWRITE):
            return "REWRITE"
        return self.value.replace("_", " ")

    @property
    def is_checksum(self) -> bool:
        return self.value.endswith("_CHECKSUM")

    @property
    def is_main(self) -> bool:
        return self.value.endswith("_MAIN")

    @classmethod
    def for_cluster(cls, cluster: ClusterType, step: str) -> "QueryStage":
        """Look up the stage for a cluster and step, e.g. (TEST, "SETUP")."""
        return cls(f"{cluster.value}_{step}")


class QueryState(str, Enum):
    """Per-cluster state reported in the event error message."""

    NOT_RUN = "NOT_RUN"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    FAILED_TO_SETUP = "FAILED_TO_SETUP"
    FAILED_TO_TEARDOWN = "FAILED_TO_TEARDOWN"
    TIMED_OUT = "TIMED_OUT"


class EventStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    FAILED_RESOLVED = "FAILED_RESOLVED"
    SKIPPED = "SKIPPED"


class SkippedReason(str, Enum):
    FAILED_BEFORE_CONTROL_QUERY = "FAILED_BEFORE_CONTROL_QUERY"
    CONTROL_SETUP_QUERY_FAILED = "CONTROL_SETUP_QUERY_FAILED"
    NON_DETERMINISTIC = "NON_DETERMINISTIC"


class DeterminismAnalysis(str, Enum):
    NOT_RUN = "NOT_RUN"
    DETERMINISTIC = "DETERMINISTIC"
    NON_DETERMINISTIC = "NON_DETERMINISTIC"
    NON_DETERMINISTIC_COLUMNS = "NON_DETERMINISTIC_COLUMNS"
    FAILED_DATA_CHANGED = "FAILED_DATA_CHANGED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"

    @property
    def is_non_deterministic(self) -> bool:
        return self in (
            DeterminismAnalysis.NON_DETERMINISTIC,
            DeterminismAnalysis.NON_DETERMINISTIC_COLUMNS,
        )


class LimitQueryDeterminismAnalysis(str, Enum):
    NOT_RUN = "NOT_RUN"
    DETERMINISTIC = "DETERMINISTIC"
    NON_DETERMINISTIC = "NON_DETERMINISTIC"
    FAILED_DATA_CHANGED = "FAILED_DATA_CHANGED"


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class QueryConfiguration:
    """Where and how a query runs on one cluster."""

    catalog: Optional[str] = None
    schema: Optional[str] = None
    username: Optional[str] = None  # Not used by DuckDB, kept for event audit
    password: Optional[str] = None
    session_properties: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QueryConfiguration":
        data = data or {}
        return cls(
            catalog=data.get("catalog"),
            schema=data.get("schema"),
            username=data.get("username"),
            password=data.get("password"),
            session_properties=dict(data.get("session_properties") or {}),
        )


@dataclass(frozen=True)
class SourceQuery:
    """One control/test query pair to verify."""

    suite: str
    name: str
    control_query: str
    test_query: str
    control_configuration: QueryConfiguration = field(default_factory=QueryConfiguration)
    test_configuration: QueryConfiguration = field(default_factory=QueryConfiguration)

    def query(self, cluster: ClusterType) -> str:
        return self.control_query if cluster == ClusterType.CONTROL else self.test_query

    def configuration(self, cluster: ClusterType) -> QueryConfiguration:
        if cluster == ClusterType.CONTROL:
            return self.control_configuration
        return self.test_configuration

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceQuery":
        """Build from a suite file entry.

        ``query`` may be given instead of separate control/test queries.
        """
        control_query = data.get("control_query") or data.get("query")
        test_query = data.get("test_query") or data.get("query")
        if not control_query or not test_query:
            raise ValueError(f"Source query {data.get('name')!r} has no control/test query")
        shared = data.get("configuration")
        return cls(
            suite=data.get("suite", "default"),
            name=data["name"],
            control_query=control_query,
            test_query=test_query,
            control_configuration=QueryConfiguration.from_dict(
                data.get("control_configuration") or shared
            ),
            test_configuration=QueryConfiguration.from_dict(
                data.get("test_configuration") or shared
            ),
        )


# =============================================================================
# Execution results
# =============================================================================


@dataclass(frozen=True)
class Column:
    """Result column: name and engine type name."""

    name: str
    type: str


@dataclass(frozen=True)
class QueryStats:
    """Execution statistics of one statement."""

    query_id: str
    wall_time_secs: float = 0.0
    cpu_time_secs: float = 0.0
    peak_memory_bytes: Optional[int] = None


@dataclass(frozen=True)
class QueryResult:
    """Rows returned by a statement, with the statement's stats."""

    rows: Tuple[Any, ...]
    columns: Tuple[str, ...]
    stats: QueryStats

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass(frozen=True)
class QueryBundle:
    """A source query rewritten against a temporary table."""

    table_name: str
    setup_queries: Tuple[str, ...]
    query: str
    teardown_queries: Tuple[str, ...]
    cluster: ClusterType


@dataclass
class DeterminismAnalysisRun:
    """Audit record of one repeated control execution."""

    table_name: Optional[str] = None
    query_id: Optional[str] = None
    checksum_query_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "query_id": self.query_id,
            "checksum_query_id": self.checksum_query_id,
        }
