"""QueryTorque Verifier - control/test query result verification.

Verifies that a control and a test deployment of a SQL engine produce
equivalent results for the same query pair, separating real regressions
from floating-point noise and non-deterministic queries.

Modules:
- schemas: Data model and outcome enums
- execution: Cluster executors, error classification, retries
- rewriters: Temporary-table rewriting
- checksum: Type-aware checksums and comparison
- determinism: Repeated-run and LIMIT determinism analysis
- resolvers: Reclassification of known-benign failures
- verification: Verification of one query pair
- manager: Concurrent verification of many pairs
"""

__version__ = "0.1.0"

from .events import JsonEventClient, QueryInfo, VerifierQueryEvent
from .execution import DuckDBExecutor, QueryException
from .manager import VerificationManager, create_verification, load_source_queries
from .schemas import (
    DeterminismAnalysis,
    EventStatus,
    QueryConfiguration,
    SkippedReason,
    SourceQuery,
)
from .verification import DataVerification

__all__ = [
    "DataVerification",
    "DeterminismAnalysis",
    "DuckDBExecutor",
    "EventStatus",
    "JsonEventClient",
    "QueryConfiguration",
    "QueryException",
    "QueryInfo",
    "SkippedReason",
    "SourceQuery",
    "VerificationManager",
    "VerifierQueryEvent",
    "create_verification",
    "load_source_queries",
]
