"""Pytest configuration and fixtures for qt-verifier tests."""

from typing import Callable, Dict, List, Optional, Sequence

import pytest

from qt_shared.config import VerifierSettings
from qt_verifier.context import VerificationContext
from qt_verifier.execution.duckdb_executor import DuckDBExecutor
from qt_verifier.execution.exceptions import QueryException
from qt_verifier.execution.retry import RetryPolicy
from qt_verifier.manager import create_verification
from qt_verifier.schemas import QueryResult, QueryStage, QueryStats, SourceQuery
from qt_verifier.verification import DataVerification


SUITE = "test-suite"
NAME = "test-query"
TEST_ID = "test-id"


# =============================================================================
# EXECUTOR DOUBLES
# =============================================================================

class FakeExecutor:
    """Returns the same canned result for every statement and records the SQL."""

    def __init__(self, rows: Sequence[tuple] = (), columns: Sequence[str] = ()):
        self.rows = tuple(rows)
        self.columns = tuple(columns)
        self.statements: List[tuple] = []

    @property
    def last_sql(self) -> Optional[str]:
        return self.statements[-1][0] if self.statements else None

    def execute(self, sql, stage, converter=None):
        self.statements.append((sql, stage))
        return QueryResult(rows=self.rows, columns=self.columns, stats=QueryStats(query_id="id"))


class StageFailingExecutor:
    """Delegates to a real executor but fails chosen stages."""

    def __init__(self, delegate, failures: Dict[QueryStage, QueryException]):
        self.delegate = delegate
        self.failures = failures
        self.stages: List[QueryStage] = []

    def execute(self, sql, stage, converter=None):
        self.stages.append(stage)
        if stage in self.failures:
            raise self.failures[stage]
        return self.delegate.execute(sql, stage, converter)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_executor_factory() -> Callable[..., FakeExecutor]:
    return FakeExecutor


@pytest.fixture
def stage_failing_executor_factory() -> Callable[..., StageFailingExecutor]:
    return StageFailingExecutor


@pytest.fixture
def context() -> VerificationContext:
    return VerificationContext()


@pytest.fixture
def settings() -> VerifierSettings:
    return VerifierSettings(test_id=TEST_ID, retry_max_attempts=1, _env_file=None)


@pytest.fixture
def duckdb_executor():
    """In-memory control and test clusters."""
    executor = DuckDBExecutor(retry_policy=RetryPolicy(max_attempts=1))
    executor.connect()
    yield executor
    executor.close()


@pytest.fixture
def source_query_factory() -> Callable[[str, str], SourceQuery]:
    def _make(control_query: str, test_query: str) -> SourceQuery:
        return SourceQuery(SUITE, NAME, control_query, test_query)
    return _make


@pytest.fixture
def verification_factory(duckdb_executor, settings, source_query_factory):
    """Build a DataVerification against the in-memory clusters.

    Pass ``executor`` to wrap or replace the DuckDB executor and keyword
    settings overrides to change behavior.
    """
    def _make(control_query: str, test_query: str, executor=None, **overrides) -> DataVerification:
        run_settings = settings.model_copy(update=overrides) if overrides else settings
        return create_verification(
            source_query_factory(control_query, test_query),
            executor or duckdb_executor,
            run_settings,
        )
    return _make
