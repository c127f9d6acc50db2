"""Repeated-execution determinism analysis of the control query."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ..checksum.validator import ChecksumResult, ChecksumValidator, MatchType
from ..context import VerificationContext
from ..execution.base import QueryExecutor
from ..execution.database_utils import execute_and_record, fetch_columns
from ..execution.exceptions import QueryException
from ..rewriters.query_rewriter import QueryRewriter
from ..schemas import (
    ClusterType,
    DeterminismAnalysis,
    DeterminismAnalysisRun,
    LimitQueryDeterminismAnalysis,
    QueryBundle,
    QueryConfiguration,
    QueryResult,
    QueryStage,
)
from .limit_analyzer import LimitQueryDeterminismAnalyzer

logger = logging.getLogger(__name__)

LIMIT_VERDICTS = {
    LimitQueryDeterminismAnalysis.DETERMINISTIC: DeterminismAnalysis.DETERMINISTIC,
    LimitQueryDeterminismAnalysis.NON_DETERMINISTIC: DeterminismAnalysis.NON_DETERMINISTIC,
    LimitQueryDeterminismAnalysis.FAILED_DATA_CHANGED: DeterminismAnalysis.FAILED_DATA_CHANGED,
}


@dataclass
class DeterminismAnalysisDetails:
    """Determinism verdict with the audit trail reported on the event."""

    determinism_analysis: DeterminismAnalysis = DeterminismAnalysis.NOT_RUN
    limit_query_analysis: LimitQueryDeterminismAnalysis = LimitQueryDeterminismAnalysis.NOT_RUN
    limit_query_analysis_query_id: Optional[str] = None
    runs: List[DeterminismAnalysisRun] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "determinism_analysis": self.determinism_analysis.value,
            "limit_query_analysis": self.limit_query_analysis.value,
            "limit_query_analysis_query_id": self.limit_query_analysis_query_id,
            "runs": [run.to_dict() for run in self.runs],
        }


class DeterminismAnalyzer:
    """Decides whether a control/test mismatch is explained by the control query.

    The LIMIT fast path is tried first. Otherwise the control query is
    re-run into fresh temporary tables and every run's checksum is compared
    with the original control checksum and with all earlier runs.

    Args:
        executor: Executor bound to the control configuration.
        rewriter: Rewriter used to rebind each run to a new table.
        checksum_validator: Builds and compares checksums.
        context: Receives run table names and query ids.
        max_analysis_runs: Upper bound on repeated control executions.
        enable_limit_analysis: Try the LIMIT fast path first.
        table_prefix: Prefix of the per-run temporary tables.
        run_teardown: Drop per-run tables after each run.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        rewriter: QueryRewriter,
        checksum_validator: ChecksumValidator,
        context: VerificationContext,
        max_analysis_runs: int = 2,
        enable_limit_analysis: bool = True,
        table_prefix: str = "tmp_verifier_d",
        run_teardown: bool = True,
    ):
        self.executor = executor
        self.rewriter = rewriter
        self.checksum_validator = checksum_validator
        self.context = context
        self.max_analysis_runs = max_analysis_runs
        self.enable_limit_analysis = enable_limit_analysis
        self.table_prefix = table_prefix
        self.run_teardown = run_teardown

    def analyze(
        self,
        control_statement: exp.Expression,
        control_configuration: Optional[QueryConfiguration],
        control_bundle: QueryBundle,
        control_checksum: ChecksumResult,
    ) -> DeterminismAnalysisDetails:
        """Analyze the control query.

        Args:
            control_statement: Parsed control source query.
            control_configuration: Configuration the control query runs with.
            control_bundle: The rewritten control query that was verified.
            control_checksum: Checksum of the verified control result.
        """
        details = DeterminismAnalysisDetails(runs=self.context.determinism_analysis_runs)
        details.determinism_analysis = self._analyze(
            details, control_statement, control_configuration, control_bundle, control_checksum
        )
        details.limit_query_analysis_query_id = self.context.limit_query_analysis_query_id
        logger.info("Determinism analysis: %s", details.determinism_analysis.value)
        return details

    def _analyze(
        self,
        details: DeterminismAnalysisDetails,
        control_statement: exp.Expression,
        control_configuration: Optional[QueryConfiguration],
        control_bundle: QueryBundle,
        control_checksum: ChecksumResult,
    ) -> DeterminismAnalysis:
        details.limit_query_analysis = self._analyze_limit(control_bundle, control_checksum.row_count)
        if details.limit_query_analysis in LIMIT_VERDICTS:
            return LIMIT_VERDICTS[details.limit_query_analysis]

        checksums = [control_checksum]
        for i in range(self.max_analysis_runs):
            try:
                checksum = self._run_once(control_statement, control_configuration)
            except QueryException as e:
                logger.warning("Determinism analysis run %d failed: %s", i + 1, e)
                return DeterminismAnalysis.ANALYSIS_FAILED
            except Exception:
                logger.exception("Determinism analysis run %d failed unexpectedly", i + 1)
                return DeterminismAnalysis.ANALYSIS_FAILED

            for previous in checksums:
                match = self.checksum_validator.compare(previous, checksum)
                if match.match_type in (MatchType.SCHEMA_MISMATCH, MatchType.ROW_COUNT_MISMATCH):
                    return DeterminismAnalysis.NON_DETERMINISTIC
                if match.match_type == MatchType.COLUMN_MISMATCH:
                    return DeterminismAnalysis.NON_DETERMINISTIC_COLUMNS
            checksums.append(checksum)

        return DeterminismAnalysis.DETERMINISTIC

    def _analyze_limit(self, control_bundle: QueryBundle, row_count: int) -> LimitQueryDeterminismAnalysis:
        if not self.enable_limit_analysis:
            return LimitQueryDeterminismAnalysis.NOT_RUN
        try:
            statement = sqlglot.parse_one(control_bundle.query, read=self.rewriter.dialect)
        except SqlglotError as e:
            logger.warning("Could not parse rewritten control query for LIMIT analysis: %s", e)
            return LimitQueryDeterminismAnalysis.NOT_RUN

        analyzer = LimitQueryDeterminismAnalyzer(
            self.executor,
            statement,
            row_count,
            self.context,
            enabled=True,
            dialect=self.rewriter.dialect,
        )
        try:
            return analyzer.analyze()
        except QueryException as e:
            logger.warning("LIMIT query analysis failed, falling back to repeated runs: %s", e)
            return LimitQueryDeterminismAnalysis.NOT_RUN

    def _execute(self, sql: str, stage: QueryStage) -> QueryResult:
        return execute_and_record(self.executor, self.context, sql, stage)

    def _run_once(
        self,
        control_statement: exp.Expression,
        control_configuration: Optional[QueryConfiguration],
    ) -> ChecksumResult:
        run = self.context.start_determinism_analysis_run()
        bundle = self.rewriter.rewrite(
            control_statement,
            control_configuration,
            ClusterType.CONTROL,
            stage=QueryStage.DETERMINISM_ANALYSIS_SETUP,
            table_prefix=self.table_prefix,
        )
        run.table_name = bundle.table_name
        try:
            for sql in bundle.setup_queries:
                self._execute(sql, QueryStage.DETERMINISM_ANALYSIS_SETUP)
            try:
                result = self._execute(bundle.query, QueryStage.DETERMINISM_ANALYSIS_MAIN)
            except QueryException as e:
                run.query_id = e.query_id
                raise
            run.query_id = result.stats.query_id

            columns = fetch_columns(
                self.executor, bundle.table_name, QueryStage.DETERMINISM_ANALYSIS_DESCRIBE
            )
            checksum_query = self.checksum_validator.generate_checksum_query(bundle.table_name, columns)
            try:
                checksum_result = self._execute(checksum_query, QueryStage.DETERMINISM_ANALYSIS_CHECKSUM)
            except QueryException as e:
                run.checksum_query_id = e.query_id
                raise
            run.checksum_query_id = checksum_result.stats.query_id
            return self.checksum_validator.get_checksum(columns, checksum_result)
        finally:
            if self.run_teardown:
                self._teardown(bundle)

    def _teardown(self, bundle: QueryBundle) -> None:
        for sql in bundle.teardown_queries:
            try:
                self._execute(sql, QueryStage.DETERMINISM_ANALYSIS_TEARDOWN)
            except QueryException as e:
                logger.warning("Failed to drop %s: %s", bundle.table_name, e)
