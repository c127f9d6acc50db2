"""Verification of one control/test query pair."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlglot import exp

from .checksum.validator import ChecksumResult, ChecksumValidator, MatchResult
from .context import VerificationContext
from .determinism.analyzer import DeterminismAnalysisDetails, DeterminismAnalyzer
from .events import QueryInfo, VerifierQueryEvent
from .execution.base import QueryExecutor
from .execution.database_utils import execute_and_record, fetch_columns
from .execution.exceptions import QueryException
from .resolvers.base import FailureContext
from .resolvers.manager import FailureResolverManager
from .rewriters.query_rewriter import QueryParseError, QueryRewriter
from .schemas import (
    ClusterType,
    EventStatus,
    QueryBundle,
    QueryResult,
    QueryStage,
    QueryState,
    SkippedReason,
    SourceQuery,
)

logger = logging.getLogger(__name__)


class DataVerification:
    """Runs one source query pair through the verification stages.

    Stages run in order: rewrite, control setup and main, test setup and
    main, describe and checksum on both clusters, compare, and on a
    row-count or column mismatch, determinism analysis of the control query.
    Temporary tables are dropped at the end whatever the outcome.

    ``run`` returns at most one event and never raises. It returns None when
    either query cannot be parsed.

    Args:
        source_query: The pair to verify.
        executor: Executor bound to the pair's configurations.
        rewriter: Parses and rewrites both queries.
        checksum_validator: Builds and compares checksums.
        determinism_analyzer: Analyzer sharing ``context``.
        failure_resolver_manager: Reclassifies benign execution failures.
        context: Scratch record owned by this verification.
        test_id: Identifier of the verifier run, copied onto the event.
        run_determinism_analysis: Analyze row-count and column mismatches.
        run_teardown: Drop temporary tables when done.
    """

    def __init__(
        self,
        source_query: SourceQuery,
        executor: QueryExecutor,
        rewriter: QueryRewriter,
        checksum_validator: ChecksumValidator,
        determinism_analyzer: DeterminismAnalyzer,
        failure_resolver_manager: FailureResolverManager,
        context: VerificationContext,
        test_id: str = "default",
        run_determinism_analysis: bool = True,
        run_teardown: bool = True,
    ):
        self.source_query = source_query
        self.executor = executor
        self.rewriter = rewriter
        self.checksum_validator = checksum_validator
        self.determinism_analyzer = determinism_analyzer
        self.failure_resolver_manager = failure_resolver_manager
        self.context = context
        self.test_id = test_id
        self.run_determinism_analysis = run_determinism_analysis
        self.run_teardown = run_teardown

        self.states: Dict[ClusterType, QueryState] = {c: QueryState.NOT_RUN for c in ClusterType}
        self.query_infos: Dict[ClusterType, QueryInfo] = {}
        self.main_results: Dict[ClusterType, QueryResult] = {}
        for cluster in ClusterType:
            configuration = source_query.configuration(cluster)
            self.query_infos[cluster] = QueryInfo(
                catalog=configuration.catalog,
                schema=configuration.schema,
                original_query=source_query.query(cluster),
            )

    @property
    def label(self) -> str:
        return f"{self.source_query.suite}.{self.source_query.name}"

    def run(self) -> Optional[VerifierQueryEvent]:
        try:
            return self._run()
        except Exception as e:
            logger.exception("Verification %s failed unexpectedly", self.label)
            return self._event(
                EventStatus.FAILED,
                error_code="VERIFIER_INTERNAL_ERROR",
                error_message=self._error_message(f"{type(e).__name__}: {e}"),
            )

    def _run(self) -> Optional[VerifierQueryEvent]:
        try:
            statements = {
                cluster: self.rewriter.parse(self.source_query.query(cluster))
                for cluster in ClusterType
            }
        except QueryParseError as e:
            logger.warning("Skipping %s, query cannot be parsed: %s", self.label, e)
            return None

        try:
            bundles = {
                cluster: self.rewriter.rewrite(
                    statements[cluster], self.source_query.configuration(cluster), cluster
                )
                for cluster in ClusterType
            }
        except QueryException as e:
            return self._failure_event(e, EventStatus.SKIPPED, SkippedReason.FAILED_BEFORE_CONTROL_QUERY)

        for cluster, bundle in bundles.items():
            info = self.query_infos[cluster]
            info.setup_queries = list(bundle.setup_queries)
            info.query = bundle.query
            info.teardown_queries = list(bundle.teardown_queries)

        try:
            return self._verify(statements[ClusterType.CONTROL], bundles)
        finally:
            if self.run_teardown:
                for bundle in bundles.values():
                    self._teardown(bundle)

    def _verify(
        self,
        control_statement: exp.Expression,
        bundles: Dict[ClusterType, QueryBundle],
    ) -> VerifierQueryEvent:
        try:
            self._run_bundle(bundles[ClusterType.CONTROL])
        except QueryException as e:
            return self._failure_event(e, EventStatus.SKIPPED, SkippedReason.CONTROL_SETUP_QUERY_FAILED)

        try:
            self._run_bundle(bundles[ClusterType.TEST])
            control_checksum = self._checksum(bundles[ClusterType.CONTROL])
            test_checksum = self._checksum(bundles[ClusterType.TEST])
        except QueryException as e:
            return self._resolve_failure(e)

        match = self.checksum_validator.compare(control_checksum, test_checksum)
        if match.is_matched:
            return self._event(EventStatus.SUCCEEDED)
        if not (self.run_determinism_analysis and match.is_mismatch_possibly_caused_by_non_determinism):
            return self._mismatch_event(match, EventStatus.FAILED)

        details = self.determinism_analyzer.analyze(
            control_statement,
            self.source_query.control_configuration,
            bundles[ClusterType.CONTROL],
            control_checksum,
        )
        if details.determinism_analysis.is_non_deterministic:
            return self._mismatch_event(match, EventStatus.SKIPPED, SkippedReason.NON_DETERMINISTIC, details)
        return self._mismatch_event(match, EventStatus.FAILED, details=details)

    def _run_bundle(self, bundle: QueryBundle) -> None:
        cluster = bundle.cluster
        info = self.query_infos[cluster]

        setup_stage = QueryStage.for_cluster(cluster, "SETUP")
        try:
            for sql in bundle.setup_queries:
                result = execute_and_record(self.executor, self.context, sql, setup_stage)
                info.setup_query_ids.append(result.stats.query_id)
        except QueryException:
            self.states[cluster] = QueryState.FAILED_TO_SETUP
            raise

        main_stage = QueryStage.for_cluster(cluster, "MAIN")
        try:
            result = execute_and_record(self.executor, self.context, bundle.query, main_stage)
        except QueryException as e:
            info.query_id = e.query_id
            timed_out = e.error_code == "EXCEEDED_TIME_LIMIT"
            self.states[cluster] = QueryState.TIMED_OUT if timed_out else QueryState.FAILED
            raise

        self.states[cluster] = QueryState.SUCCEEDED
        self.main_results[cluster] = result
        info.query_id = result.stats.query_id
        info.wall_time_secs = result.stats.wall_time_secs
        info.cpu_time_secs = result.stats.cpu_time_secs
        info.peak_memory_bytes = result.stats.peak_memory_bytes

    def _checksum(self, bundle: QueryBundle) -> ChecksumResult:
        cluster = bundle.cluster
        info = self.query_infos[cluster]
        columns = fetch_columns(self.executor, bundle.table_name, QueryStage.for_cluster(cluster, "DESCRIBE"))
        info.checksum_query = self.checksum_validator.generate_checksum_query(bundle.table_name, columns)
        stage = QueryStage.for_cluster(cluster, "CHECKSUM")
        try:
            result = execute_and_record(self.executor, self.context, info.checksum_query, stage)
        except QueryException as e:
            info.checksum_query_id = e.query_id
            raise
        info.checksum_query_id = result.stats.query_id
        return self.checksum_validator.get_checksum(columns, result)

    def _teardown(self, bundle: QueryBundle) -> None:
        stage = QueryStage.for_cluster(bundle.cluster, "TEARDOWN")
        info = self.query_infos[bundle.cluster]
        for sql in bundle.teardown_queries:
            try:
                result = execute_and_record(self.executor, self.context, sql, stage)
            except QueryException as e:
                logger.warning("Teardown of %s failed: %s", bundle.table_name, e)
                continue
            info.teardown_query_ids.append(result.stats.query_id)

    def _resolve_failure(self, error: QueryException) -> VerifierQueryEvent:
        control = self.main_results.get(ClusterType.CONTROL)
        test = self.main_results.get(ClusterType.TEST)
        resolution = self.failure_resolver_manager.resolve(FailureContext(
            exception=error,
            control_stats=control.stats if control else None,
            test_stats=test.stats if test else None,
        ))
        if resolution is None:
            return self._failure_event(error, EventStatus.FAILED)
        return self._failure_event(error, EventStatus.FAILED_RESOLVED, resolve_message=resolution)

    def _error_message(self, detail: str) -> str:
        return (
            f"Test state {self.states[ClusterType.TEST].value}, "
            f"Control state {self.states[ClusterType.CONTROL].value}.\n\n{detail}"
        )

    def _failure_event(
        self,
        error: QueryException,
        status: EventStatus,
        skipped_reason: Optional[SkippedReason] = None,
        resolve_message: Optional[str] = None,
    ) -> VerifierQueryEvent:
        cluster = error.stage.target_cluster
        detail = f"{error.stage.display_name} query failed on {cluster.value} cluster:\n{error.message}"
        logger.info("%s: %s %s", self.label, status.value, error.error_code_name)
        return self._event(
            status,
            skipped_reason=skipped_reason,
            error_code=error.error_code_name,
            error_message=self._error_message(detail),
            resolve_message=resolve_message,
        )

    def _mismatch_event(
        self,
        match: MatchResult,
        status: EventStatus,
        skipped_reason: Optional[SkippedReason] = None,
        details: Optional[DeterminismAnalysisDetails] = None,
    ) -> VerifierQueryEvent:
        logger.info("%s: %s %s", self.label, status.value, match.match_type.value)
        return self._event(
            status,
            skipped_reason=skipped_reason,
            error_code=match.match_type.value,
            error_message=self._error_message(match.results_summary()),
            details=details,
        )

    def _event(
        self,
        status: EventStatus,
        skipped_reason: Optional[SkippedReason] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        resolve_message: Optional[str] = None,
        details: Optional[DeterminismAnalysisDetails] = None,
    ) -> VerifierQueryEvent:
        return VerifierQueryEvent(
            suite=self.source_query.suite,
            name=self.source_query.name,
            test_id=self.test_id,
            status=status,
            control_query_info=self.query_infos[ClusterType.CONTROL],
            test_query_info=self.query_infos[ClusterType.TEST],
            skipped_reason=skipped_reason,
            determinism_analysis=details.determinism_analysis if details else None,
            determinism_analysis_details=details,
            error_code=error_code,
            error_message=error_message,
            resolve_message=resolve_message,
        )
