"""Runs many verifications on a worker pool."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Union

from qt_shared.config import VerifierSettings

from .checksum.validator import ChecksumValidator
from .context import VerificationContext
from .determinism.analyzer import DeterminismAnalyzer
from .events import EventClient, VerifierQueryEvent
from .execution.base import QueryExecutor
from .resolvers.manager import FailureResolverManager
from .rewriters.query_rewriter import QueryRewriter
from .schemas import ClusterType, SourceQuery
from .verification import DataVerification

logger = logging.getLogger(__name__)


def load_source_queries(path: Union[str, Path]) -> List[SourceQuery]:
    """Load source queries from a JSON suite file.

    The file holds either a list of query entries or an object with a
    ``suite`` name and a ``queries`` list. Entries without their own
    ``suite`` inherit the file's.

    Raises:
        ValueError: If the file has neither shape or an entry is incomplete.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        suite = data.get("suite", Path(path).stem)
        entries = data.get("queries")
    else:
        suite = Path(path).stem
        entries = data
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a list of queries")

    queries = []
    for entry in entries:
        queries.append(SourceQuery.from_dict({"suite": suite, **entry}))
    logger.info("Loaded %d source queries from %s", len(queries), path)
    return queries


def create_verification(
    source_query: SourceQuery,
    executor: QueryExecutor,
    settings: VerifierSettings,
    failure_resolver_manager: Optional[FailureResolverManager] = None,
) -> DataVerification:
    """Wire up a DataVerification for one source query.

    Executors that support per-query configurations are bound to the
    pair's control and test configurations.
    """
    if hasattr(executor, "with_configurations"):
        executor = executor.with_configurations(
            source_query.control_configuration, source_query.test_configuration
        )

    context = VerificationContext()
    rewriter = QueryRewriter(
        executor,
        dialect=settings.dialect,
        table_prefixes={
            ClusterType.CONTROL: settings.control_table_prefix,
            ClusterType.TEST: settings.test_table_prefix,
        },
        decimal_literals_as_double=settings.decimal_literals_as_double,
    )
    checksum_validator = ChecksumValidator.from_settings(settings)
    determinism_analyzer = DeterminismAnalyzer(
        executor,
        rewriter,
        checksum_validator,
        context,
        max_analysis_runs=settings.max_determinism_analysis_runs,
        enable_limit_analysis=settings.enable_limit_analysis,
        table_prefix=settings.determinism_table_prefix,
    )
    return DataVerification(
        source_query,
        executor,
        rewriter,
        checksum_validator,
        determinism_analyzer,
        failure_resolver_manager or FailureResolverManager.default(),
        context,
        test_id=settings.test_id,
        run_determinism_analysis=settings.run_determinism_analysis,
    )


class VerificationManager:
    """Verifies source queries concurrently and publishes their events.

    Usage:
        with DuckDBExecutor.from_settings(settings) as executor:
            manager = VerificationManager(executor, settings, [JsonEventClient()])
            events = manager.run(load_source_queries("suite.json"))

    Args:
        executor: Shared, thread-safe executor.
        settings: Verifier settings.
        event_clients: Clients every event is posted to.
        failure_resolver_manager: Defaults to the built-in resolver order.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        settings: VerifierSettings,
        event_clients: Sequence[EventClient] = (),
        failure_resolver_manager: Optional[FailureResolverManager] = None,
    ):
        self.executor = executor
        self.settings = settings
        self.event_clients = list(event_clients)
        self.failure_resolver_manager = failure_resolver_manager or FailureResolverManager.default()

    def verify(self, source_query: SourceQuery) -> Optional[VerifierQueryEvent]:
        verification = create_verification(
            source_query, self.executor, self.settings, self.failure_resolver_manager
        )
        event = verification.run()
        if event is None:
            logger.info("No event for %s.%s", source_query.suite, source_query.name)
            return None
        for client in self.event_clients:
            client.post(event)
        return event

    def run(self, source_queries: Sequence[SourceQuery]) -> List[VerifierQueryEvent]:
        """Verify all source queries and return their events in input order."""
        workers = max(1, self.settings.max_concurrency)
        logger.info("Verifying %d queries with %d workers", len(source_queries), workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(self.verify, source_queries))
        events = [event for event in results if event is not None]
        logger.info("Produced %d events for %d queries", len(events), len(source_queries))
        return events
