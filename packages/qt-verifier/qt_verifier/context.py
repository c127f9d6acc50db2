"""Per-verification scratch record of query ids and determinism runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .schemas import DeterminismAnalysisRun, QueryStage


@dataclass
class VerificationContext:
    """Diagnostic identifiers accumulated while one verification runs.

    Owned by a single DataVerification and passed explicitly to each
    component that executes statements. Never shared across verifications.
    """

    query_ids: Dict[QueryStage, List[str]] = field(default_factory=dict)
    limit_query_analysis_query_id: Optional[str] = None
    determinism_analysis_runs: List[DeterminismAnalysisRun] = field(default_factory=list)

    def record_query_id(self, stage: QueryStage, query_id: str) -> None:
        self.query_ids.setdefault(stage, []).append(query_id)

    def get_query_ids(self, stage: QueryStage) -> List[str]:
        return list(self.query_ids.get(stage, []))

    def get_last_query_id(self, stage: QueryStage) -> Optional[str]:
        ids = self.query_ids.get(stage)
        return ids[-1] if ids else None

    def set_limit_query_analysis_query_id(self, query_id: str) -> None:
        self.limit_query_analysis_query_id = query_id

    def start_determinism_analysis_run(self) -> DeterminismAnalysisRun:
        """Append an empty run record and return it for the caller to fill."""
        run = DeterminismAnalysisRun()
        self.determinism_analysis_runs.append(run)
        return run
