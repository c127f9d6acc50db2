"""Verification outcome events and the clients that publish them."""

from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Protocol, Union

from .determinism.analyzer import DeterminismAnalysisDetails
from .schemas import DeterminismAnalysis, EventStatus, SkippedReason

logger = logging.getLogger(__name__)


@dataclass
class QueryInfo:
    """What ran on one cluster for a verification."""

    catalog: Optional[str] = None
    schema: Optional[str] = None
    original_query: Optional[str] = None
    setup_queries: List[str] = field(default_factory=list)
    query: Optional[str] = None
    teardown_queries: List[str] = field(default_factory=list)
    setup_query_ids: List[str] = field(default_factory=list)
    query_id: Optional[str] = None
    teardown_query_ids: List[str] = field(default_factory=list)
    checksum_query: Optional[str] = None
    checksum_query_id: Optional[str] = None
    wall_time_secs: Optional[float] = None
    cpu_time_secs: Optional[float] = None
    peak_memory_bytes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "catalog": self.catalog,
            "schema": self.schema,
            "original_query": self.original_query,
            "setup_queries": list(self.setup_queries),
            "query": self.query,
            "teardown_queries": list(self.teardown_queries),
            "setup_query_ids": list(self.setup_query_ids),
            "query_id": self.query_id,
            "teardown_query_ids": list(self.teardown_query_ids),
            "checksum_query": self.checksum_query,
            "checksum_query_id": self.checksum_query_id,
            "wall_time_secs": self.wall_time_secs,
            "cpu_time_secs": self.cpu_time_secs,
            "peak_memory_bytes": self.peak_memory_bytes,
        }


@dataclass(frozen=True)
class VerifierQueryEvent:
    """Terminal record of one verification."""

    suite: str
    name: str
    test_id: str
    status: EventStatus
    control_query_info: QueryInfo
    test_query_info: QueryInfo
    skipped_reason: Optional[SkippedReason] = None
    determinism_analysis: Optional[DeterminismAnalysis] = None
    determinism_analysis_details: Optional[DeterminismAnalysisDetails] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    resolve_message: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suite": self.suite,
            "name": self.name,
            "test_id": self.test_id,
            "status": self.status.value,
            "skipped_reason": self.skipped_reason.value if self.skipped_reason else None,
            "determinism_analysis": (
                self.determinism_analysis.value if self.determinism_analysis else None
            ),
            "determinism_analysis_details": (
                self.determinism_analysis_details.to_dict()
                if self.determinism_analysis_details else None
            ),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "resolve_message": self.resolve_message,
            "control_query_info": self.control_query_info.to_dict(),
            "test_query_info": self.test_query_info.to_dict(),
            "created_at": self.created_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class EventClient(Protocol):
    def post(self, event: VerifierQueryEvent) -> None:
        ...


class JsonEventClient:
    """Writes one JSON object per line to a file or stream.

    Args:
        target: Output path, or an open text stream. Defaults to stdout.
    """

    def __init__(self, target: Union[str, Path, IO[str], None] = None):
        self._owns_stream = isinstance(target, (str, Path))
        if self._owns_stream:
            self._stream: IO[str] = open(target, "a", encoding="utf-8")
        else:
            self._stream = target or sys.stdout
        self._lock = threading.Lock()

    def post(self, event: VerifierQueryEvent) -> None:
        line = event.to_json()
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()
        logger.debug("Posted event for %s.%s", event.suite, event.name)

    def close(self) -> None:
        if self._owns_stream:
            self._stream.close()

    def __enter__(self) -> "JsonEventClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
