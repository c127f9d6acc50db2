"""Checksum query generation and control/test checksum comparison."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..schemas import Column, QueryResult
from .columns import (
    ColumnCategory,
    ColumnMatchResult,
    ColumnValidator,
    default_column_validators,
    quote,
)

logger = logging.getLogger(__name__)

ROW_COUNT_ALIAS = "$row_count"


class MatchType(str, Enum):
    MATCH = "MATCH"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
    ROW_COUNT_MISMATCH = "ROW_COUNT_MISMATCH"
    COLUMN_MISMATCH = "COLUMN_MISMATCH"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class ChecksumResult:
    """Aggregates of one checksum query, keyed by checksum column alias."""

    columns: Tuple[Column, ...]
    row_count: int
    checksums: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MatchResult:
    """Result of comparing the control and test checksums."""

    match_type: MatchType
    control_row_count: Optional[int] = None
    test_row_count: Optional[int] = None
    mismatched_columns: List[ColumnMatchResult] = field(default_factory=list)

    @property
    def is_matched(self) -> bool:
        return self.match_type == MatchType.MATCH

    @property
    def is_mismatch_possibly_caused_by_non_determinism(self) -> bool:
        return self.match_type in (MatchType.ROW_COUNT_MISMATCH, MatchType.COLUMN_MISMATCH)

    def results_summary(self) -> str:
        if self.match_type == MatchType.MATCH:
            return ""
        lines = [self.match_type.display_name]
        if self.match_type != MatchType.SCHEMA_MISMATCH:
            lines.append(f"Control {self.control_row_count} rows, Test {self.test_row_count} rows")
        if self.mismatched_columns:
            lines.append("Mismatched Columns:")
            lines.extend(f"  {c.summary()}" for c in self.mismatched_columns)
        return "\n".join(lines) + "\n"


class ChecksumValidator:
    """Builds checksum queries and compares their results.

    Every ColumnCategory must have a validator; construction fails otherwise.

    Args:
        column_validators: Validator per column category.
    """

    def __init__(self, column_validators: Optional[Dict[ColumnCategory, ColumnValidator]] = None):
        self.column_validators = column_validators or default_column_validators()
        missing = [c.value for c in ColumnCategory if c not in self.column_validators]
        if missing:
            raise ValueError(f"No column validator for categories: {', '.join(missing)}")

    @classmethod
    def from_settings(cls, settings) -> "ChecksumValidator":
        return cls(default_column_validators(
            relative_error_margin=settings.relative_error_margin,
            absolute_error_margin=settings.absolute_error_margin,
        ))

    def _validator(self, column: Column) -> ColumnValidator:
        return self.column_validators[ColumnCategory.from_type(column.type)]

    def generate_checksum_query(self, table_name: str, columns: List[Column]) -> str:
        """Build a single-row aggregate query over ``table_name``.

        Selects ``count(*)`` plus each column's checksum aggregates.
        """
        items = [f"count(*) AS {quote(ROW_COUNT_ALIAS)}"]
        for column in columns:
            for alias, aggregate in self._validator(column).checksum_columns(column):
                items.append(f"{aggregate} AS {quote(alias)}")
        return "SELECT\n    " + ",\n    ".join(items) + f"\nFROM {table_name}"

    def get_checksum(self, columns: List[Column], result: QueryResult) -> ChecksumResult:
        if result.row_count != 1:
            raise ValueError(f"Checksum query returned {result.row_count} rows, expected 1")
        values = result.as_dicts()[0]
        return ChecksumResult(
            columns=tuple(columns),
            row_count=int(values.pop(ROW_COUNT_ALIAS)),
            checksums=values,
        )

    def compare(self, control: ChecksumResult, test: ChecksumResult) -> MatchResult:
        """Compare control and test checksums.

        Schema is checked first, then row counts, then every column.
        """
        if control.columns != test.columns:
            return MatchResult(MatchType.SCHEMA_MISMATCH)

        if control.row_count != test.row_count:
            return MatchResult(
                MatchType.ROW_COUNT_MISMATCH,
                control_row_count=control.row_count,
                test_row_count=test.row_count,
            )

        mismatched = []
        for column in control.columns:
            result = self._validator(column).validate(column, control.checksums, test.checksums)
            if not result.matched:
                mismatched.append(result)

        match_type = MatchType.COLUMN_MISMATCH if mismatched else MatchType.MATCH
        if mismatched:
            logger.debug("Mismatched columns: %s", [c.column.name for c in mismatched])
        return MatchResult(
            match_type,
            control_row_count=control.row_count,
            test_row_count=test.row_count,
            mismatched_columns=mismatched,
        )
