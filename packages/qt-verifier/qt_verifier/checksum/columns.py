"""Per-type-family checksum columns and their comparison rules.

Each column of a verified table is mapped to a ColumnCategory from its
engine type name. The category's validator decides which aggregate
expressions go into the checksum query and how the control and test
aggregates are compared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlglot import exp

from ..schemas import Column

FLOATING_POINT_TYPES = frozenset({"DOUBLE", "FLOAT", "REAL", "FLOAT4", "FLOAT8"})


class ColumnCategory(str, Enum):
    SIMPLE = "SIMPLE"
    FLOATING_POINT = "FLOATING_POINT"
    ARRAY = "ARRAY"
    MAP = "MAP"
    ROW = "ROW"

    @classmethod
    def from_type(cls, type_name: str) -> "ColumnCategory":
        """Classify a DuckDB type name, e.g. ``INTEGER[]`` or ``MAP(VARCHAR, INTEGER)``."""
        normalized = type_name.strip().upper()
        if normalized in FLOATING_POINT_TYPES:
            return cls.FLOATING_POINT
        # Checked before MAP/STRUCT so MAP(...)[] is an array
        if normalized.endswith("]"):
            return cls.ARRAY
        if normalized.startswith("MAP("):
            return cls.MAP
        if normalized.startswith(("STRUCT(", "UNION(")):
            return cls.ROW
        return cls.SIMPLE


def quote(name: str) -> str:
    return exp.to_identifier(name, quoted=True).sql(dialect="duckdb")


def checksum_alias(column: Column, suffix: str) -> str:
    return f"{column.name}${suffix}"


@dataclass
class ColumnMatchResult:
    """Outcome of comparing one column's aggregates."""

    column: Column
    matched: bool
    control_values: Dict[str, Any] = field(default_factory=dict)
    test_values: Dict[str, Any] = field(default_factory=dict)
    relative_error: Optional[float] = None

    def summary(self) -> str:
        control = ", ".join(f"{k}: {v}" for k, v in self.control_values.items())
        test = ", ".join(f"{k}: {v}" for k, v in self.test_values.items())
        line = f"{self.column.name} ({self.column.type}): control({control}) test({test})"
        if self.relative_error is not None:
            line += f" relative error: {self.relative_error}"
        return line


class ColumnValidator(Protocol):
    def checksum_columns(self, column: Column) -> List[Tuple[str, str]]:
        """Return (alias, aggregate SQL) pairs for the checksum query."""
        ...

    def validate(
        self,
        column: Column,
        control: Dict[str, Any],
        test: Dict[str, Any],
    ) -> ColumnMatchResult:
        """Compare the aggregates of one column from both checksum rows."""
        ...


class SimpleColumnValidator:
    """Order-insensitive hash digest; equal iff the column values are identical."""

    def checksum_columns(self, column: Column) -> List[Tuple[str, str]]:
        return [(checksum_alias(column, "checksum"), f"sum(hash({quote(column.name)}))")]

    def validate(self, column, control, test) -> ColumnMatchResult:
        return _compare_exact(column, control, test, ["checksum"])


class FloatingPointColumnValidator:
    """Sum of finite values compared within error margins, plus special-value counts.

    Args:
        relative_error_margin: Maximum tolerated relative error of the sums.
        absolute_error_margin: Sums at or below this magnitude on both sides match.
    """

    COUNTS = ("count", "nan_count", "pos_inf_count", "neg_inf_count")

    def __init__(self, relative_error_margin: float = 1e-4, absolute_error_margin: float = 1e-12):
        self.relative_error_margin = relative_error_margin
        self.absolute_error_margin = absolute_error_margin

    def checksum_columns(self, column: Column) -> List[Tuple[str, str]]:
        name = quote(column.name)
        return [
            (checksum_alias(column, "sum"), f"fsum(CASE WHEN isfinite({name}) THEN {name} END)"),
            (checksum_alias(column, "count"), f"count({name})"),
            (checksum_alias(column, "nan_count"), f"count_if(isnan({name}))"),
            (checksum_alias(column, "pos_inf_count"), f"count_if(isinf({name}) AND {name} > 0)"),
            (checksum_alias(column, "neg_inf_count"), f"count_if(isinf({name}) AND {name} < 0)"),
        ]

    def validate(self, column, control, test) -> ColumnMatchResult:
        control_sum = control.get(checksum_alias(column, "sum"))
        test_sum = test.get(checksum_alias(column, "sum"))
        control_values: Dict[str, Any] = {"sum": control_sum}
        test_values: Dict[str, Any] = {"sum": test_sum}

        counts_match = True
        for name in self.COUNTS:
            alias = checksum_alias(column, name)
            control_count, test_count = control.get(alias) or 0, test.get(alias) or 0
            if control_count != test_count:
                counts_match = False
            # Non-null counts only matter when they differ
            if control_count != test_count or (name != "count" and control_count):
                control_values[name] = control_count
                test_values[name] = test_count

        relative_error = None
        if not counts_match:
            matched = False
        elif control_sum is None or test_sum is None:
            matched = control_sum is None and test_sum is None
        elif abs(control_sum) <= self.absolute_error_margin and abs(test_sum) <= self.absolute_error_margin:
            matched = True
        else:
            relative_error = self.relative_error(control_sum, test_sum)
            matched = relative_error <= self.relative_error_margin

        return ColumnMatchResult(
            column=column,
            matched=matched,
            control_values=control_values,
            test_values=test_values,
            relative_error=relative_error,
        )

    def relative_error(self, control_sum: float, test_sum: float) -> float:
        denominator = max(abs(control_sum), abs(test_sum), self.absolute_error_margin)
        return abs(control_sum - test_sum) / denominator


class ArrayColumnValidator:
    """Digest plus the sum of array lengths."""

    def checksum_columns(self, column: Column) -> List[Tuple[str, str]]:
        name = quote(column.name)
        return [
            (checksum_alias(column, "checksum"), f"sum(hash({name}))"),
            (checksum_alias(column, "cardinality_sum"), f"sum(len({name}))"),
        ]

    def validate(self, column, control, test) -> ColumnMatchResult:
        return _compare_exact(column, control, test, ["checksum", "cardinality_sum"])


class MapColumnValidator:
    """Digest plus the sum of map cardinalities."""

    def checksum_columns(self, column: Column) -> List[Tuple[str, str]]:
        name = quote(column.name)
        return [
            (checksum_alias(column, "checksum"), f"sum(hash({name}))"),
            (checksum_alias(column, "cardinality_sum"), f"sum(cardinality({name}))"),
        ]

    def validate(self, column, control, test) -> ColumnMatchResult:
        return _compare_exact(column, control, test, ["checksum", "cardinality_sum"])


class RowColumnValidator(SimpleColumnValidator):
    """Structs and unions hash as a whole."""


def _compare_exact(
    column: Column,
    control: Dict[str, Any],
    test: Dict[str, Any],
    names: List[str],
) -> ColumnMatchResult:
    control_values = {name: control.get(checksum_alias(column, name)) for name in names}
    test_values = {name: test.get(checksum_alias(column, name)) for name in names}
    return ColumnMatchResult(
        column=column,
        matched=control_values == test_values,
        control_values=control_values,
        test_values=test_values,
    )


def default_column_validators(
    relative_error_margin: float = 1e-4,
    absolute_error_margin: float = 1e-12,
) -> Dict[ColumnCategory, ColumnValidator]:
    return {
        ColumnCategory.SIMPLE: SimpleColumnValidator(),
        ColumnCategory.FLOATING_POINT: FloatingPointColumnValidator(
            relative_error_margin, absolute_error_margin
        ),
        ColumnCategory.ARRAY: ArrayColumnValidator(),
        ColumnCategory.MAP: MapColumnValidator(),
        ColumnCategory.ROW: RowColumnValidator(),
    }
