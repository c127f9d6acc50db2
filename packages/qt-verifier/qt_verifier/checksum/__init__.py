"""Type-aware checksums of verified result tables."""

from .columns import (
    ColumnCategory,
    ColumnMatchResult,
    ColumnValidator,
    FloatingPointColumnValidator,
    SimpleColumnValidator,
    default_column_validators,
)
from .validator import ChecksumResult, ChecksumValidator, MatchResult, MatchType

__all__ = [
    "ColumnCategory",
    "ColumnMatchResult",
    "ColumnValidator",
    "FloatingPointColumnValidator",
    "SimpleColumnValidator",
    "default_column_validators",
    "ChecksumResult",
    "ChecksumValidator",
    "MatchResult",
    "MatchType",
]
