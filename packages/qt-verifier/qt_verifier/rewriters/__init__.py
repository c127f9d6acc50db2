"""SQL rewriting for verification runs."""

from .query_rewriter import (
    QueryParseError,
    QueryRewriter,
    UnsupportedQueryError,
    attach_ctes,
    leftmost_select,
    unwrap_query,
)

__all__ = [
    "QueryParseError",
    "QueryRewriter",
    "UnsupportedQueryError",
    "attach_ctes",
    "leftmost_select",
    "unwrap_query",
]
