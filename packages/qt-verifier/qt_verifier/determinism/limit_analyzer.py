"""Cheap determinism check for queries capped by a top-level LIMIT.

A query with ``LIMIT n`` that returned exactly ``n`` rows may have picked an
arbitrary subset of a larger result. Re-running it with ``LIMIT n + 1``
tells whether more rows were available, and with an ORDER BY, whether the
row just past the limit ties with the last kept row on every sort key.
"""

from __future__ import annotations

import logging
import math
from typing import Any, List, Optional, Union

from sqlglot import exp

from ..context import VerificationContext
from ..execution.base import QueryExecutor
from ..execution.exceptions import QueryException
from ..rewriters.query_rewriter import attach_ctes, unwrap_query
from ..schemas import LimitQueryDeterminismAnalysis, QueryStage

logger = logging.getLogger(__name__)

SORT_KEY_PREFIX = "$$sort_key$$"

# Output column position or name
SortKey = Union[int, str]


def sort_values_equal(left: Any, right: Any) -> bool:
    """Compare two sort key values the way ORDER BY groups them.

    NaN sorts as a single value, so two NaNs tie.
    """
    if isinstance(left, float) and isinstance(right, float) and math.isnan(left) and math.isnan(right):
        return True
    return left == right


class LimitQueryDeterminismAnalyzer:
    """Decides determinism of an INSERT or CREATE TABLE AS with a literal LIMIT.

    Args:
        executor: Executor used for the probe query.
        statement: The statement whose result was observed.
        row_count: Number of rows the statement produced.
        context: Receives the probe's query id.
        enabled: When False, ``analyze`` always returns NOT_RUN.
        dialect: sqlglot dialect for generating the probe.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        statement: exp.Expression,
        row_count: int,
        context: VerificationContext,
        enabled: bool = True,
        dialect: str = "duckdb",
    ):
        self.executor = executor
        self.statement = statement
        self.row_count = row_count
        self.context = context
        self.enabled = enabled
        self.dialect = dialect

    def analyze(self) -> LimitQueryDeterminismAnalysis:
        if not self.enabled:
            return LimitQueryDeterminismAnalysis.NOT_RUN

        if isinstance(self.statement, exp.Insert):
            query = self.statement.expression
        elif isinstance(self.statement, exp.Create) and self.statement.kind == "TABLE":
            query = self.statement.expression
        else:
            return LimitQueryDeterminismAnalysis.NOT_RUN
        if not isinstance(query, exp.Query):
            return LimitQueryDeterminismAnalysis.NOT_RUN

        query, ctes = unwrap_query(query)
        limit = self._literal_limit(query)
        if limit is None:
            return LimitQueryDeterminismAnalysis.NOT_RUN

        if query.args.get("order"):
            if not isinstance(query, exp.Select):
                return LimitQueryDeterminismAnalysis.NOT_RUN
            return self._analyze_order_by(query, ctes, limit)
        return self._analyze_no_order_by(query, ctes, limit)

    @staticmethod
    def _literal_limit(query: exp.Expression) -> Optional[int]:
        limit = query.args.get("limit")
        if not isinstance(limit, exp.Limit) or limit.is_limit_all:
            return None
        if query.args.get("offset") or limit.args.get("offset") or limit.args.get("limit_options"):
            return None
        value = limit.expression
        if not (isinstance(value, exp.Literal) and value.is_int):
            return None
        limit_value = int(value.to_py())
        # LIMIT 0 can only produce an empty result
        return limit_value if limit_value > 0 else None

    def _execute_probe(self, query: exp.Expression):
        sql = query if isinstance(query, str) else query.sql(dialect=self.dialect)
        try:
            result = self.executor.execute(sql, QueryStage.LIMIT_QUERY_ANALYSIS)
        except QueryException as e:
            if e.query_id:
                self.context.set_limit_query_analysis_query_id(e.query_id)
            raise
        self.context.set_limit_query_analysis_query_id(result.stats.query_id)
        return result

    def _analyze_no_order_by(
        self,
        query: exp.Expression,
        ctes: List[exp.With],
        limit: int,
    ) -> LimitQueryDeterminismAnalysis:
        probe_query = attach_ctes(query, ctes)
        probe_query.set("limit", exp.Limit(expression=exp.Literal.number(limit + 1)))
        result = self._execute_probe(f"SELECT count(1) FROM ({probe_query.sql(dialect=self.dialect)})")
        probe_count = int(result.rows[0][0])
        logger.debug("LIMIT %d probe: observed %d rows, probe %d", limit, self.row_count, probe_count)

        if self.row_count < limit:
            if probe_count == self.row_count:
                return LimitQueryDeterminismAnalysis.DETERMINISTIC
            return LimitQueryDeterminismAnalysis.FAILED_DATA_CHANGED
        if self.row_count == limit:
            if probe_count == self.row_count:
                return LimitQueryDeterminismAnalysis.DETERMINISTIC
            if probe_count == self.row_count + 1:
                return LimitQueryDeterminismAnalysis.NON_DETERMINISTIC
        return LimitQueryDeterminismAnalysis.FAILED_DATA_CHANGED

    def _analyze_order_by(
        self,
        select: exp.Select,
        ctes: List[exp.With],
        limit: int,
    ) -> LimitQueryDeterminismAnalysis:
        tie_inspector = attach_ctes(select, ctes)
        sort_keys = self._sort_keys(tie_inspector)
        if sort_keys is None:
            return LimitQueryDeterminismAnalysis.NOT_RUN
        tie_inspector.set("limit", exp.Limit(expression=exp.Literal.number(limit + 1)))

        result = self._execute_probe(tie_inspector)
        rows = result.rows
        if len(rows) < self.row_count or self.row_count > limit:
            return LimitQueryDeterminismAnalysis.FAILED_DATA_CHANGED
        if self.row_count < limit:
            if len(rows) == self.row_count:
                return LimitQueryDeterminismAnalysis.DETERMINISTIC
            return LimitQueryDeterminismAnalysis.FAILED_DATA_CHANGED
        if len(rows) == limit:
            return LimitQueryDeterminismAnalysis.DETERMINISTIC

        positions = [k if isinstance(k, int) else result.columns.index(k) for k in sort_keys]
        last_row, next_row = rows[limit - 1], rows[limit]
        if all(sort_values_equal(last_row[i], next_row[i]) for i in positions):
            return LimitQueryDeterminismAnalysis.NON_DETERMINISTIC
        return LimitQueryDeterminismAnalysis.DETERMINISTIC

    @staticmethod
    def _sort_keys(select: exp.Select) -> Optional[List[SortKey]]:
        """Resolve ORDER BY items to output columns, projecting the rest.

        Ordinals and plain output column names are compared in place; any
        other sort expression is added to ``select`` as ``$$sort_key$$<i>``.
        Returns None when an ordinal cannot be mapped to an output position.
        """
        projections = list(select.expressions)
        output_names = {
            p.alias_or_name
            for p in projections
            if isinstance(p, (exp.Alias, exp.Column)) and not p.is_star
        }

        keys: List[SortKey] = []
        for i, ordered in enumerate(select.args["order"].expressions):
            key = ordered.this
            if isinstance(key, exp.Literal) and key.is_int:
                index = int(key.to_py()) - 1
                if index < 0 or index >= len(projections):
                    return None
                if any(p.is_star for p in projections[: index + 1]):
                    return None
                keys.append(index)
            elif isinstance(key, exp.Column) and not key.table and key.name in output_names:
                keys.append(key.name)
            else:
                alias = f"{SORT_KEY_PREFIX}{i}"
                select.select(exp.alias_(key.copy(), alias, quoted=True), copy=False)
                keys.append(alias)
        return keys
