"""Rewrites source queries so their results land in temporary tables."""

from __future__ import annotations

import logging
import re
import uuid
from typing import Dict, List, Optional, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ..errors import VerifierError
from ..execution.base import QueryExecutor
from ..execution.database_utils import fetch_columns
from ..schemas import ClusterType, QueryBundle, QueryConfiguration, QueryStage

logger = logging.getLogger(__name__)

DEFAULT_TABLE_PREFIXES = {
    ClusterType.CONTROL: "tmp_verifier_c",
    ClusterType.TEST: "tmp_verifier_t",
}


class QueryParseError(VerifierError):
    """Query text could not be parsed into a single statement."""


class UnsupportedQueryError(QueryParseError):
    """Query parsed but is not a statement kind the verifier can rewrite."""


def unwrap_query(query: exp.Expression) -> Tuple[exp.Expression, List[exp.With]]:
    """Strip wrapping parentheses from a query.

    Returns the first node that carries its own modifiers (LIMIT, ORDER BY,
    ...) or is not a parenthesized wrapper, together with the WITH clauses
    collected from the wrappers on the way down, outermost first.
    """
    ctes: List[exp.With] = []
    while isinstance(query, exp.Subquery):
        modifiers = [k for k, v in query.args.items() if v and k not in ("this", "with_")]
        if modifiers:
            break
        if query.args.get("with_"):
            ctes.append(query.args["with_"])
        query = query.this
    return query, ctes


def attach_ctes(query: exp.Expression, ctes: List[exp.With]) -> exp.Expression:
    """Re-attach WITH clauses collected by ``unwrap_query`` to a copy of ``query``."""
    query = query.copy()
    if not ctes:
        return query
    expressions = [cte.copy() for with_ in ctes for cte in with_.expressions]
    existing = query.args.get("with_")
    if existing:
        expressions.extend(existing.expressions)
    query.set("with_", exp.With(expressions=expressions))
    return query


def leftmost_select(query: exp.Expression) -> Optional[exp.Select]:
    while isinstance(query, (exp.SetOperation, exp.Subquery)):
        query = query.this
    return query if isinstance(query, exp.Select) else None


class QueryRewriter:
    """Parses source queries and rebinds them to temporary tables.

    A rewritten query is a QueryBundle: setup statements, a main statement
    that materializes the result into a fresh table, and teardown statements
    that drop it. SELECT and CREATE TABLE AS queries are probed on the
    cluster with a DESCRIBE before rewriting, so a query that cannot be
    planned fails at the REWRITE stage.

    Args:
        executor: Executor used for probing.
        dialect: sqlglot dialect used for parsing and generation.
        table_prefixes: Temporary table prefix per cluster.
        decimal_literals_as_double: Treat literals like ``1.0`` as DOUBLE.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        dialect: str = "duckdb",
        table_prefixes: Optional[Dict[ClusterType, str]] = None,
        decimal_literals_as_double: bool = True,
    ):
        self.executor = executor
        self.dialect = dialect
        self.table_prefixes = {**DEFAULT_TABLE_PREFIXES, **(table_prefixes or {})}
        self.decimal_literals_as_double = decimal_literals_as_double

    def parse(self, sql: str) -> exp.Expression:
        """Parse query text into a single supported statement.

        Raises:
            QueryParseError: Text is empty, invalid or holds several statements.
            UnsupportedQueryError: Statement is not SELECT, INSERT ... SELECT
                or CREATE TABLE ... AS.
        """
        try:
            statements = [s for s in sqlglot.parse(sql, read=self.dialect) if s is not None]
        except SqlglotError as e:
            raise QueryParseError(str(e)) from e

        if len(statements) != 1:
            raise QueryParseError(f"Expected exactly one statement, got {len(statements)}")
        statement = statements[0]

        for select in statement.find_all(exp.Select):
            if not select.expressions:
                raise QueryParseError("SELECT without a projection list")

        if self._query_of(statement) is None:
            raise UnsupportedQueryError(
                f"Unsupported statement type: {type(statement).__name__}"
            )

        if self.decimal_literals_as_double:
            statement = statement.transform(_decimal_to_double)
        return statement

    def rewrite(
        self,
        statement: exp.Expression,
        configuration: Optional[QueryConfiguration],
        cluster: ClusterType,
        stage: Optional[QueryStage] = None,
        table_prefix: Optional[str] = None,
    ) -> QueryBundle:
        """Rebind a parsed statement to a new temporary table.

        Args:
            statement: Statement returned by ``parse``.
            configuration: Catalog and schema the temporary table goes to.
            cluster: Cluster the bundle is built for.
            stage: Stage used for the DESCRIBE probe. Defaults to the
                cluster's REWRITE stage.
            table_prefix: Overrides the cluster's temporary table prefix.

        Raises:
            QueryException: The probe failed on the cluster.
        """
        stage = stage or QueryStage.for_cluster(cluster, "REWRITE")
        prefix = table_prefix or self.table_prefixes[cluster]
        table = self._temporary_table(prefix, configuration)
        table_name = table.sql(dialect=self.dialect)
        teardown = (f"DROP TABLE IF EXISTS {table_name}",)

        if isinstance(statement, exp.Insert):
            target = statement.this
            columns = None
            if isinstance(target, exp.Schema):
                columns = [c.copy() for c in target.expressions]
                target = target.this
            setup = exp.select("*").from_(target.copy()).limit(0)
            into: exp.Expression = table.copy()
            if columns:
                into = exp.Schema(this=into, expressions=columns)
            main = exp.Insert(this=into, expression=statement.expression.copy())
            bundle = QueryBundle(
                table_name=table_name,
                setup_queries=(f"CREATE TABLE {table_name} AS {setup.sql(dialect=self.dialect)}",),
                query=main.sql(dialect=self.dialect),
                teardown_queries=teardown,
                cluster=cluster,
            )
        else:
            query = self._prepare_query(self._query_of(statement).copy(), stage)
            main = exp.Create(this=table.copy(), kind="TABLE", expression=query)
            bundle = QueryBundle(
                table_name=table_name,
                setup_queries=(),
                query=main.sql(dialect=self.dialect),
                teardown_queries=teardown,
                cluster=cluster,
            )

        logger.debug("Rewrote %s query into %s", cluster.value, table_name)
        return bundle

    def _query_of(self, statement: exp.Expression) -> Optional[exp.Expression]:
        if isinstance(statement, exp.Insert):
            query = statement.expression
        elif isinstance(statement, exp.Create) and statement.kind == "TABLE":
            query = statement.expression
        else:
            query = statement
        return query if isinstance(query, exp.Query) else None

    def _temporary_table(self, prefix: str, configuration: Optional[QueryConfiguration]) -> exp.Table:
        name = f"{prefix}_{uuid.uuid4().hex}"
        catalog = configuration.catalog if configuration else None
        schema = configuration.schema if configuration else None
        return exp.table_(name, db=schema, catalog=catalog)

    def _prepare_query(self, query: exp.Expression, stage: QueryStage) -> exp.Expression:
        """Name unnamed projections and cast columns DuckDB cannot store."""
        select = leftmost_select(query)
        if select is not None:
            for i, projection in enumerate(list(select.expressions)):
                if isinstance(projection, (exp.Alias, exp.Column)) or projection.is_star:
                    continue
                projection.replace(exp.alias_(projection.copy(), f"_col{i}"))

        probe = exp.select("*").from_(exp.Subquery(this=query.copy(), alias=exp.TableAlias(this=exp.to_identifier("q"))))
        columns = fetch_columns(self.executor, probe.sql(dialect=self.dialect), stage)

        if select is not None and not any(p.is_star for p in select.expressions):
            for column, projection in zip(columns, list(select.expressions)):
                storable_type = self._storable_type(column.type)
                if storable_type is None:
                    continue
                inner = projection.this if isinstance(projection, exp.Alias) else projection
                typed = exp.cast(inner.copy(), storable_type)
                projection.replace(exp.alias_(typed, column.name))
        return query

    def _storable_type(self, type_name: str) -> Optional[exp.DataType]:
        """Type to cast a column to before it can be stored, or None if it can be stored as is.

        Untyped NULL columns become VARCHAR. Unnamed structs, e.g. ``row(NULL)``,
        become structs with fields ``field1``, ``field2``, ...
        """
        if _is_null_type(type_name):
            return exp.DataType.build("VARCHAR")
        fields = unnamed_struct_fields(type_name)
        if fields is None:
            return None
        struct = ", ".join(
            f"field{i} {'VARCHAR' if _is_null_type(t) else t}" for i, t in enumerate(fields, 1)
        )
        try:
            return exp.DataType.build(f"STRUCT({struct})", dialect=self.dialect)
        except (SqlglotError, ValueError) as e:
            logger.debug("Cannot name fields of %s: %s", type_name, e)
            return None


MULTI_WORD_TYPES = ("TIMESTAMP WITH TIME ZONE", "TIME WITH TIME ZONE")

NAMED_FIELD = re.compile(r'^(?:"((?:[^"]|"")*)"|([A-Za-z_][A-Za-z0-9_$]*))\s+(\S.*)$', re.S)


def _is_null_type(type_name: str) -> bool:
    return type_name.strip().strip('"').upper() == "NULL"


def split_type_arguments(arguments: str) -> List[str]:
    """Split a type's argument list on commas outside parentheses and quotes."""
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    quoted = False
    for char in arguments:
        if char == '"':
            quoted = not quoted
        elif not quoted and char in "([":
            depth += 1
        elif not quoted and char in ")]":
            depth -= 1
        elif not quoted and depth == 0 and char == ",":
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if current:
        parts.append("".join(current).strip())
    return parts


def unnamed_struct_fields(type_name: str) -> Optional[List[str]]:
    """Return the field types of an unnamed STRUCT type, or None.

    DuckDB prints an unnamed struct as ``STRUCT(INTEGER, "NULL")``, without
    field names, and refuses to create a table column of that type.
    """
    type_name = type_name.strip()
    if not (type_name.upper().startswith("STRUCT(") and type_name.endswith(")")):
        return None

    fields = []
    for part in split_type_arguments(type_name[len("STRUCT("):-1]):
        if part.upper() in MULTI_WORD_TYPES:
            fields.append(part)
            continue
        match = NAMED_FIELD.match(part)
        if match is None:
            fields.append(part)
        elif match.group(1) or match.group(2):
            return None
        else:
            fields.append(match.group(3))
    return fields or None


def _decimal_to_double(node: exp.Expression) -> exp.Expression:
    if isinstance(node, exp.Literal) and node.is_number and not node.is_int:
        return exp.cast(node.copy(), "DOUBLE")
    return node
