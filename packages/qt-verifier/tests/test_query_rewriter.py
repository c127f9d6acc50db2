"""Tests for query parsing and temporary-table rewriting."""

import pytest

from qt_verifier.execution.exceptions import QueryException
from qt_verifier.rewriters.query_rewriter import (
    QueryParseError,
    QueryRewriter,
    UnsupportedQueryError,
    unnamed_struct_fields,
)
from qt_verifier.schemas import ClusterType, QueryConfiguration, QueryStage

DESCRIBE_COLUMNS = ("column_name", "column_type")


@pytest.fixture
def rewriter_factory(fake_executor_factory):
    def _make(describe_rows=(), **kwargs):
        executor = fake_executor_factory(describe_rows, DESCRIBE_COLUMNS)
        return QueryRewriter(executor, **kwargs), executor
    return _make


class FailingExecutor:
    def execute(self, sql, stage, converter=None):
        raise QueryException("Table with name t does not exist!", "CATALOG_ERROR", stage)


class TestParse:
    @pytest.mark.parametrize("sql", [
        "",
        "SELECT",
        "SELECT 1; SELECT 2",
        "SELECT * FROM (SELECT) x",
    ])
    def test_rejects_invalid(self, rewriter_factory, sql):
        rewriter, _ = rewriter_factory()
        with pytest.raises(QueryParseError):
            rewriter.parse(sql)

    @pytest.mark.parametrize("sql", [
        "DROP TABLE t",
        "CREATE VIEW v AS SELECT 1",
        "DELETE FROM t",
    ])
    def test_rejects_unsupported(self, rewriter_factory, sql):
        rewriter, _ = rewriter_factory()
        with pytest.raises(UnsupportedQueryError):
            rewriter.parse(sql)

    @pytest.mark.parametrize("sql", [
        "SELECT a FROM t",
        "WITH x AS (SELECT 1 a) SELECT a FROM x",
        "SELECT a FROM t UNION ALL SELECT a FROM u",
        "INSERT INTO dest SELECT a FROM t",
        "CREATE TABLE out AS SELECT a FROM t",
    ])
    def test_accepts_supported(self, rewriter_factory, sql):
        rewriter, _ = rewriter_factory()
        assert rewriter.parse(sql) is not None

    def test_decimal_literals_as_double(self, rewriter_factory):
        rewriter, _ = rewriter_factory()
        assert rewriter.parse("SELECT 1.5, 2, 'x'").sql(dialect="duckdb") == (
            "SELECT CAST(1.5 AS DOUBLE), 2, 'x'"
        )

    def test_decimal_literals_kept(self, rewriter_factory):
        rewriter, _ = rewriter_factory(decimal_literals_as_double=False)
        assert rewriter.parse("SELECT 1.5").sql(dialect="duckdb") == "SELECT 1.5"


class TestRewriteSelect:
    def test_bundle(self, rewriter_factory):
        rewriter, executor = rewriter_factory([("_col0", "INTEGER"), ("a", "VARCHAR")])
        bundle = rewriter.rewrite(
            rewriter.parse("SELECT 1, a FROM t"), QueryConfiguration(), ClusterType.CONTROL
        )
        table = bundle.table_name
        assert table.startswith("tmp_verifier_c_")
        assert bundle.cluster == ClusterType.CONTROL
        assert bundle.setup_queries == ()
        assert bundle.query == f"CREATE TABLE {table} AS SELECT 1 AS _col0, a FROM t"
        assert bundle.teardown_queries == (f"DROP TABLE IF EXISTS {table}",)
        assert executor.statements == [
            ("DESCRIBE SELECT * FROM (SELECT 1 AS _col0, a FROM t) AS q", QueryStage.CONTROL_REWRITE),
        ]

    def test_unique_table_names(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("a", "INTEGER")])
        statement = rewriter.parse("SELECT a FROM t")
        first = rewriter.rewrite(statement, None, ClusterType.TEST)
        second = rewriter.rewrite(statement, None, ClusterType.TEST)
        assert first.table_name != second.table_name
        assert first.table_name.startswith("tmp_verifier_t_")

    def test_set_operation_names_leftmost_projection(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("_col0", "INTEGER")])
        bundle = rewriter.rewrite(
            rewriter.parse("SELECT 1 UNION ALL SELECT 2"), None, ClusterType.CONTROL
        )
        assert bundle.query.endswith("AS SELECT 1 AS _col0 UNION ALL SELECT 2")

    def test_null_column_is_typed(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("_col0", '"NULL"'), ("b", "INTEGER")])
        bundle = rewriter.rewrite(rewriter.parse("SELECT NULL, 1 AS b"), None, ClusterType.CONTROL)
        assert "AS SELECT CAST(NULL AS " in bundle.query
        assert bundle.query.endswith(") AS _col0, 1 AS b")

    def test_unnamed_struct_gets_field_names(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("_col0", 'STRUCT("NULL", INTEGER)')])
        bundle = rewriter.rewrite(rewriter.parse("SELECT row(NULL, 1)"), None, ClusterType.CONTROL)
        assert "CAST(" in bundle.query
        assert "STRUCT(field1 " in bundle.query
        assert ", field2 " in bundle.query
        assert bundle.query.endswith(") AS _col0")

    def test_named_struct_untouched(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("s", "STRUCT(x INTEGER)")])
        bundle = rewriter.rewrite(rewriter.parse("SELECT {'x': 1} AS s"), None, ClusterType.CONTROL)
        assert "CAST(" not in bundle.query

    def test_null_column_under_star_untouched(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("a", "NULL")])
        bundle = rewriter.rewrite(rewriter.parse("SELECT * FROM t"), None, ClusterType.CONTROL)
        assert bundle.query.endswith("AS SELECT * FROM t")

    def test_create_table_as(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("a", "INTEGER")])
        bundle = rewriter.rewrite(
            rewriter.parse("CREATE TABLE out AS SELECT a FROM t"), None, ClusterType.CONTROL
        )
        assert bundle.query == f"CREATE TABLE {bundle.table_name} AS SELECT a FROM t"

    def test_configuration_qualifies_table(self, rewriter_factory):
        rewriter, _ = rewriter_factory([("a", "INTEGER")])
        bundle = rewriter.rewrite(
            rewriter.parse("SELECT a FROM t"),
            QueryConfiguration(catalog="warehouse", schema="scratch"),
            ClusterType.TEST,
        )
        assert bundle.table_name.startswith("warehouse.scratch.tmp_verifier_t_")

    def test_stage_and_prefix_override(self, rewriter_factory):
        rewriter, executor = rewriter_factory([("a", "INTEGER")])
        bundle = rewriter.rewrite(
            rewriter.parse("SELECT a FROM t"),
            None,
            ClusterType.CONTROL,
            stage=QueryStage.DETERMINISM_ANALYSIS_SETUP,
            table_prefix="tmp_verifier_d",
        )
        assert bundle.table_name.startswith("tmp_verifier_d_")
        assert executor.statements[0][1] == QueryStage.DETERMINISM_ANALYSIS_SETUP

    def test_custom_prefixes(self, fake_executor_factory):
        rewriter = QueryRewriter(
            fake_executor_factory([("a", "INTEGER")], DESCRIBE_COLUMNS),
            table_prefixes={ClusterType.CONTROL: "scratch_control"},
        )
        statement = rewriter.parse("SELECT a FROM t")
        assert rewriter.rewrite(statement, None, ClusterType.CONTROL).table_name.startswith("scratch_control_")
        assert rewriter.rewrite(statement, None, ClusterType.TEST).table_name.startswith("tmp_verifier_t_")

    def test_probe_failure(self):
        rewriter = QueryRewriter(FailingExecutor())
        with pytest.raises(QueryException) as exc_info:
            rewriter.rewrite(rewriter.parse("SELECT a FROM t"), None, ClusterType.TEST)
        assert exc_info.value.stage == QueryStage.TEST_REWRITE


class TestRewriteInsert:
    def test_bundle(self, rewriter_factory):
        rewriter, executor = rewriter_factory()
        bundle = rewriter.rewrite(
            rewriter.parse("INSERT INTO dest SELECT a, b FROM src"), None, ClusterType.CONTROL
        )
        table = bundle.table_name
        assert bundle.setup_queries == (f"CREATE TABLE {table} AS SELECT * FROM dest LIMIT 0",)
        assert bundle.query == f"INSERT INTO {table} SELECT a, b FROM src"
        assert bundle.teardown_queries == (f"DROP TABLE IF EXISTS {table}",)
        assert executor.statements == []

    def test_column_list(self, rewriter_factory):
        rewriter, _ = rewriter_factory()
        bundle = rewriter.rewrite(
            rewriter.parse("INSERT INTO dest (a, b) SELECT a, b FROM src"), None, ClusterType.TEST
        )
        assert bundle.query == f"INSERT INTO {bundle.table_name} (a, b) SELECT a, b FROM src"


class TestUnnamedStructFields:
    @pytest.mark.parametrize("type_name, expected", [
        ('STRUCT("NULL")', ['"NULL"']),
        ("STRUCT(INTEGER, VARCHAR)", ["INTEGER", "VARCHAR"]),
        ("STRUCT(DECIMAL(18,3), INTEGER[])", ["DECIMAL(18,3)", "INTEGER[]"]),
        ("STRUCT(STRUCT(a INTEGER), MAP(VARCHAR, INTEGER))", ["STRUCT(a INTEGER)", "MAP(VARCHAR, INTEGER)"]),
        ("STRUCT(TIMESTAMP WITH TIME ZONE)", ["TIMESTAMP WITH TIME ZONE"]),
        ('STRUCT("" INTEGER)', ["INTEGER"]),
    ])
    def test_unnamed(self, type_name, expected):
        assert unnamed_struct_fields(type_name) == expected

    @pytest.mark.parametrize("type_name", [
        "INTEGER",
        "STRUCT(x INTEGER)",
        'STRUCT("my field" INTEGER, y VARCHAR)',
        "STRUCT(a INTEGER)[]",
        "MAP(VARCHAR, INTEGER)",
    ])
    def test_not_unnamed(self, type_name):
        assert unnamed_struct_fields(type_name) is None
