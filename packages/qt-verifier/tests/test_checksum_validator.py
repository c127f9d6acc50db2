"""Tests for checksum query generation and comparison."""

import pytest

from qt_verifier.checksum.columns import ColumnCategory, FloatingPointColumnValidator
from qt_verifier.checksum.validator import ChecksumResult, ChecksumValidator, MatchType
from qt_verifier.schemas import Column, QueryResult, QueryStats


BIGINT = Column("id", "BIGINT")
DOUBLE = Column("price", "DOUBLE")
ARRAY = Column("tags", "VARCHAR[]")
MAP = Column("attrs", "MAP(VARCHAR, INTEGER)")
ROW = Column("point", "STRUCT(x INTEGER, y INTEGER)")


def checksum(columns, row_count=10, **values):
    return ChecksumResult(columns=tuple(columns), row_count=row_count, checksums=values)


@pytest.fixture
def validator():
    return ChecksumValidator()


class TestColumnCategory:
    @pytest.mark.parametrize("type_name, expected", [
        ("BIGINT", ColumnCategory.SIMPLE),
        ("VARCHAR", ColumnCategory.SIMPLE),
        ("DECIMAL(18,3)", ColumnCategory.SIMPLE),
        ("DOUBLE", ColumnCategory.FLOATING_POINT),
        ("float", ColumnCategory.FLOATING_POINT),
        ("INTEGER[]", ColumnCategory.ARRAY),
        ("MAP(VARCHAR, INTEGER)[]", ColumnCategory.ARRAY),
        ("INTEGER[3]", ColumnCategory.ARRAY),
        ("MAP(VARCHAR, INTEGER)", ColumnCategory.MAP),
        ("STRUCT(x INTEGER)", ColumnCategory.ROW),
        ("UNION(a INTEGER, b VARCHAR)", ColumnCategory.ROW),
    ])
    def test_from_type(self, type_name, expected):
        assert ColumnCategory.from_type(type_name) == expected


class TestChecksumQuery:
    def test_generate(self, validator):
        sql = validator.generate_checksum_query("tmp_t", [BIGINT, DOUBLE, ARRAY, MAP, ROW])
        assert sql == (
            "SELECT\n"
            '    count(*) AS "$row_count",\n'
            '    sum(hash("id")) AS "id$checksum",\n'
            '    fsum(CASE WHEN isfinite("price") THEN "price" END) AS "price$sum",\n'
            '    count("price") AS "price$count",\n'
            '    count_if(isnan("price")) AS "price$nan_count",\n'
            '    count_if(isinf("price") AND "price" > 0) AS "price$pos_inf_count",\n'
            '    count_if(isinf("price") AND "price" < 0) AS "price$neg_inf_count",\n'
            '    sum(hash("tags")) AS "tags$checksum",\n'
            '    sum(len("tags")) AS "tags$cardinality_sum",\n'
            '    sum(hash("attrs")) AS "attrs$checksum",\n'
            '    sum(cardinality("attrs")) AS "attrs$cardinality_sum",\n'
            '    sum(hash("point")) AS "point$checksum"\n'
            "FROM tmp_t"
        )

    def test_quotes_column_names(self, validator):
        sql = validator.generate_checksum_query("tmp_t", [Column('my "col"', "INTEGER")])
        assert 'sum(hash("my ""col""")) AS "my ""col""$checksum"' in sql

    def test_get_checksum(self, validator):
        result = QueryResult(
            rows=((3, 12345),),
            columns=("$row_count", "id$checksum"),
            stats=QueryStats(query_id="q"),
        )
        parsed = validator.get_checksum([BIGINT], result)
        assert parsed.row_count == 3
        assert parsed.columns == (BIGINT,)
        assert parsed.checksums == {"id$checksum": 12345}

    def test_get_checksum_requires_one_row(self, validator):
        result = QueryResult(rows=(), columns=("$row_count",), stats=QueryStats(query_id="q"))
        with pytest.raises(ValueError):
            validator.get_checksum([], result)

    def test_missing_category_rejected(self):
        with pytest.raises(ValueError, match="ROW"):
            ChecksumValidator({
                ColumnCategory.SIMPLE: object(),
                ColumnCategory.FLOATING_POINT: object(),
                ColumnCategory.ARRAY: object(),
                ColumnCategory.MAP: object(),
            })


class TestCompare:
    def test_match(self, validator):
        control = checksum([BIGINT], **{"id$checksum": 1})
        test = checksum([BIGINT], **{"id$checksum": 1})
        result = validator.compare(control, test)
        assert result.is_matched
        assert result.results_summary() == ""

    def test_schema_mismatch(self, validator):
        result = validator.compare(checksum([BIGINT]), checksum([Column("id", "INTEGER")]))
        assert result.match_type == MatchType.SCHEMA_MISMATCH
        assert not result.is_mismatch_possibly_caused_by_non_determinism
        assert result.results_summary() == "SCHEMA MISMATCH\n"

    def test_column_order_is_schema(self, validator):
        result = validator.compare(checksum([BIGINT, DOUBLE]), checksum([DOUBLE, BIGINT]))
        assert result.match_type == MatchType.SCHEMA_MISMATCH

    def test_row_count_mismatch(self, validator):
        result = validator.compare(checksum([BIGINT], row_count=1), checksum([BIGINT], row_count=2))
        assert result.match_type == MatchType.ROW_COUNT_MISMATCH
        assert result.is_mismatch_possibly_caused_by_non_determinism
        assert result.results_summary() == "ROW COUNT MISMATCH\nControl 1 rows, Test 2 rows\n"

    def test_column_mismatch(self, validator):
        control = checksum([BIGINT, ARRAY], **{
            "id$checksum": 1, "tags$checksum": 5, "tags$cardinality_sum": 3,
        })
        test = checksum([BIGINT, ARRAY], **{
            "id$checksum": 1, "tags$checksum": 6, "tags$cardinality_sum": 3,
        })
        result = validator.compare(control, test)
        assert result.match_type == MatchType.COLUMN_MISMATCH
        assert [c.column for c in result.mismatched_columns] == [ARRAY]
        assert result.results_summary() == (
            "COLUMN MISMATCH\n"
            "Control 10 rows, Test 10 rows\n"
            "Mismatched Columns:\n"
            "  tags (VARCHAR[]): control(checksum: 5, cardinality_sum: 3) "
            "test(checksum: 6, cardinality_sum: 3)\n"
        )

    def test_empty_tables_match(self, validator):
        control = checksum([BIGINT, DOUBLE], row_count=0, **{"id$checksum": None, "price$sum": None, "price$count": 0})
        test = checksum([BIGINT, DOUBLE], row_count=0, **{"id$checksum": None, "price$sum": None, "price$count": 0})
        assert validator.compare(control, test).is_matched


def float_values(sum_=None, count=1, nan=0, pos_inf=0, neg_inf=0):
    return {
        "price$sum": sum_,
        "price$count": count,
        "price$nan_count": nan,
        "price$pos_inf_count": pos_inf,
        "price$neg_inf_count": neg_inf,
    }


class TestFloatingPoint:
    @pytest.fixture
    def column_validator(self):
        return FloatingPointColumnValidator(relative_error_margin=1e-4, absolute_error_margin=1e-12)

    def test_within_relative_error(self, column_validator):
        result = column_validator.validate(DOUBLE, float_values(1.0), float_values(1.00001))
        assert result.matched
        assert result.relative_error == pytest.approx(0.00001 / 1.00001)

    def test_outside_relative_error(self, column_validator):
        result = column_validator.validate(DOUBLE, float_values(1.0), float_values(1.001))
        assert not result.matched
        assert result.summary() == (
            f"price (DOUBLE): control(sum: 1.0) test(sum: 1.001) relative error: {result.relative_error}"
        )

    def test_near_zero_sums_match(self, column_validator):
        result = column_validator.validate(DOUBLE, float_values(1e-13), float_values(-1e-13))
        assert result.matched
        assert result.relative_error is None

    def test_null_sums(self, column_validator):
        assert column_validator.validate(DOUBLE, float_values(None, 0), float_values(None, 0)).matched

    def test_nan_count_mismatch(self, column_validator):
        result = column_validator.validate(DOUBLE, float_values(1.0, nan=1), float_values(1.0, nan=2))
        assert not result.matched
        assert result.control_values["nan_count"] == 1
        assert result.test_values["nan_count"] == 2

    def test_special_counts_reported_when_present(self, column_validator):
        result = column_validator.validate(
            DOUBLE, float_values(1.0, pos_inf=1), float_values(2.0, pos_inf=1)
        )
        assert not result.matched
        assert result.control_values == {"sum": 1.0, "pos_inf_count": 1}

    def test_relative_error_symmetric(self, column_validator):
        a = column_validator.relative_error(2.0, 3.0)
        b = column_validator.relative_error(3.0, 2.0)
        assert a == b == pytest.approx(1 / 3)

    def test_relative_error_uses_absolute_margin_as_floor(self, column_validator):
        assert column_validator.relative_error(0.0, 1e-300) == pytest.approx(1e-288)
