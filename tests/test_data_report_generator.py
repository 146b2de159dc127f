import polars as pl
import pytest

from palaeo_cleaning.errors import SchemaError
from palaeo_cleaning.data_loading import ColumnSpec, TableSchema
from palaeo_cleaning.data_understanding import describe_numeric, frequency_table, missing_summary
from palaeo_cleaning.data_understanding.data_report_generator import markdown_table


def test_frequency_table_order():
    df = pl.DataFrame({"time_bin": ["Ypresian", "Danian", "Ypresian", "Lutetian", "Danian", "Ypresian"]})
    table = frequency_table(df, "time_bin")
    assert table.rows() == [
        ("Ypresian", 3, 0.5),
        ("Danian", 2, pytest.approx(1 / 3)),
        ("Lutetian", 1, pytest.approx(1 / 6)),
    ]


def test_missing_summary_respects_schema():
    df = pl.DataFrame({"cc": ["NA", None, "US", "NA"], "lat": [1.0, None, None, 2.0]})
    schema = TableSchema.from_specs([ColumnSpec("cc", "categorical", domain=frozenset({"NA", "US"}))])
    summary = missing_summary(df, schema)
    assert summary["missing"].to_list() == [1, 2]
    assert summary["missing_pct"].to_list() == [25.0, 50.0]


def test_describe_numeric(occurrences):
    stats = describe_numeric(occurrences, "lat")
    assert stats["count"] == 5
    assert stats["min"] == -22.5
    assert stats["max"] == 50.7
    with pytest.raises(SchemaError):
        describe_numeric(occurrences, "genus")


def test_markdown_table():
    lines = markdown_table(pl.DataFrame({"group": ["A", None], "share": [0.5, 0.25]}))
    assert lines[0] == "| group | share |"
    assert lines[2] == "| A | 0.500 |"
    assert lines[3] == "|  | 0.250 |"
