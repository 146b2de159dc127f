import json

import polars as pl
import pytest

from palaeo_cleaning.errors import FormatError, SchemaError
from palaeo_cleaning.data_loading import (
    ColumnSpec,
    OccurrenceLoader,
    TableSchema,
    load_occurrences,
    reconcile_duplicate_columns,
    write_cleaned_table,
)

from conftest import COLUMNS, HEADER_LINES, ROWS


def test_load_splits_metadata_from_table(write_export):
    metadata, df = load_occurrences(write_export(), header_lines=HEADER_LINES)

    assert df.shape == (4, 6)
    assert df.columns == COLUMNS
    assert all(dtype == pl.String for dtype in df.dtypes)
    assert metadata.license == "Creative Commons CC-BY"
    assert metadata.access_time == "Thu 2025-01-30 10:12:53 GMT"
    assert metadata.record_count == 4
    assert metadata.parameters == {"base_name": "Crocodylia", "interval": "Paleogene"}
    # metadata never leaks into the table
    assert "Data Provider" not in df["occurrence_no"].to_list()


def test_load_without_metadata_block(write_export):
    metadata, df = load_occurrences(write_export(metadata=False), header_lines=0)
    assert df.height == 4
    assert metadata.entries == {}
    assert metadata.record_count is None


def test_declared_record_count_must_match(write_export):
    with pytest.raises(FormatError, match="declares 7 records"):
        load_occurrences(write_export(record_count=7), header_lines=HEADER_LINES)


def test_header_count_too_small(write_export):
    with pytest.raises(FormatError, match="looks like metadata"):
        load_occurrences(write_export(), header_lines=HEADER_LINES - 1)


def test_header_count_too_large(write_export):
    with pytest.raises(FormatError, match="Metadata row"):
        load_occurrences(write_export(), header_lines=HEADER_LINES + 1)


def test_file_shorter_than_header_block(tmp_path):
    path = tmp_path / "short.csv"
    path.write_text('"Data Provider","The Paleobiology Database"\n', encoding="utf-8")
    with pytest.raises(FormatError, match="found only 1 rows"):
        load_occurrences(path, header_lines=3)


@pytest.mark.parametrize("body, bad_row", [
    ('1,2,3\n4,5\n', 1),
    ('1,2,3\n4,5,6\n7,8,9,10\n', 2),
    ('"x,y",2\n', 0),
])
def test_rows_must_match_header_width(tmp_path, body, bad_row):
    path = tmp_path / "ragged.csv"
    path.write_text('"a","b","c"\n' + body, encoding="utf-8")
    with pytest.raises(FormatError, match="header has 3 columns") as excinfo:
        OccurrenceLoader(0).load(path)
    assert excinfo.value.row == bad_row


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_occurrences(tmp_path / "absent.csv")


def test_duplicate_columns_get_positional_suffix(write_export):
    columns = ["occurrence_no", "cc", "lat", "cc"]
    rows = [["1", "NA", "1.0", "NA"], ["2", "US", "2.0", "US"]]
    _, df = load_occurrences(write_export(columns, rows, metadata=False))
    assert df.columns == ["occurrence_no", "cc", "lat", "cc_3"]


def test_duplicate_columns_can_be_rejected(write_export):
    columns = ["occurrence_no", "cc", "lat", "cc"]
    rows = [["1", "NA", "1.0", "NA"]]
    with pytest.raises(FormatError, match="Duplicate column"):
        load_occurrences(write_export(columns, rows, metadata=False), on_duplicate_columns="raise")


def test_reconcile_identical_duplicate_columns():
    df = pl.DataFrame({"cc": ["NA", None, "US"], "lat": [1.0, 2.0, 3.0], "cc_2": ["NA", None, "US"]})
    result = reconcile_duplicate_columns(df, "cc", "cc_2", rename_to="country_code")
    assert result.columns == ["country_code", "lat"]
    assert result["country_code"].to_list() == ["NA", None, "US"]


def test_reconcile_rejects_differing_columns():
    df = pl.DataFrame({"cc": ["NA", "GB", "US"], "cc_2": ["NA", "FR", "US"]})
    with pytest.raises(FormatError) as excinfo:
        reconcile_duplicate_columns(df, "cc", "cc_2")
    assert excinfo.value.row == 1
    assert excinfo.value.column == "cc_2"


def test_schema_types_columns_and_keeps_namibia(write_export):
    schema = TableSchema.from_specs([
        ColumnSpec("collection_no", "integer"),
        ColumnSpec("lat", "numeric"),
        ColumnSpec("lng", "numeric"),
        ColumnSpec("cc", "categorical", domain=frozenset({"NA", "GB", "US"})),
    ])
    _, df = load_occurrences(write_export(), header_lines=HEADER_LINES, schema=schema)

    assert df.schema["collection_no"] == pl.Int64
    assert df.schema["lat"] == pl.Float64
    assert df["lat"].null_count() == 1
    assert df["cc"].to_list() == ["NA", "GB", "US", "NA"]


def test_schema_rejects_unparseable_numbers(write_export):
    rows = [r[:] for r in ROWS]
    rows[2][4] = "fifty"
    schema = TableSchema.from_specs([ColumnSpec("lat", "numeric")])
    with pytest.raises(SchemaError) as excinfo:
        load_occurrences(write_export(rows=rows), header_lines=HEADER_LINES, schema=schema)
    assert excinfo.value.column == "lat"
    assert excinfo.value.row == 2


def test_schema_requires_declared_columns(write_export):
    schema = TableSchema.from_specs([ColumnSpec("paleolat", "numeric")])
    with pytest.raises(SchemaError, match="Declared column missing"):
        load_occurrences(write_export(), header_lines=HEADER_LINES, schema=schema)


def test_invalid_loader_configuration():
    with pytest.raises(FormatError):
        OccurrenceLoader(header_lines=-1)
    with pytest.raises(FormatError):
        OccurrenceLoader(on_duplicate_columns="merge")


def test_write_cleaned_table(write_export, tmp_path):
    metadata, df = load_occurrences(write_export(), header_lines=HEADER_LINES)
    paths = write_cleaned_table(df, metadata, tmp_path / "out", stem="crocs")

    written = pl.read_csv(paths["table_csv"], infer_schema=False)
    assert written.shape == df.shape
    with open(paths["metadata_json"], encoding="utf-8") as f:
        meta = json.load(f)
    assert meta["record_count"] == 4
    assert meta["entries"]["Data License"] == "Creative Commons CC-BY"
