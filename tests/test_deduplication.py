import polars as pl
import pytest
from polars.testing import assert_frame_equal

from palaeo_cleaning.errors import SchemaError
from palaeo_cleaning.data_cleaning import flag_duplicates, keep_latest, remove_duplicates


def test_first_record_wins():
    df = pl.DataFrame({"k": [1, 2, 1], "v": ["a", "b", "c"]})
    result, removed = remove_duplicates(df, ["k"])
    assert result.rows() == [(1, "a"), (2, "b")]
    assert removed == 1


def test_removal_is_idempotent():
    df = pl.DataFrame({"k": [3, 1, 3, 2, 1], "v": ["a", "b", "c", "d", "e"]})
    once, _ = remove_duplicates(df, ["k"])
    twice, removed = remove_duplicates(once, ["k"])
    assert_frame_equal(once, twice)
    assert removed == 0
    assert once["v"].to_list() == ["a", "b", "d"]


def test_multi_column_keys():
    df = pl.DataFrame({
        "collection_no": [10, 10, 10, 11],
        "accepted_name": ["Crocodylus", "Crocodylus", "Alligator", "Crocodylus"],
    })
    result, removed = remove_duplicates(df, ["collection_no", "accepted_name"])
    assert removed == 1
    assert result.height == 3


def test_flag_mode_marks_every_member():
    df = pl.DataFrame({"k": [1, 2, 1, 3]})
    flagged = flag_duplicates(df, ["k"])
    assert flagged.height == 4
    assert flagged["flag_duplicate"].to_list() == [True, False, True, False]


def test_keep_latest_preserves_order():
    df = pl.DataFrame({
        "evaluator": ["A", "A", "B", "A"],
        "publication": ["P1", "P2", "P1", "P1"],
        "timestamp": [1, 5, 3, 9],
        "answer": ["old", "only", "only", "new"],
    })
    latest = keep_latest(df, ["evaluator", "publication"], "timestamp")
    assert latest["answer"].to_list() == ["only", "only", "new"]


def test_key_validation():
    df = pl.DataFrame({"k": [1, 2]})
    with pytest.raises(SchemaError):
        remove_duplicates(df, [])
    with pytest.raises(SchemaError):
        remove_duplicates(df, ["missing"])
    flagged = flag_duplicates(df, "k")
    with pytest.raises(SchemaError):
        flag_duplicates(flagged, ["k"])
