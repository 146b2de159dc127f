import polars as pl
import pytest

from palaeo_cleaning.errors import SchemaError, ThresholdError
from palaeo_cleaning.data_loading import drop_flag_columns
from palaeo_cleaning.data_understanding import PALEOGENE_EPOCHS, assign_majority_bin, get_scale


def ages(max_ma, min_ma):
    return pl.DataFrame({"max_ma": max_ma, "min_ma": min_ma}, schema={"max_ma": pl.Float64, "min_ma": pl.Float64})


def test_majority_overlap_wins():
    df = ages([66.0, 57.0, 45.0], [56.0, 50.0, 40.0])
    binned = assign_majority_bin(df)
    # 66-56: Danian 4.4, Selandian 2.4, Thanetian 3.2
    # 57-50: Thanetian 1.0, Ypresian 6.0
    # 45-40: Lutetian 3.8, Bartonian 1.2
    assert binned["flag_time_bin"].to_list() == ["Danian", "Ypresian", "Lutetian"]


def test_tie_goes_to_older_bin():
    binned = assign_majority_bin(ages([58.0], [54.0]))
    assert binned["flag_time_bin"].to_list() == ["Thanetian"]


def test_point_age_uses_containing_bin():
    binned = assign_majority_bin(ages([50.0, 30.0], [50.0, 30.0]))
    assert binned["flag_time_bin"].to_list() == ["Ypresian", "Rupelian"]


def test_epoch_scale():
    binned = assign_majority_bin(ages([66.0, 40.0], [60.0, 20.0]), scale=PALEOGENE_EPOCHS, bin_column="flag_epoch")
    assert binned["flag_epoch"].to_list() == ["Paleocene", "Oligocene"]


def test_every_record_gets_exactly_one_bin():
    df = ages([65.0, 62.0, 48.0, 36.0, 24.0], [64.0, 55.0, 30.0, 35.0, 23.5])
    binned = assign_majority_bin(df)
    assert binned.height == df.height
    assert binned["flag_time_bin"].null_count() == 0


def test_age_outside_scale_raises():
    with pytest.raises(SchemaError, match="does not overlap") as excinfo:
        assign_majority_bin(ages([60.0, 70.0], [58.0, 67.0]))
    assert excinfo.value.row == 1


def test_missing_age_raises():
    with pytest.raises(SchemaError, match="no age range"):
        assign_majority_bin(ages([60.0, None], [58.0, 50.0]))


def test_inverted_age_raises():
    with pytest.raises(SchemaError, match="younger than min age"):
        assign_majority_bin(ages([50.0], [55.0]))


def test_existing_bin_column_raises():
    df = ages([60.0], [58.0]).with_columns(pl.lit("x").alias("flag_time_bin"))
    with pytest.raises(SchemaError, match="already exists"):
        assign_majority_bin(df)


def test_bin_column_is_a_flag():
    df = ages([60.0], [58.0])
    with pytest.raises(SchemaError, match="must start with"):
        assign_majority_bin(df, bin_column="time_bin")
    assert drop_flag_columns(assign_majority_bin(df)).columns == df.columns


def test_unknown_scale():
    assert len(get_scale("paleogene_stages")) == 9
    with pytest.raises(ThresholdError):
        get_scale("cretaceous_stages")
