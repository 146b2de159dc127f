import logging

import polars as pl
import pytest

from palaeo_cleaning.errors import SchemaError, ThresholdError
from palaeo_cleaning.data_understanding import GroupOutlierDetector, flag_group_outliers


@pytest.fixture
def grouped():
    return pl.DataFrame({
        "time_bin": ["A"] * 6 + ["B"] * 4 + ["C"] * 3 + [None],
        "p_lat": [1.0, 2.0, 3.0, 4.0, 5.0, 100.0,
                  10.0, 11.0, 12.0, 13.0,
                  1.0, 50.0, 1000.0,
                  500.0],
    })


@pytest.fixture
def dense_subgroup():
    # 20 tightly clustered US records dominate the bin
    us = [39.0 + 0.1 * k for k in range(20)]
    fr = [10.0, 20.0, 30.0, 50.0, 60.0]
    return pl.DataFrame({
        "time_bin": ["Ypresian"] * 25,
        "cc": ["US"] * 20 + ["FR"] * 5,
        "p_lat": us + fr,
    })


def test_iqr_bounds_per_group(grouped):
    flagged, result = GroupOutlierDetector().detect(grouped, "p_lat", "time_bin")

    a = result.groups["A"]
    assert a.q1 == pytest.approx(2.25)
    assert a.q3 == pytest.approx(4.75)
    assert a.upper == pytest.approx(8.5)
    assert a.outliers == 1
    b = result.groups["B"]
    assert (b.lower, b.upper) == (pytest.approx(8.5), pytest.approx(14.5))
    assert b.outliers == 0

    assert flagged["flag_outlier_p_lat"].to_list()[:10] == [False] * 5 + [True] + [False] * 4


def test_small_groups_are_skipped_with_warning(grouped, caplog):
    with caplog.at_level(logging.WARNING):
        flagged, result = GroupOutlierDetector().detect(grouped, "p_lat", "time_bin")

    assert result.skipped_groups == ["C"]
    assert result.groups["C"].lower is None
    assert flagged["flag_outlier_p_lat"].to_list()[10:13] == [False, False, False]
    assert "outlier flagging skipped" in caplog.text


def test_report_shows_configured_minimum(grouped):
    _, result = GroupOutlierDetector(min_group_size=5).detect(grouped, "p_lat", "time_bin")
    assert result.skipped_groups == ["B", "C"]
    section = "\n".join(result.markdown_section())
    assert "skipped (< 5 records)" in section
    assert "(< 4 records)" not in section


def test_records_without_group_are_not_flagged(grouped):
    flagged, result = GroupOutlierDetector().detect(grouped, "p_lat", "time_bin")
    assert flagged["flag_outlier_p_lat"][-1] is False
    assert result.assessed == 13


def test_detection_never_removes_records(grouped):
    flagged, result = GroupOutlierDetector().detect(grouped, "p_lat", "time_bin")
    assert flagged.height == grouped.height
    assert flagged.drop("flag_outlier_p_lat").equals(grouped)
    assert result.flagged == 1


def test_null_values_are_not_assessed():
    df = pl.DataFrame({"g": ["A"] * 6, "v": [1.0, 2.0, None, 3.0, 4.0, 5.0]})
    flagged, result = GroupOutlierDetector().detect(df, "v", "g")
    assert result.assessed == 5
    assert result.groups["A"].n == 5
    assert flagged["flag_outlier_v"][2] is False


def test_wider_multiplier_flags_fewer(grouped):
    _, narrow = GroupOutlierDetector(multiplier=1.5).detect(grouped, "p_lat", "time_bin")
    _, wide = GroupOutlierDetector(multiplier=50).detect(grouped, "p_lat", "time_bin")
    assert wide.flagged <= narrow.flagged
    assert wide.flagged == 0


def test_recompute_excluding_subgroup(dense_subgroup):
    detector = GroupOutlierDetector()
    full_df, full = detector.detect(dense_subgroup, "p_lat", "time_bin")
    excl_df, excl = detector.recompute_excluding(dense_subgroup, "p_lat", "time_bin", "cc", ["US"])

    assert full.flagged == 5
    assert excl.flagged == 0
    assert excl.assessed == 5
    assert excl.excluded == 20
    assert excl_df["flag_outlier_p_lat_excluding_cc"].null_count() == 20

    # removing the dense cluster widens the bounds for the remaining records
    assert excl.groups["Ypresian"].lower <= full.groups["Ypresian"].lower
    assert excl.groups["Ypresian"].upper >= full.groups["Ypresian"].upper
    remaining_full = full_df.filter(pl.col("cc") != "US")["flag_outlier_p_lat"].sum()
    assert excl.flagged <= remaining_full


def test_convenience_function_with_exclusion(dense_subgroup):
    df, result = flag_group_outliers(dense_subgroup, "p_lat", "time_bin",
                                     exclude_column="cc", exclude_values=["US"])
    assert result.exclude_column == "cc"
    assert "flag_outlier_p_lat_excluding_cc" in df.columns
    section = "\n".join(result.markdown_section())
    assert "excluding cc" in section
    assert "Records excluded from bounds: 20" in section


def test_invalid_configuration():
    with pytest.raises(ThresholdError):
        GroupOutlierDetector(multiplier=0)
    with pytest.raises(ThresholdError):
        GroupOutlierDetector(min_group_size=3)


def test_non_numeric_value_column(grouped):
    with pytest.raises(SchemaError, match="must be numeric"):
        GroupOutlierDetector().detect(grouped, "time_bin", "time_bin")


def test_flag_is_not_overwritten(grouped):
    flagged, _ = GroupOutlierDetector().detect(grouped, "p_lat", "time_bin")
    with pytest.raises(SchemaError):
        GroupOutlierDetector().detect(flagged, "p_lat", "time_bin")
