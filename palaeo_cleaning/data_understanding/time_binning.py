"""
Time binning for occurrence tables.

Assigns every record to exactly one bin of a fixed interval scale using the
majority rule: the bin sharing the largest overlap with the record's age range
[max_ma, min_ma] wins. Ties are resolved in favour of the bin listed first in
the scale (the older one), and a point age (max_ma == min_ma) goes to the bin
containing it. The resulting column is the group key for group-wise
statistics such as outlier bounds.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
import polars as pl

from ..errors import SchemaError, ThresholdError
from ..data_loading.schema import ensure_new_flag, require_numeric


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeInterval:
    name: str
    max_ma: float
    min_ma: float


# International Chronostratigraphic Chart v2023/09, Paleogene stages (Ma)
PALEOGENE_STAGES: Tuple[TimeInterval, ...] = (
    TimeInterval("Danian", 66.0, 61.6),
    TimeInterval("Selandian", 61.6, 59.2),
    TimeInterval("Thanetian", 59.2, 56.0),
    TimeInterval("Ypresian", 56.0, 47.8),
    TimeInterval("Lutetian", 47.8, 41.2),
    TimeInterval("Bartonian", 41.2, 37.71),
    TimeInterval("Priabonian", 37.71, 33.9),
    TimeInterval("Rupelian", 33.9, 27.82),
    TimeInterval("Chattian", 27.82, 23.03),
)

PALEOGENE_EPOCHS: Tuple[TimeInterval, ...] = (
    TimeInterval("Paleocene", 66.0, 56.0),
    TimeInterval("Eocene", 56.0, 33.9),
    TimeInterval("Oligocene", 33.9, 23.03),
)

SCALES = {
    'paleogene_stages': PALEOGENE_STAGES,
    'paleogene_epochs': PALEOGENE_EPOCHS,
}


def get_scale(name: str) -> Tuple[TimeInterval, ...]:
    if name not in SCALES:
        raise ThresholdError(f"Unknown interval scale {name!r}; expected one of {sorted(SCALES)}")
    return SCALES[name]


def _validate_scale(scale: Sequence[TimeInterval]) -> None:
    if not scale:
        raise ThresholdError("Interval scale is empty")
    for interval in scale:
        if interval.max_ma <= interval.min_ma:
            raise ThresholdError(f"Interval {interval.name!r} has max_ma <= min_ma")


def assign_majority_bin(df: pl.DataFrame, max_column: str = "max_ma", min_column: str = "min_ma",
                        scale: Sequence[TimeInterval] = PALEOGENE_STAGES,
                        bin_column: str = "flag_time_bin") -> pl.DataFrame:
    """
    Add a bin column assigning each record to one interval of the scale.

    The bin column is derived, so like every flag it must carry the `flag_`
    prefix; dropping the flag columns gives back the input table.

    Raises:
        SchemaError: If an age is missing, inverted, or outside the scale, or
            the bin column exists or lacks the `flag_` prefix
    """
    _validate_scale(scale)
    require_numeric(df, max_column)
    require_numeric(df, min_column)
    ensure_new_flag(df, bin_column)

    ages_max = df[max_column].cast(pl.Float64).to_numpy()
    ages_min = df[min_column].cast(pl.Float64).to_numpy()

    missing = np.isnan(ages_max) | np.isnan(ages_min)
    if missing.any():
        row = int(np.argmax(missing))
        raise SchemaError("Record has no age range and cannot be binned", column=max_column, row=row)
    inverted = ages_max < ages_min
    if inverted.any():
        row = int(np.argmax(inverted))
        raise SchemaError(
            "Record has max age younger than min age", column=max_column, row=row,
            value=(float(ages_max[row]), float(ages_min[row])),
        )

    bin_max = np.array([i.max_ma for i in scale])
    bin_min = np.array([i.min_ma for i in scale])

    overlap = np.minimum(ages_max[:, None], bin_max[None, :]) - np.maximum(ages_min[:, None], bin_min[None, :])
    overlap = np.clip(overlap, 0.0, None)

    # Point ages have zero overlap everywhere; use containment instead
    point = ages_max == ages_min
    contains = (ages_max[:, None] <= bin_max[None, :]) & (ages_max[:, None] > bin_min[None, :])
    overlap = np.where(point[:, None], contains.astype(float), overlap)

    # argmax returns the first maximum, i.e. the older bin on ties
    best = np.argmax(overlap, axis=1)
    unassigned = overlap[np.arange(len(best)), best] <= 0.0
    if unassigned.any():
        row = int(np.argmax(unassigned))
        raise SchemaError(
            "Record age range does not overlap the interval scale", column=max_column, row=row,
            value=(float(ages_max[row]), float(ages_min[row])),
        )

    names: List[str] = [i.name for i in scale]
    bins = pl.Series(bin_column, [names[i] for i in best], dtype=pl.String)
    logger.info(f"Assigned {df.height:,} records to {len(set(bins.to_list()))} of {len(scale)} bins")
    return df.with_columns(bins)
