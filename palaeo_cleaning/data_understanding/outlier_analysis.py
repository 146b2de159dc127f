"""
Outlier Analysis Module

Group-wise outlier detection for numerical fields of an occurrence table.
Records are partitioned by a group key (e.g. a geological time bin), the
interquartile range of the value column is computed per group, and records
outside [Q1 - 1.5*IQR, Q3 + 1.5*IQR] for their group are flagged.

Flags are advisory only: the detector never removes records. Because group
composition skews the bounds (a densely sampled region can dominate a time
bin), recomputing the bounds with a subgroup excluded is supported directly
through ``GroupOutlierDetector.recompute_excluding``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import polars as pl

from ..errors import ThresholdError
from ..data_loading.schema import FLAG_PREFIX, ensure_new_flag, require_columns, require_numeric


# Quartiles of fewer than four points are degenerate
MIN_GROUP_SIZE = 4


@dataclass
class GroupBounds:
    """IQR bounds for one group of the value column."""
    group: Any
    n: int
    q1: Optional[float] = None
    q3: Optional[float] = None
    iqr: Optional[float] = None
    lower: Optional[float] = None
    upper: Optional[float] = None
    outliers: int = 0
    skipped: bool = False


@dataclass
class OutlierResult:
    """Outcome of one outlier detection run."""
    value_column: str
    group_column: str
    flag_column: str
    multiplier: float
    min_group_size: int = MIN_GROUP_SIZE
    groups: Dict[Any, GroupBounds] = field(default_factory=dict)
    assessed: int = 0
    flagged: int = 0
    excluded: int = 0
    exclude_column: Optional[str] = None
    exclude_values: List[Any] = field(default_factory=list)

    @property
    def flagged_fraction(self) -> float:
        return self.flagged / self.assessed if self.assessed else 0.0

    @property
    def skipped_groups(self) -> List[Any]:
        return [g for g, bounds in self.groups.items() if bounds.skipped]

    def markdown_section(self) -> List[str]:
        """Markdown lines summarising the bounds per group."""
        title = f"### {self.value_column} by {self.group_column}"
        if self.exclude_column is not None:
            title += f" (excluding {self.exclude_column} in {self.exclude_values})"
        lines = [
            title,
            "",
            f"- Flag column: `{self.flag_column}`",
            f"- Records assessed: {self.assessed:,}",
            f"- Records flagged: {self.flagged:,} ({self.flagged_fraction * 100:.2f}%)",
        ]
        if self.exclude_column is not None:
            lines.append(f"- Records excluded from bounds: {self.excluded:,}")
        lines.extend([
            "",
            f"| Group | N | Q1 | Q3 | IQR | Lower ({self.multiplier}x) | Upper ({self.multiplier}x) | Outliers |",
            "| ----- | - | -- | -- | --- | ----- | ----- | -------- |",
        ])
        for group, b in self.groups.items():
            if b.skipped:
                lines.append(f"| {group} | {b.n:,} | - | - | - | - | - | skipped (< {self.min_group_size} records) |")
            else:
                lines.append(
                    f"| {group} | {b.n:,} | {b.q1:.3f} | {b.q3:.3f} | {b.iqr:.3f} | "
                    f"{b.lower:.3f} | {b.upper:.3f} | {b.outliers:,} |"
                )
        lines.append("")
        return lines


class GroupOutlierDetector:
    """
    Interquartile range outlier detection within groups.

    Groups with fewer than ``min_group_size`` valued records have an undefined
    IQR; they are skipped, meaning no bounds are computed and none of their
    records are flagged. Records with a missing value or group key are not
    assessed and are flagged False.
    """

    def __init__(self, multiplier: float = 1.5, min_group_size: int = MIN_GROUP_SIZE):
        if multiplier <= 0:
            raise ThresholdError(f"IQR multiplier must be positive, got {multiplier}")
        if min_group_size < MIN_GROUP_SIZE:
            raise ThresholdError(
                f"min_group_size must be at least {MIN_GROUP_SIZE}, got {min_group_size}"
            )
        self.multiplier = multiplier
        self.min_group_size = min_group_size
        self.logger = logging.getLogger(__name__)

    def detect(self, df: pl.DataFrame, value_column: str, group_column: str,
               flag_name: Optional[str] = None) -> Tuple[pl.DataFrame, OutlierResult]:
        """
        Flag outliers of value_column within each group of group_column.

        Returns:
            Tuple of (table with flag column added, OutlierResult)
        """
        flag_name = flag_name or f"{FLAG_PREFIX}outlier_{value_column}"
        return self._flag(df, value_column, group_column, flag_name, None, [])

    def recompute_excluding(self, df: pl.DataFrame, value_column: str, group_column: str,
                            exclude_column: str, exclude_values: Sequence[Any],
                            flag_name: Optional[str] = None) -> Tuple[pl.DataFrame, OutlierResult]:
        """
        Recompute bounds with a subgroup removed from the statistics.

        The excluded records stay in the table with a null flag (not assessed);
        the remaining records are flagged against bounds computed without them.
        """
        flag_name = flag_name or f"{FLAG_PREFIX}outlier_{value_column}_excluding_{exclude_column}"
        return self._flag(df, value_column, group_column, flag_name, exclude_column, list(exclude_values))

    def _flag(self, df: pl.DataFrame, value_column: str, group_column: str, flag_name: str,
              exclude_column: Optional[str], exclude_values: List[Any]) -> Tuple[pl.DataFrame, OutlierResult]:
        require_columns(df, [group_column])
        require_numeric(df, value_column)
        ensure_new_flag(df, flag_name)

        if exclude_column is not None:
            require_columns(df, [exclude_column])
            excluded = pl.col(exclude_column).is_in(exclude_values).fill_null(False)
        else:
            excluded = pl.lit(False)

        value = pl.col(value_column)
        valued = value.is_not_null() & value.is_not_nan() if df.schema[value_column].is_float() else value.is_not_null()
        assessable = valued & pl.col(group_column).is_not_null()

        stats = (
            df.filter(assessable & ~excluded)
            .group_by(group_column, maintain_order=True)
            .agg(
                pl.len().alias("__n"),
                value.quantile(0.25, interpolation="linear").alias("__q1"),
                value.quantile(0.75, interpolation="linear").alias("__q3"),
            )
            .with_columns(
                pl.when(pl.col("__n") >= self.min_group_size).then(pl.col("__q1")).alias("__q1"),
                pl.when(pl.col("__n") >= self.min_group_size).then(pl.col("__q3")).alias("__q3"),
            )
            .with_columns((pl.col("__q3") - pl.col("__q1")).alias("__iqr"))
            .with_columns(
                (pl.col("__q1") - self.multiplier * pl.col("__iqr")).alias("__lower"),
                (pl.col("__q3") + self.multiplier * pl.col("__iqr")).alias("__upper"),
            )
        )

        outside = (value < pl.col("__lower")) | (value > pl.col("__upper"))
        flagged = (
            df.with_row_index("__row")
            .join(stats, on=group_column, how="left")
            .sort("__row")
            .with_columns(
                pl.when(excluded).then(None)
                .when(assessable & pl.col("__lower").is_not_null()).then(outside)
                .otherwise(False)
                .alias(flag_name)
            )
        )
        result_df = df.with_columns(flagged[flag_name])

        result = OutlierResult(
            value_column=value_column,
            group_column=group_column,
            flag_column=flag_name,
            multiplier=self.multiplier,
            min_group_size=self.min_group_size,
            exclude_column=exclude_column,
            exclude_values=exclude_values,
        )
        outlier_counts = (
            flagged.filter(pl.col(flag_name).fill_null(False))
            .group_by(group_column)
            .agg(pl.len().alias("outliers"))
        )
        counts = dict(zip(outlier_counts[group_column].to_list(), outlier_counts["outliers"].to_list()))
        for row in stats.iter_rows(named=True):
            group = row[group_column]
            skipped = row["__lower"] is None
            result.groups[group] = GroupBounds(
                group=group,
                n=row["__n"],
                q1=row["__q1"],
                q3=row["__q3"],
                iqr=row["__iqr"],
                lower=row["__lower"],
                upper=row["__upper"],
                outliers=counts.get(group, 0),
                skipped=skipped,
            )
            if skipped:
                self.logger.warning(
                    f"Group {group!r} of {group_column} has {row['__n']} valued records "
                    f"(< {self.min_group_size}); outlier flagging skipped"
                )

        result.assessed = flagged.filter(assessable & ~excluded).height
        result.flagged = int(flagged[flag_name].fill_null(False).sum())
        result.excluded = flagged.filter(excluded).height

        self.logger.info(
            f"Outliers in {value_column} by {group_column}: {result.flagged:,} of "
            f"{result.assessed:,} assessed records flagged"
        )
        return result_df, result


def flag_group_outliers(df: pl.DataFrame, value_column: str, group_column: str,
                        multiplier: float = 1.5, min_group_size: int = MIN_GROUP_SIZE,
                        exclude_column: Optional[str] = None,
                        exclude_values: Optional[Sequence[Any]] = None) -> Tuple[pl.DataFrame, OutlierResult]:
    """
    Convenience function for a single detection run.

    Example:
        ```python
        from palaeo_cleaning.data_understanding.outlier_analysis import flag_group_outliers

        occdf, result = flag_group_outliers(occdf, "p_lat", "flag_time_bin")
        # Same analysis with North American occurrences removed from the bounds
        occdf, result_excl = flag_group_outliers(occdf, "p_lat", "flag_time_bin",
                                                 exclude_column="cc", exclude_values=["US", "CA"])
        ```
    """
    detector = GroupOutlierDetector(multiplier, min_group_size)
    if exclude_column is not None:
        return detector.recompute_excluding(df, value_column, group_column, exclude_column, exclude_values or [])
    return detector.detect(df, value_column, group_column)
