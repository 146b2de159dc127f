"""
Completeness Filter Module

Counts missing values per column and applies a per-column policy:

- ``drop-missing``: remove records missing a value in any of the drop columns
- ``keep``: keep every record, add a ``flag_missing_<column>`` marker
- ``report-only``: change nothing, only count

Missing values are detected with the column-type-aware rules of the schema
(see ``palaeo_cleaning.data_loading.schema``) so that valid codes colliding
with a missing marker, such as ``NA`` for Namibia, are not counted as absent.
Values are never filled in: imputation is a manual, documented decision.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import polars as pl

from ..errors import ThresholdError
from ..data_loading.schema import (
    ColumnSpec, TableSchema, FLAG_PREFIX, ensure_new_flag, require_columns,
)


class MissingPolicy(str, Enum):
    DROP = "drop-missing"
    KEEP = "keep"
    REPORT = "report-only"

    @classmethod
    def parse(cls, value: Union[str, "MissingPolicy"], column: Optional[str] = None) -> "MissingPolicy":
        if isinstance(value, cls):
            return value
        for policy in cls:
            if policy.value == value:
                return policy
        raise ThresholdError(
            f"Unknown missing-value policy {value!r}; expected one of {[p.value for p in cls]}",
            column=column,
        )


@dataclass
class CompletenessReport:
    """Missing value counts before and after the filter."""
    rows_before: int
    rows_after: int
    missing_before: Dict[str, int] = field(default_factory=dict)
    missing_after: Dict[str, int] = field(default_factory=dict)
    policies: Dict[str, str] = field(default_factory=dict)
    flags_added: List[str] = field(default_factory=list)

    @property
    def rows_dropped(self) -> int:
        return self.rows_before - self.rows_after


def detect_missing(df: pl.DataFrame, column: str, spec: Optional[ColumnSpec] = None) -> pl.Series:
    """
    Boolean mask of missing values in a column.

    Typed numeric columns count nulls and NaN. Text columns count nulls plus
    the markers the column spec declares as true absence.
    """
    require_columns(df, [column])
    dtype = df.schema[column]
    if dtype.is_float():
        expr = pl.col(column).is_null() | pl.col(column).is_nan()
    elif dtype == pl.String and spec is not None:
        expr = spec.missing_expr()
    else:
        expr = pl.col(column).is_null()
    return df.select(expr.fill_null(True).alias(column)).to_series()


def count_missing(df: pl.DataFrame, columns: Iterable[str],
                  schema: Optional[TableSchema] = None) -> Dict[str, int]:
    """Number of missing values per requested column."""
    counts = {}
    for column in columns:
        spec = schema.get(column) if schema is not None else None
        counts[column] = int(detect_missing(df, column, spec).sum())
    return counts


class CompletenessFilter:
    """
    Applies per-column missing value policies to an occurrence table.
    """

    def __init__(self, schema: Optional[TableSchema] = None):
        self.schema = schema
        self.logger = logging.getLogger(__name__)

    def apply(self, df: pl.DataFrame,
              policies: Mapping[str, Union[str, MissingPolicy]]) -> Tuple[pl.DataFrame, CompletenessReport]:
        """
        Apply the policies and return (filtered_table, report).

        Args:
            df: Table to filter
            policies: Mapping of column name to policy

        Raises:
            SchemaError: If a column is absent
            ThresholdError: If a policy is unknown
        """
        parsed = {column: MissingPolicy.parse(policy, column) for column, policy in policies.items()}
        require_columns(df, parsed.keys())

        report = CompletenessReport(
            rows_before=df.height,
            rows_after=df.height,
            policies={column: policy.value for column, policy in parsed.items()},
        )
        report.missing_before = count_missing(df, parsed.keys(), self.schema)

        masks = {column: self._mask(df, column) for column in parsed}
        result = df

        flag_exprs = []
        for column, policy in parsed.items():
            if policy is MissingPolicy.KEEP:
                flag_name = f"{FLAG_PREFIX}missing_{column}"
                ensure_new_flag(result, flag_name)
                flag_exprs.append(pl.Series(flag_name, masks[column]))
                report.flags_added.append(flag_name)
        if flag_exprs:
            result = result.with_columns(flag_exprs)

        drop_columns = [column for column, policy in parsed.items() if policy is MissingPolicy.DROP]
        if drop_columns:
            drop_mask = masks[drop_columns[0]]
            for column in drop_columns[1:]:
                drop_mask = drop_mask | masks[column]
            result = result.filter(~drop_mask)

        report.rows_after = result.height
        report.missing_after = count_missing(result, parsed.keys(), self.schema)

        self.logger.info(
            f"Completeness filter: {report.rows_before:,} -> {report.rows_after:,} rows "
            f"(missing before: {report.missing_before})"
        )
        return result, report

    def _mask(self, df: pl.DataFrame, column: str) -> pl.Series:
        spec = self.schema.get(column) if self.schema is not None else None
        return detect_missing(df, column, spec)
