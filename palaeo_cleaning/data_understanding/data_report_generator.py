"""
Data Report Generator Module

Small summaries used to understand an occurrence table before and after
cleaning: frequency tables over a group key, per-column missing value
summaries, and basic numeric descriptions.
"""

from typing import Any, Dict, List, Optional

import polars as pl

from ..data_loading.schema import TableSchema, require_columns, require_numeric


def frequency_table(df: pl.DataFrame, group_column: str) -> pl.DataFrame:
    """
    Count records per group.

    Returns:
        DataFrame with columns [group_column, 'count', 'proportion'] sorted by
        count (descending) then group
    """
    require_columns(df, [group_column])
    total = df.height
    counts = df.group_by(group_column).agg(pl.len().alias("count"))
    return (
        counts.with_columns(
            (pl.col("count") / total if total else pl.lit(0.0)).alias("proportion")
        )
        .sort(["count", group_column], descending=[True, False], nulls_last=True)
    )


def missing_summary(df: pl.DataFrame, schema: Optional[TableSchema] = None) -> pl.DataFrame:
    """Missing count and percentage for every column."""
    from ..data_cleaning.completeness import count_missing

    counts = count_missing(df, df.columns, schema)
    total = df.height
    return pl.DataFrame({
        'column': list(counts.keys()),
        'missing': list(counts.values()),
        'missing_pct': [round(v / total * 100, 2) if total else 0.0 for v in counts.values()],
    })


def describe_numeric(df: pl.DataFrame, column: str) -> Dict[str, Any]:
    """Min, max, mean and median of a numeric column, ignoring nulls."""
    require_numeric(df, column)
    series = df[column].drop_nulls()
    return {
        'column': column,
        'count': series.len(),
        'min': series.min(),
        'max': series.max(),
        'mean': series.mean(),
        'median': series.median(),
    }


def markdown_table(df: pl.DataFrame, float_format: str = "{:.3f}") -> List[str]:
    """Render a small DataFrame as Markdown table lines."""
    header = "| " + " | ".join(df.columns) + " |"
    divider = "| " + " | ".join("-" * max(3, len(c)) for c in df.columns) + " |"
    lines = [header, divider]
    for row in df.iter_rows():
        cells = []
        for value in row:
            if value is None:
                cells.append("")
            elif isinstance(value, float):
                cells.append(float_format.format(value))
            else:
                cells.append(str(value))
        lines.append("| " + " | ".join(cells) + " |")
    return lines
