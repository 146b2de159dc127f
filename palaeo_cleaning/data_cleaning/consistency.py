"""
Consistency Checker Module

Detects probable spelling variants of the same entity (taxon names, formation
names, ...) and values with an unexpected shape.

Near-duplicate detection compares every pair of distinct values in a text
column with a normalised, Levenshtein-based dissimilarity in [0, 1] and
reports the pairs below a threshold. Pairs are canonical (value_a < value_b)
and sorted, so the output does not depend on row order. The checker only
detects: merging variants is a human decision.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import Levenshtein
import polars as pl

from ..errors import ThresholdError
from ..data_loading.schema import FLAG_PREFIX, ensure_new_flag, require_columns, require_numeric


PAIR_SCHEMA = {
    'value_a': pl.String,
    'value_b': pl.String,
    'dissimilarity': pl.Float64,
    'count_a': pl.UInt32,
    'count_b': pl.UInt32,
}

VIOLATION_SCHEMA = {
    'row': pl.UInt32,
    'column': pl.String,
    'value': pl.String,
    'issue': pl.String,
}


def dissimilarity(a: str, b: str) -> float:
    """
    Normalised edit dissimilarity: 0 for identical strings, 1 for nothing in common.

    This is the indel distance (insertions and deletions only) divided by the
    combined length, i.e. one minus the Levenshtein ratio, computed as a single
    division so that boundary values such as 2/20 compare exactly.
    """
    total = len(a) + len(b)
    if total == 0:
        return 0.0
    return Levenshtein.distance(a, b, weights=(1, 1, 2)) / total


def _validate_threshold(threshold: float) -> float:
    if threshold is None or not 0.0 <= threshold <= 1.0:
        raise ThresholdError(f"Dissimilarity threshold must be within [0, 1], got {threshold}")
    return float(threshold)


class ConsistencyChecker:
    """
    Near-duplicate string detection over a text column.

    Args:
        threshold: Pairs with dissimilarity strictly below this are flagged
        same_initial: Only compare values sharing their first character, as
            taxonomic spell checks usually do
    """

    def __init__(self, threshold: float = 0.05, same_initial: bool = False):
        self.threshold = _validate_threshold(threshold)
        self.same_initial = same_initial
        self.logger = logging.getLogger(__name__)

    def near_duplicate_pairs(self, df: pl.DataFrame, column: str) -> pl.DataFrame:
        """
        Candidate spelling variants in a column.

        Returns:
            DataFrame [value_a, value_b, dissimilarity, count_a, count_b] with
            value_a < value_b, sorted by (value_a, value_b)
        """
        require_columns(df, [column])
        counts = (
            df.select(pl.col(column).cast(pl.String))
            .drop_nulls()
            .group_by(column)
            .agg(pl.len().alias("count"))
            .sort(column)
        )
        values = counts[column].to_list()
        frequency = dict(zip(values, counts["count"].to_list()))

        rows = []
        for i, a in enumerate(values):
            for b in values[i + 1:]:
                if self.same_initial and a[:1] != b[:1]:
                    continue
                score = dissimilarity(a, b)
                if score < self.threshold:
                    rows.append((a, b, score, frequency[a], frequency[b]))

        pairs = pl.DataFrame(rows, schema=PAIR_SCHEMA, orient="row").sort(["value_a", "value_b"])
        self.logger.info(
            f"{column}: {pairs.height} near-duplicate pairs among {len(values):,} distinct values "
            f"(threshold {self.threshold})"
        )
        return pairs

    def flag_near_duplicates(self, df: pl.DataFrame, column: str,
                             flag_name: Optional[str] = None) -> Tuple[pl.DataFrame, pl.DataFrame]:
        """
        Add a column naming the near-duplicate partners of each record's value.

        Returns:
            Tuple of (flagged table, pairs DataFrame)
        """
        flag_name = flag_name or f"{FLAG_PREFIX}near_duplicate_of_{column}"
        ensure_new_flag(df, flag_name)
        pairs = self.near_duplicate_pairs(df, column)

        partners: Dict[str, List[str]] = {}
        for a, b in zip(pairs["value_a"].to_list(), pairs["value_b"].to_list()):
            partners.setdefault(a, []).append(b)
            partners.setdefault(b, []).append(a)
        mapping = {value: "; ".join(sorted(others)) for value, others in partners.items()}

        if mapping:
            partner_expr = pl.col(column).cast(pl.String).replace_strict(
                mapping, default=None, return_dtype=pl.String
            )
        else:
            partner_expr = pl.lit(None, dtype=pl.String)
        flagged = df.with_columns(partner_expr.alias(flag_name))
        return flagged, pairs


def near_duplicate_clusters(pairs: pl.DataFrame) -> List[List[str]]:
    """Group flagged pairs into connected clusters of variant spellings."""
    parent: Dict[str, str] = {}

    def find(x: str) -> str:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    for a, b in zip(pairs["value_a"].to_list(), pairs["value_b"].to_list()):
        parent.setdefault(a, a)
        parent.setdefault(b, b)
        root_a, root_b = find(a), find(b)
        if root_a != root_b:
            parent[max(root_a, root_b)] = min(root_a, root_b)

    clusters: Dict[str, List[str]] = {}
    for value in parent:
        clusters.setdefault(find(value), []).append(value)
    return sorted(sorted(members) for members in clusters.values())


def is_flagged(pairs: pl.DataFrame, a: str, b: str) -> bool:
    """True if (a, b) was flagged, regardless of argument order."""
    if a > b:
        a, b = b, a
    return pairs.filter((pl.col("value_a") == a) & (pl.col("value_b") == b)).height > 0


def _violations(df: pl.DataFrame, column: str, mask: pl.Expr, issue: str) -> pl.DataFrame:
    return (
        df.select(pl.col(column).cast(pl.String).alias("value"), mask.alias("__bad"))
        .with_row_index("row")
        .filter(pl.col("__bad").fill_null(False))
        .select(
            pl.col("row").cast(pl.UInt32),
            pl.lit(column, dtype=pl.String).alias("column"),
            pl.col("value"),
            pl.lit(issue, dtype=pl.String).alias("issue"),
        )
    )


def _empty_violations() -> pl.DataFrame:
    return pl.DataFrame(schema=VIOLATION_SCHEMA)


def check_value_shape(df: pl.DataFrame, column: str,
                      forbidden_characters: Optional[str] = None,
                      expected_tokens: Optional[Union[int, Tuple[int, int]]] = None,
                      pattern: Optional[str] = None) -> pl.DataFrame:
    """
    Report values with an unexpected shape; values are never modified.

    Args:
        column: Text column to check (nulls are ignored)
        forbidden_characters: Characters that must not appear, e.g. '?."'
        expected_tokens: Exact whitespace-separated token count, or an
            inclusive (min, max) range. A species name has two tokens.
        pattern: Regular expression each value must fully match

    Returns:
        DataFrame [row, column, value, issue]
    """
    require_columns(df, [column])
    text = pl.col(column).cast(pl.String)
    frames = [_empty_violations()]

    if forbidden_characters:
        contains_forbidden = text.str.contains_any(list(forbidden_characters))
        frames.append(_violations(df, column, contains_forbidden, "forbidden_characters"))

    if expected_tokens is not None:
        if isinstance(expected_tokens, int):
            low = high = expected_tokens
        else:
            low, high = expected_tokens
        if low < 0 or high < low:
            raise ThresholdError(f"Invalid expected_tokens {expected_tokens!r}", column=column)
        n_tokens = text.str.extract_all(r"\S+").list.len()
        frames.append(_violations(df, column, (n_tokens < low) | (n_tokens > high), "token_count"))

    if pattern is not None:
        anchored = f"^(?:{pattern})$"
        # polars runs its own regex engine, so the pattern is compiled there
        try:
            pl.Series([""], dtype=pl.String).str.contains(anchored)
        except (pl.exceptions.ComputeError, pl.exceptions.InvalidOperationError) as e:
            raise ThresholdError(f"Invalid pattern {pattern!r}: {e}", column=column) from e
        frames.append(_violations(df, column, ~text.str.contains(anchored), "pattern"))

    return pl.concat(frames).sort(["row", "issue"])


def check_domain(df: pl.DataFrame, column: str, domain: Iterable[str]) -> pl.DataFrame:
    """Report non-null values that are not members of the known domain."""
    require_columns(df, [column])
    domain = list(domain)
    text = pl.col(column).cast(pl.String)
    return pl.concat([
        _empty_violations(),
        _violations(df, column, text.is_not_null() & ~text.is_in(domain), "outside_domain"),
    ])


def check_coordinates(df: pl.DataFrame, lat_column: str = "lat", lng_column: str = "lng") -> pl.DataFrame:
    """
    Report coordinates outside the valid ranges, and (0, 0) coordinates which
    usually mark a missing location entered as zero.
    """
    require_numeric(df, lat_column)
    require_numeric(df, lng_column)
    lat = pl.col(lat_column)
    lng = pl.col(lng_column)
    frames = [
        _empty_violations(),
        _violations(df, lat_column, (lat < -90) | (lat > 90), "latitude_out_of_range"),
        _violations(df, lng_column, (lng < -180) | (lng > 180), "longitude_out_of_range"),
        _violations(df, lat_column, (lat == 0) & (lng == 0), "zero_coordinates"),
    ]
    return pl.concat(frames).sort(["row", "issue"])


def summarise_violations(violations: pl.DataFrame) -> Dict[str, Any]:
    """Count violations per issue."""
    if violations.height == 0:
        return {}
    counts = violations.group_by("issue").agg(pl.len().alias("n")).sort("issue")
    return dict(zip(counts["issue"].to_list(), counts["n"].to_list()))
