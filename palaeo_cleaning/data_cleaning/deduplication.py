"""
Deduplication Module

Exact duplicate handling over a key column set:

- ``remove_duplicates`` keeps the first record of every key-tuple (stable,
  original order preserved) and reports how many were removed.
- ``flag_duplicates`` keeps everything and marks every member of a repeated
  key-tuple, for cases where duplication needs review rather than resolution.
- ``keep_latest`` keeps the most recent record per key-tuple, as used for
  repeated evaluation submissions.
"""

import logging
from typing import List, Sequence, Tuple

import polars as pl

from ..errors import SchemaError
from ..data_loading.schema import FLAG_PREFIX, ensure_new_flag, require_columns


logger = logging.getLogger(__name__)

DEDUP_MODES = ("exact", "flag")
DUPLICATE_FLAG = f"{FLAG_PREFIX}duplicate"


def _check_keys(df: pl.DataFrame, keys: Sequence[str]) -> List[str]:
    keys = [keys] if isinstance(keys, str) else list(keys)
    if not keys:
        raise SchemaError("At least one key column is required for deduplication")
    require_columns(df, keys)
    return keys


def remove_duplicates(df: pl.DataFrame, keys: Sequence[str]) -> Tuple[pl.DataFrame, int]:
    """
    Remove all but the first record per distinct key-tuple.

    Returns:
        Tuple of (deduplicated table, number of records removed)
    """
    keys = _check_keys(df, keys)
    result = df.unique(subset=keys, keep="first", maintain_order=True)
    removed = df.height - result.height
    logger.info(f"Removed {removed:,} duplicate records on {keys}: {df.height:,} -> {result.height:,} rows")
    return result, removed


def flag_duplicates(df: pl.DataFrame, keys: Sequence[str],
                    flag_name: str = DUPLICATE_FLAG) -> pl.DataFrame:
    """Mark every record whose key-tuple occurs more than once."""
    keys = _check_keys(df, keys)
    ensure_new_flag(df, flag_name)
    result = df.with_columns(pl.struct(keys).is_duplicated().alias(flag_name))
    logger.info(f"Flagged {int(result[flag_name].sum()):,} records sharing a key on {keys}")
    return result


def keep_latest(df: pl.DataFrame, keys: Sequence[str], order_by: str) -> pl.DataFrame:
    """
    Keep the most recent record (largest order_by value) per key-tuple.

    Records keep their original relative order; ties on order_by go to the
    record appearing first.
    """
    keys = _check_keys(df, keys)
    require_columns(df, [order_by])
    return (
        df.with_row_index("__row")
        .sort([order_by, "__row"], descending=[True, False], nulls_last=True)
        .unique(subset=keys, keep="first", maintain_order=True)
        .sort("__row")
        .drop("__row")
    )
