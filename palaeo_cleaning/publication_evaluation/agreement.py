"""
Publication Evaluation Agreement Module

Scores how consistently several evaluators judged published studies against
the data-cleaning reporting criteria (was the raw data archived, was it
cleaned, was the workflow documented, was the processed data archived).

Workflow:
1. keep each evaluator's most recent submission per publication
2. pivot each criterion to one row per publication, one column per evaluator
3. compute Fleiss' kappa across evaluators for each criterion
4. count answers per publication and criterion for plotting
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import polars as pl
from scipy import stats

from ..errors import SchemaError
from ..data_loading.schema import require_columns
from ..data_cleaning.deduplication import keep_latest


logger = logging.getLogger(__name__)

CRITERIA = ("raw_archived", "data_cleaned", "workflow_documented", "processed_archived")

CRITERIA_LABELS = {
    'raw_archived': 'Raw data archived',
    'data_cleaned': 'Raw data cleaned',
    'workflow_documented': 'Workflow documented',
    'processed_archived': 'Processed data archived',
}


@dataclass
class FleissKappa:
    """Fleiss' kappa for m raters over N subjects, with its asymptotic z test."""
    kappa: float
    subjects: int
    raters: int
    z: float
    p_value: float


def latest_evaluations(df: pl.DataFrame, evaluator_column: str = "evaluator",
                       publication_column: str = "publication", timestamp_column: str = "timestamp",
                       timestamp_format: Optional[str] = None) -> pl.DataFrame:
    """
    Keep the most recent evaluation per evaluator and publication.

    Args:
        timestamp_format: strftime format used to parse a text timestamp
            column; if omitted the column is compared as-is
    """
    require_columns(df, [evaluator_column, publication_column, timestamp_column])
    order_column = timestamp_column
    working = df
    if timestamp_format is not None and df.schema[timestamp_column] == pl.String:
        order_column = "__parsed_timestamp"
        working = df.with_columns(
            pl.col(timestamp_column).str.to_datetime(timestamp_format).alias(order_column)
        )
    latest = keep_latest(working, [evaluator_column, publication_column], order_column)
    if order_column != timestamp_column:
        latest = latest.drop(order_column)
    logger.info(f"Kept {latest.height:,} of {df.height:,} evaluations (latest per evaluator and publication)")
    return latest


def ratings_matrix(df: pl.DataFrame, criterion: str, evaluator_column: str = "evaluator",
                   publication_column: str = "publication") -> pl.DataFrame:
    """One row per publication, one column per evaluator, holding the criterion answer."""
    require_columns(df, [criterion, evaluator_column, publication_column])
    duplicated = df.select(pl.struct([evaluator_column, publication_column]).is_duplicated().any()).item()
    if duplicated:
        raise SchemaError(
            "Several evaluations per evaluator and publication; call latest_evaluations() first",
            column=criterion,
        )
    return (
        df.select(publication_column, evaluator_column, criterion)
        .pivot(on=evaluator_column, index=publication_column, values=criterion)
        .sort(publication_column)
    )


def fleiss_kappa(ratings: pl.DataFrame, rater_columns: Optional[Sequence[str]] = None) -> FleissKappa:
    """
    Fleiss' kappa for categorical ratings.

    Subjects (rows) with any missing rating are dropped before computing.

    Args:
        ratings: One row per subject, one column per rater
        rater_columns: Columns holding the ratings (default: every column but the first)
    """
    if rater_columns is None:
        rater_columns = ratings.columns[1:]
    rater_columns = list(rater_columns)
    require_columns(ratings, rater_columns)
    if len(rater_columns) < 2:
        raise SchemaError("Fleiss' kappa needs at least two raters")

    complete = ratings.select([pl.col(c).cast(pl.String) for c in rater_columns]).drop_nulls()
    values = complete.to_numpy()
    n_subjects, n_raters = values.shape
    if n_subjects == 0:
        raise SchemaError("No subject was rated by every rater")

    categories = np.unique(values)
    # counts[i, j]: number of raters assigning subject i to category j
    counts = np.stack([(values == c).sum(axis=1) for c in categories], axis=1).astype(float)

    p_j = counts.sum(axis=0) / (n_subjects * n_raters)
    p_i = ((counts ** 2).sum(axis=1) - n_raters) / (n_raters * (n_raters - 1))
    p_bar = p_i.mean()
    p_e = (p_j ** 2).sum()

    if math.isclose(p_e, 1.0):
        return FleissKappa(float('nan'), n_subjects, n_raters, float('nan'), float('nan'))

    kappa = (p_bar - p_e) / (1 - p_e)

    q_j = 1 - p_j
    pq = (p_j * q_j).sum()
    se = math.sqrt(2) / (pq * math.sqrt(n_subjects * n_raters * (n_raters - 1))) * math.sqrt(
        pq ** 2 - (p_j * q_j * (q_j - p_j)).sum()
    )
    z = kappa / se
    p_value = 2 * stats.norm.sf(abs(z))
    return FleissKappa(float(kappa), n_subjects, n_raters, float(z), float(p_value))


def publication_number(df: pl.DataFrame, column: str = "publication") -> pl.DataFrame:
    """Replace labels such as 'PBDB #12 - Smith et al. 2020' with the integer 12."""
    require_columns(df, [column])
    return df.with_columns(
        pl.col(column).cast(pl.String)
        .str.replace(r"^PBDB #", "")
        .str.replace(r" - .*$", "")
        .str.strip_chars()
        .cast(pl.Int64)
        .alias(column)
    )


def rating_counts(df: pl.DataFrame, criteria: Sequence[str] = CRITERIA,
                  publication_column: str = "publication") -> pl.DataFrame:
    """Long-format answer counts per publication and criterion."""
    require_columns(df, [publication_column, *criteria])
    return (
        df.select(publication_column, *criteria)
        .unpivot(on=list(criteria), index=publication_column, variable_name="name", value_name="value")
        .group_by([publication_column, "name", "value"], maintain_order=True)
        .agg(pl.len().alias("count"))
        .sort([publication_column, "name", "value"], nulls_last=True)
    )


def evaluate_publications(file_path: Union[str, Path], output_dir: Union[str, Path],
                          criteria: Sequence[str] = CRITERIA,
                          timestamp_format: Optional[str] = None) -> Dict[str, FleissKappa]:
    """
    Run the full agreement analysis on an evaluation export.

    Writes one wide CSV per criterion and plot_data.csv to output_dir.

    Returns:
        Dictionary mapping criterion to its FleissKappa
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    df = pl.read_csv(file_path, infer_schema=False)
    df = latest_evaluations(df, timestamp_format=timestamp_format)

    results = {}
    for criterion in criteria:
        wide = ratings_matrix(df, criterion)
        wide.write_csv(output_dir / f"{criterion}.csv")
        results[criterion] = fleiss_kappa(wide)
        logger.info(
            f"{CRITERIA_LABELS.get(criterion, criterion)}: kappa={results[criterion].kappa:.3f} "
            f"(N={results[criterion].subjects}, raters={results[criterion].raters})"
        )

    plot_data = publication_number(rating_counts(df, criteria))
    plot_data.write_csv(output_dir / "plot_data.csv")
    return results


def kappa_summary(results: Dict[str, FleissKappa]) -> pl.DataFrame:
    """Tabulate kappa results, one row per criterion."""
    rows: List[Dict] = []
    for criterion, result in results.items():
        rows.append({
            'criterion': criterion,
            'label': CRITERIA_LABELS.get(criterion, criterion),
            'kappa': result.kappa,
            'subjects': result.subjects,
            'raters': result.raters,
            'z': result.z,
            'p_value': result.p_value,
        })
    return pl.DataFrame(rows)
