"""
Publication evaluation module.

Agreement statistics for evaluator judgements of how published studies
report their data cleaning.
"""

from .agreement import (
    CRITERIA,
    FleissKappa,
    evaluate_publications,
    fleiss_kappa,
    kappa_summary,
    latest_evaluations,
    publication_number,
    rating_counts,
    ratings_matrix,
)

__all__ = [
    'CRITERIA', 'FleissKappa', 'evaluate_publications', 'fleiss_kappa', 'kappa_summary',
    'latest_evaluations', 'publication_number', 'rating_counts', 'ratings_matrix',
]
