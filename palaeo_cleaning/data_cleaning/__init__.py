"""
Data cleaning module for fossil occurrence data.

This module contains the completeness filter, consistency checks, duplicate
handling and the pipeline that chains them with provenance reporting.
"""

from .completeness import CompletenessFilter, CompletenessReport, MissingPolicy, count_missing, detect_missing
from .consistency import (
    ConsistencyChecker,
    check_coordinates,
    check_domain,
    check_value_shape,
    dissimilarity,
    is_flagged,
    near_duplicate_clusters,
)
from .deduplication import flag_duplicates, keep_latest, remove_duplicates
from .pipeline import (
    CleaningPipeline,
    CleaningReport,
    PipelineResult,
    StageRecord,
    generate_cleaning_report,
    write_pipeline_outputs,
)
from .config import CleaningConfig, clean_occurrences

__all__ = [
    'CompletenessFilter', 'CompletenessReport', 'MissingPolicy', 'count_missing', 'detect_missing',
    'ConsistencyChecker', 'check_coordinates', 'check_domain', 'check_value_shape',
    'dissimilarity', 'is_flagged', 'near_duplicate_clusters',
    'flag_duplicates', 'keep_latest', 'remove_duplicates',
    'CleaningPipeline', 'CleaningReport', 'PipelineResult', 'StageRecord',
    'generate_cleaning_report', 'write_pipeline_outputs',
    'CleaningConfig', 'clean_occurrences',
]
