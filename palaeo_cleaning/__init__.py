"""
palaeo_cleaning: cleaning workflows for fossil occurrence data.

Sub-packages:
- data_loading: loader for metadata-prefixed exports, schema descriptor
- data_cleaning: completeness, consistency and duplicate stages, pipeline
- data_understanding: group-wise outliers, time binning, summaries
- publication_evaluation: inter-rater agreement on reporting criteria
"""

from .errors import CleaningError, FormatError, SchemaError, ThresholdError

__version__ = "0.1.0"

__all__ = ['CleaningError', 'FormatError', 'SchemaError', 'ThresholdError', '__version__']
