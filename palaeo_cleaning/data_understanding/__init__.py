"""
Data understanding module for fossil occurrence data.

This module contains group-wise outlier analysis, time binning onto a fixed
interval scale, and small summaries (frequency tables, missing values).
"""

from .outlier_analysis import GroupOutlierDetector, GroupBounds, OutlierResult, flag_group_outliers
from .time_binning import (
    PALEOGENE_EPOCHS,
    PALEOGENE_STAGES,
    TimeInterval,
    assign_majority_bin,
    get_scale,
)
from .data_report_generator import describe_numeric, frequency_table, missing_summary

__all__ = [
    'GroupOutlierDetector', 'GroupBounds', 'OutlierResult', 'flag_group_outliers',
    'PALEOGENE_EPOCHS', 'PALEOGENE_STAGES', 'TimeInterval', 'assign_majority_bin', 'get_scale',
    'describe_numeric', 'frequency_table', 'missing_summary',
]
