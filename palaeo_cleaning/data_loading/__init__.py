"""
Data loading module for fossil occurrence exports.

This module contains the loader for metadata-prefixed occurrence files and the
schema descriptor used to type and validate the loaded table.
"""

from .schema import ColumnSpec, TableSchema, drop_flag_columns, flag_columns, FLAG_PREFIX
from .occurrence_loader import (
    MetadataBlock,
    OccurrenceLoader,
    load_occurrences,
    reconcile_duplicate_columns,
    write_cleaned_table,
)

__all__ = [
    'ColumnSpec', 'TableSchema', 'drop_flag_columns', 'flag_columns', 'FLAG_PREFIX',
    'MetadataBlock', 'OccurrenceLoader', 'load_occurrences',
    'reconcile_duplicate_columns', 'write_cleaned_table',
]
