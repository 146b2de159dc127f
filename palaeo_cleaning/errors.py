"""
Error types raised by the cleaning stages.

Every error is fail-fast and carries the offending column and/or row so the
caller can locate the problem in the source file.
"""

from typing import Any, Optional


class CleaningError(Exception):
    """Base class for all data cleaning errors."""

    def __init__(self, message: str, column: Optional[str] = None, row: Optional[int] = None,
                 value: Any = None):
        self.column = column
        self.row = row
        self.value = value
        context = []
        if column is not None:
            context.append(f"column={column!r}")
        if row is not None:
            context.append(f"row={row}")
        if value is not None:
            context.append(f"value={value!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class FormatError(CleaningError):
    """Malformed or unexpected header block, column header or row shape."""


class SchemaError(CleaningError):
    """Requested column is absent, or has the wrong type for an operation."""


class ThresholdError(CleaningError):
    """Invalid configuration value (threshold, policy, mode, multiplier...)."""
