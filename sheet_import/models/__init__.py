"""Domain models for the tabular import pipeline.

This package contains the data classes shared by the parser, the mapping
engine and the execution engine.
"""

from .import_parameter import DEFAULT_BATCH_SIZE, FieldMap, ImportMode, ImportParameter
from .import_result import ErrorRecord, ImportResult
from .parsed_row import ParsedRow

__all__ = [
    # Run configuration
    "DEFAULT_BATCH_SIZE",
    "FieldMap",
    "ImportMode",
    "ImportParameter",
    # Results
    "ErrorRecord",
    "ImportResult",
    # Parsed data
    "ParsedRow",
]
