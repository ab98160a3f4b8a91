"""Spreadsheet / CSV row importer.

Parse a workbook or CSV file, map its columns onto the fields of a target
record type and insert, update or upsert one record per row.
"""

from .excel.reader import DocumentParseError, load_into_parameter, load_metadata, parse_rows
from .models import ErrorRecord, FieldMap, ImportMode, ImportParameter, ImportResult, ParsedRow
from .services.coercion import ConversionError, convert
from .services.execution import ConfigurationError, ImportExecutor, KeyResolutionError, execute
from .services.field_mapping import auto_map
from .store.base import CommitError, FieldInfo, RecordStore, TargetSchema

__version__ = "0.1.0"

__all__ = [
    "CommitError",
    "ConfigurationError",
    "ConversionError",
    "DocumentParseError",
    "ErrorRecord",
    "FieldInfo",
    "FieldMap",
    "ImportExecutor",
    "ImportMode",
    "ImportParameter",
    "ImportResult",
    "KeyResolutionError",
    "ParsedRow",
    "RecordStore",
    "TargetSchema",
    "auto_map",
    "convert",
    "execute",
    "load_into_parameter",
    "load_metadata",
    "parse_rows",
]
