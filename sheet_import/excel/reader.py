from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from pathlib import PurePath
from typing import Any

import numpy as np
import pandas as pd

from ..models.import_parameter import FieldMap, ImportParameter
from ..models.parsed_row import ParsedRow

"""Tabular parser: workbook / CSV bytes -> typed rows.

- Format is chosen from the file name extension (.xlsx / .xls / .csv, anything
  else is read as xlsx)
- The sheet is read without a header (header=None) so that header_row_index
  and data_start_row_index address absolute sheet rows
- Only empty cells are treated as missing; strings such as "NA" or "null"
  stay strings
- pandas trims trailing empty rows/columns, which gives the used range
"""

logger = logging.getLogger(__name__)

__all__ = [
    "DocumentFormat",
    "DocumentParseError",
    "SheetMetadata",
    "detect_format",
    "load_into_parameter",
    "load_metadata",
    "parse_rows",
]

_CSV_NUMBER_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class DocumentParseError(Exception):
    """Raised when the document bytes cannot be read as a workbook or CSV."""


class DocumentFormat(Enum):
    XLSX = "xlsx"
    XLS = "xls"
    CSV = "csv"


@dataclass
class SheetMetadata:
    """Preview of a document: sheets, header names and the first data row."""
    sheet_names: list[str] = field(default_factory=list)
    sheet_name: str | None = None
    headers: list[str] | None = None
    sample_row: list[str] | None = None


_ENGINES = {
    DocumentFormat.XLSX: "openpyxl",
    DocumentFormat.XLS: "xlrd",
}


def detect_format(file_name: str | None) -> DocumentFormat:
    suffix = PurePath(file_name or "").suffix.lower()
    if suffix == ".xls":
        return DocumentFormat.XLS
    if suffix == ".csv":
        return DocumentFormat.CSV
    return DocumentFormat.XLSX


def _read_sheets(content: bytes, file_name: str | None, sheet_name: str | None) -> tuple[list[str], str | None, pd.DataFrame | None]:
    """Load the document and return (sheet names, chosen sheet, raw frame).

    The frame is the whole used range with positional columns and an object
    dtype, so cell values keep the Python types the engine produced.
    """
    fmt = detect_format(file_name)
    # 空セルのみ欠損扱い: pandas 既定の NA 文字列 ("NA", "null" 等) は変換しない
    na_kwargs: dict[str, Any] = {"keep_default_na": False, "na_values": [""]}
    try:
        if fmt is DocumentFormat.CSV:
            frame = pd.read_csv(
                io.BytesIO(content),
                header=None,
                dtype=str,
                skip_blank_lines=False,
                **na_kwargs,
            )
            # CSV は単一シート扱い。シート名はファイル名の stem
            name = PurePath(file_name or "Sheet1").stem or "Sheet1"
            return [name], name, frame

        with pd.ExcelFile(io.BytesIO(content), engine=_ENGINES[fmt]) as xls:
            names = [str(n) for n in xls.sheet_names]
            if not names:
                return [], None, None
            chosen = sheet_name if sheet_name in names else names[0]
            frame = xls.parse(chosen, header=None, dtype=object, **na_kwargs)
        return names, chosen, frame
    except pd.errors.EmptyDataError:
        # ヘッダすら無い CSV
        name = PurePath(file_name or "Sheet1").stem or "Sheet1"
        return [name], name, None
    except Exception as e:
        raise DocumentParseError(f"cannot read '{file_name}' as {fmt.value}: {e}") from e


def _typed_cell(value: Any, fmt: DocumentFormat) -> Any:
    """Normalise a raw cell into None, bool, float, str or datetime."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, time):
        return datetime.combine(date(1899, 12, 30), value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    text = str(value)
    if fmt is DocumentFormat.CSV:
        return _typed_text(text)
    return text


def _typed_text(text: str) -> Any:
    """Type a CSV text cell the way a spreadsheet would on load."""
    stripped = text.strip()
    if not stripped:
        return text
    if _CSV_NUMBER_RE.fullmatch(stripped):
        return float(stripped)
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return text


def _display_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return str(value)


def _column_names(frame: pd.DataFrame, has_headers: bool, header_row_index: int, fmt: DocumentFormat) -> list[str]:
    column_count = frame.shape[1]
    names: list[str] = []
    header_cells: list[Any] = []
    if has_headers and 0 <= header_row_index < frame.shape[0]:
        header_cells = frame.iloc[header_row_index].tolist()
    for col in range(column_count):
        cell = _typed_cell(header_cells[col], fmt) if col < len(header_cells) else None
        text = _display_text(cell).strip()
        names.append(text if text else f"Column{col}")
    return names


def load_metadata(
    content: bytes | None,
    file_name: str | None,
    *,
    sheet_name: str | None = None,
    has_headers: bool = True,
    header_row_index: int = 0,
    data_start_row_index: int = 1,
) -> SheetMetadata:
    """Read sheet names, header names and a sample data row.

    Empty content yields empty metadata.
    """
    if not content:
        return SheetMetadata()
    fmt = detect_format(file_name)
    names, chosen, frame = _read_sheets(content, file_name, sheet_name)
    meta = SheetMetadata(sheet_names=names, sheet_name=chosen)
    if frame is None or frame.shape[1] == 0:
        return meta
    meta.headers = _column_names(frame, has_headers, header_row_index, fmt)
    if 0 <= data_start_row_index < frame.shape[0]:
        raw = frame.iloc[data_start_row_index].tolist()
        meta.sample_row = [_display_text(_typed_cell(v, fmt)) for v in raw]
    else:
        meta.sample_row = ["" for _ in meta.headers]
    return meta


def load_into_parameter(parameter: ImportParameter) -> ImportParameter:
    """Populate available sheets, the default sheet and one FieldMap per column.

    Existing field maps are replaced, so this is the "file (re)loaded" step.
    """
    if not parameter.file_content:
        return parameter
    meta = load_metadata(
        parameter.file_content,
        parameter.file_name,
        sheet_name=parameter.sheet_name,
        has_headers=parameter.has_headers,
        header_row_index=parameter.header_row_index,
        data_start_row_index=parameter.data_start_row_index,
    )
    parameter.available_sheets = list(meta.sheet_names)
    if not parameter.sheet_name and meta.sheet_names:
        parameter.sheet_name = meta.sheet_names[0]
    parameter.field_maps = [
        FieldMap(source_column=name, sample_value=sample)
        for name, sample in zip(meta.headers or [], meta.sample_row or [], strict=False)
    ]
    logger.debug(
        "loaded file=%s sheets=%s columns=%d",
        parameter.file_name,
        parameter.available_sheets,
        len(parameter.field_maps),
    )
    return parameter


def parse_rows(parameter: ImportParameter) -> list[ParsedRow]:
    """Parse the data rows of the selected sheet.

    Rows from data_start_row_index up to the last used row are returned in
    sheet order; rows without any non-empty cell are skipped.

    Raises:
        DocumentParseError: The bytes are not a readable document
    """
    if not parameter.file_content:
        return []
    fmt = detect_format(parameter.file_name)
    _, chosen, frame = _read_sheets(parameter.file_content, parameter.file_name, parameter.sheet_name)
    if frame is None or frame.empty:
        return []

    columns = _column_names(frame, parameter.has_headers, parameter.header_row_index, fmt)
    rows: list[ParsedRow] = []
    start = max(parameter.data_start_row_index, 0)
    for row_index in range(start, frame.shape[0]):
        raw = frame.iloc[row_index].tolist()
        row = ParsedRow(row_index)
        for name, value in zip(columns, raw, strict=False):
            row[name] = _typed_cell(value, fmt)
        if not row.has_data():
            continue
        rows.append(row)
    logger.debug("parsed sheet=%s rows=%d columns=%d", chosen, len(rows), len(columns))
    return rows
