from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""ImportParameter / FieldMap domain models.

An ImportParameter is the configuration of one import run. It is created once,
filled in by the tabular parser (available sheets, field maps) and the mapping
engine (targets), adjusted by the caller (mode, key, batch size) and then handed
to the execution engine, which only reads it.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "FieldMap",
    "ImportMode",
    "ImportParameter",
]

DEFAULT_BATCH_SIZE = 100


class ImportMode(Enum):
    """Per-row resolution strategy.

    - INSERT: always create a new record
    - UPDATE: reuse the record found by key, error when absent
    - UPSERT: reuse the record found by key, create when absent
    """
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"

    @property
    def requires_key(self) -> bool:
        return self is not ImportMode.INSERT


@dataclass
class FieldMap:
    """Association between one source column and one destination field."""
    source_column: str
    target_property: str | None = None
    target_property_type: str | None = None  # 型名 (表示用)
    default_value: str | None = None  # 空セル時に適用する文字列
    sample_value: str = ""  # プレビュー専用
    skip: bool = False
    auto_mapped: bool = False

    @property
    def is_active(self) -> bool:
        """True when the column takes part in execution."""
        return not self.skip and bool(self.target_property)


@dataclass
class ImportParameter:
    """Configuration for a single import run.

    Row and column indices are zero-based positions in the sheet, so the
    defaults describe the common layout of one header row followed by data.
    """
    file_name: str = ""
    file_content: bytes | None = None
    sheet_name: str | None = None
    has_headers: bool = True
    header_row_index: int = 0
    data_start_row_index: int = 1
    import_mode: ImportMode = ImportMode.INSERT
    key_property: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    max_records_to_import: int = 0  # 0 = 無制限
    field_maps: list[FieldMap] = field(default_factory=list)
    available_sheets: list[str] = field(default_factory=list)

    @property
    def active_maps(self) -> list[FieldMap]:
        return [m for m in self.field_maps if m.is_active]

    @property
    def effective_batch_size(self) -> int:
        return self.batch_size if self.batch_size > 0 else DEFAULT_BATCH_SIZE
