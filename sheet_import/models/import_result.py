from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field

"""ImportResult / ErrorRecord models.

ErrorRecord is the unit written to the JSON Lines error log, so its key set is
fixed: row_index, column_name, raw_value, target_property, message.
"""

__all__ = [
    "ErrorRecord",
    "ImportResult",
]


@dataclass(frozen=True)
class ErrorRecord:
    """One row or column level failure.

    Attributes:
        row_index: Zero-based row position in the source sheet
        column_name: Source column, None for row-level failures
        raw_value: Offending value as text, None when not applicable
        target_property: Destination field, None for row-level failures
        message: Human readable description
    """
    row_index: int
    message: str
    column_name: str | None = None
    raw_value: str | None = None
    target_property: str | None = None

    def to_json_line(self) -> str:
        """Serialize to a single JSON line (fixed key set)."""
        return json.dumps(asdict(self), ensure_ascii=False)


@dataclass
class ImportResult:
    """Aggregated outcome of one run.

    Mutated only by the execution engine; ``finalize`` computes the derived
    counters once the row loop is done.
    """
    total_rows: int = 0
    success_count: int = 0
    error_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    elapsed_seconds: float = 0.0
    summary: str = ""
    errors: list[ErrorRecord] = field(default_factory=list)
    committed_batches: int = 0  # 診断用

    def add_error(self, error: ErrorRecord) -> None:
        self.errors.append(error)

    def finalize(self, elapsed_seconds: float) -> ImportResult:
        """Compute the derived counters. The summary sentence is rendered by the caller."""
        self.elapsed_seconds = round(elapsed_seconds, 2)
        self.success_count = self.inserted_count + self.updated_count
        self.error_count = len(self.errors)
        return self
