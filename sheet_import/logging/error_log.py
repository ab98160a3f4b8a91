from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.import_result import ErrorRecord, ImportResult

"""Row / cell error log for one import run (JSON Lines).

- One ErrorRecord per line, fixed key set (ErrorRecord.to_json_line)
- File: ``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC), chosen on first write
- Row-level failures (no column) are grouped under ROW_LEVEL in the
  per-column breakdown printed by the CLI
"""

__all__ = [
    "ErrorLogBuffer",
    "ErrorRecord",
    "ROW_LEVEL",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
ROW_LEVEL = "<row>"


class ErrorLogBuffer:
    """Collects the errors of an ImportResult and writes them on flush()."""

    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ErrorRecord] = []
        self._logs_dir = logs_dir or LOGS_DIR
        self._file_path: Path | None = None

    @classmethod
    def from_result(cls, result: ImportResult, logs_dir: Path | None = None) -> ErrorLogBuffer:
        buf = cls(logs_dir)
        buf.extend(result.errors)
        return buf

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend(self, records: Iterable[ErrorRecord]) -> None:
        self._records.extend(records)

    def __len__(self) -> int:
        return len(self._records)

    def failed_rows(self) -> list[int]:
        """Sheet row positions with at least one error, ascending."""
        return sorted({r.row_index for r in self._records})

    def counts_by_column(self) -> Counter[str]:
        return Counter(r.column_name or ROW_LEVEL for r in self._records)

    def describe(self) -> str:
        """One-line breakdown, e.g. ``3 errors in 2 rows (Quantity=2, <row>=1)``."""
        counts = ", ".join(f"{column}={n}" for column, n in self.counts_by_column().most_common())
        return f"{len(self._records)} errors in {len(self.failed_rows())} rows ({counts})"

    def flush(self) -> Path | None:
        """Append buffered records to the log file.

        Returns the file path, or None when nothing was buffered (no file is
        created then).
        """
        if not self._records:
            return None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            f.writelines(r.to_json_line() + "\n" for r in self._records)
        self._records.clear()
        return fp
