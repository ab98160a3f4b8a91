from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Row progress display with tqdm (TTY only).

A single tqdm bar is shown while rows are processed. In non-TTY environments
(CI, pipes, tests) the bar is not created at all to avoid ANSI control
sequences in captured output.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Return True if stdout is a TTY and progress should be displayed."""
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress bar over the rows of one import run."""

    def __init__(self, total_rows: int, *, description: str = "Importing rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.processed = 0

        self.enabled = is_tty_enabled() and total_rows > 0
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, **postfix: Any) -> None:
        """Mark one row as processed, optionally updating the stats postfix."""
        self.processed += 1
        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            if postfix:
                self.pbar.set_postfix(**postfix)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
