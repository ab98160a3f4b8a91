from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

"""ParsedRow model: one data row of the source sheet.

Column lookup is case-insensitive. Keys are stored normalised (casefolded) next
to the original display names, and every lookup is normalised the same way.
"""

__all__ = [
    "ParsedRow",
    "normalize_column",
]


def normalize_column(name: str) -> str:
    return name.casefold()


class ParsedRow(Mapping[str, Any]):
    """Ordered column -> typed scalar mapping with case-insensitive lookup.

    Iteration yields the original column names in sheet order. When two
    headers differ only by case the later one wins, as in the source sheet.
    """

    def __init__(self, row_index: int, values: Mapping[str, Any] | None = None) -> None:
        self.row_index = row_index  # シート上の行位置 (0始まり)
        self._values: dict[str, Any] = {}
        self._names: dict[str, str] = {}
        if values:
            for name, value in values.items():
                self[name] = value

    def __setitem__(self, name: str, value: Any) -> None:
        key = normalize_column(name)
        self._names.setdefault(key, name)
        self._values[key] = value

    def __getitem__(self, name: str) -> Any:
        return self._values[normalize_column(name)]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_column(name) in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._values)

    def has_data(self) -> bool:
        return any(v is not None for v in self._values.values())

    def __repr__(self) -> str:
        return f"ParsedRow(row_index={self.row_index}, values={dict(self.items())!r})"
