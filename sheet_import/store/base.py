from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any

"""Record store and schema contracts used by the execution engine.

The engine never talks to a database directly. It receives:
- a TargetSchema describing the destination fields (name, type, flags)
- a RecordStore able to create a record, find one by equality and commit

Implementations: store.memory (dataclass records, tests / dry runs) and
db.postgres (PostgreSQL table through psycopg2).
"""

__all__ = [
    "CommitError",
    "FieldInfo",
    "RecordStore",
    "TargetSchema",
]


class CommitError(Exception):
    """Raised when pending changes cannot be committed.

    ``result`` is attached by the execution engine when the failure happens in
    the middle of a run, so callers can see what was committed before it.
    """

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


@dataclass(frozen=True)
class FieldInfo:
    """Metadata for one destination field."""
    name: str
    field_type: Any  # Optional[T] は null 許容フィールド
    is_public: bool = True
    is_writable: bool = True
    is_key: bool = False

    def set_value(self, record: Any, value: Any) -> None:
        if isinstance(record, MutableMapping):
            record[self.name] = value
        else:
            setattr(record, self.name, value)

    def get_value(self, record: Any) -> Any:
        if isinstance(record, MutableMapping):
            return record.get(self.name)
        return getattr(record, self.name, None)


class TargetSchema(ABC):
    """Reflection over the destination record type."""

    @abstractmethod
    def fields(self) -> list[FieldInfo]:
        """All fields in declaration order."""

    def find_field(self, name: str) -> FieldInfo | None:
        """Case-insensitive lookup by field name."""
        wanted = name.casefold()
        for info in self.fields():
            if info.name.casefold() == wanted:
                return info
        return None


class RecordStore(ABC):
    """Write-side contract of the persistent record store.

    One store handle is owned by one execution run. ``commit`` is all or
    nothing for the calls made since the previous commit.
    """

    @abstractmethod
    def create(self) -> Any:
        """Create a new, pending record."""

    @abstractmethod
    def find_one(self, field_name: str, value: Any) -> Any | None:
        """Return the first record whose field equals value, or None.

        Pending (uncommitted) records created in this run are visible.
        """

    @abstractmethod
    def commit(self) -> None:
        """Persist pending changes. Raises CommitError on failure."""

    def rollback(self) -> None:  # noqa: B027 - optional hook
        """Discard pending changes. Stores without transactions may ignore this."""
