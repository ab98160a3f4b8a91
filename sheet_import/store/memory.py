from __future__ import annotations

import copy
import dataclasses
import typing
from collections.abc import Callable
from itertools import count
from typing import Any

from .base import CommitError, FieldInfo, RecordStore, TargetSchema

"""In-memory record store and dataclass schema reflection.

Used by the test-suite and by callers that want to run the pipeline without a
database. Records are instances of a dataclass; field metadata marks keys:

    @dataclass
    class Product:
        oid: int = field(default=0, metadata={"key": True})
        code: str | None = None
        quantity: int = 0
"""

__all__ = [
    "DataclassSchema",
    "InMemoryRecordStore",
]


class DataclassSchema(TargetSchema):
    """TargetSchema built from a dataclass type.

    - public: name does not start with "_"
    - writable: the dataclass is not frozen and metadata has no "readonly"
    - key: metadata {"key": True}
    """

    def __init__(self, record_type: type) -> None:
        if not dataclasses.is_dataclass(record_type):
            raise TypeError(f"{record_type!r} is not a dataclass")
        self.record_type = record_type
        hints = typing.get_type_hints(record_type)
        frozen = record_type.__dataclass_params__.frozen  # type: ignore[attr-defined]
        self._fields = [
            FieldInfo(
                name=f.name,
                field_type=hints.get(f.name, Any),
                is_public=not f.name.startswith("_"),
                is_writable=not frozen and not f.metadata.get("readonly", False),
                is_key=bool(f.metadata.get("key", False)),
            )
            for f in dataclasses.fields(record_type)
        ]

    def fields(self) -> list[FieldInfo]:
        return list(self._fields)


class InMemoryRecordStore(RecordStore):
    """RecordStore keeping records in lists.

    Changes to committed records are applied in place; a snapshot is taken the
    first time a committed record is handed out after a commit so that
    ``rollback`` can restore it.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        records: list[Any] | None = None,
        identity_field: str | None = None,
    ) -> None:
        self._factory = factory
        self._committed: list[Any] = list(records or [])
        self._pending: list[Any] = []
        self._snapshots: dict[int, dict[str, Any]] = {}
        self._identity_field = identity_field
        self._ids = count(len(self._committed) + 1)
        self.commit_count = 0

    @property
    def records(self) -> list[Any]:
        """Committed records."""
        return list(self._committed)

    @property
    def pending(self) -> list[Any]:
        return list(self._pending)

    def create(self) -> Any:
        record = self._factory()
        self._pending.append(record)
        return record

    def find_one(self, field_name: str, value: Any) -> Any | None:
        for record in self._pending:
            if getattr(record, field_name, None) == value:
                return record
        for record in self._committed:
            if getattr(record, field_name, None) == value:
                self._snapshots.setdefault(id(record), copy.deepcopy(vars(record)))
                return record
        return None

    def commit(self) -> None:
        try:
            self._before_commit()
        except Exception as e:
            raise CommitError(f"commit failed: {e}") from e
        if self._identity_field:
            for record in self._pending:
                if not getattr(record, self._identity_field, None):
                    setattr(record, self._identity_field, next(self._ids))
        self._committed.extend(self._pending)
        self._pending.clear()
        self._snapshots.clear()
        self.commit_count += 1

    def rollback(self) -> None:
        for record in self._committed:
            snapshot = self._snapshots.get(id(record))
            if snapshot is not None:
                vars(record).update(snapshot)
        self._pending.clear()
        self._snapshots.clear()

    def _before_commit(self) -> None:
        """Validation hook run before pending changes are accepted."""
