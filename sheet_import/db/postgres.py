from __future__ import annotations

import copy
import logging
import typing
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from ..store.base import CommitError, FieldInfo, RecordStore, TargetSchema
from .batch_insert import batch_insert

"""PostgreSQL implementation of the store / schema contracts.

- PostgresTableSchema reflects a table from information_schema
- PostgresRecordStore keeps records as dicts (column -> value); new records and
  changed existing records are written on commit inside the connection's
  transaction, followed by COMMIT. Any failure rolls the transaction back.
"""

try:  # pragma: no cover - optional until psycopg2 present at runtime
    from psycopg2 import sql
except Exception:  # pragma: no cover
    sql = None  # type: ignore

logger = logging.getLogger(__name__)

__all__ = [
    "PostgresRecordStore",
    "PostgresTableSchema",
    "python_type_for",
]

_TYPE_MAP: dict[str, Any] = {
    "smallint": int,
    "integer": int,
    "bigint": int,
    "numeric": Decimal,
    "decimal": Decimal,
    "real": float,
    "double precision": float,
    "boolean": bool,
    "date": date,
    "timestamp without time zone": datetime,
    "timestamp with time zone": datetime,
    "time without time zone": time,
    "uuid": uuid.UUID,
    "text": str,
    "character varying": str,
    "character": str,
}

_COLUMNS_SQL = """
SELECT column_name, data_type, is_nullable, column_default, is_identity, is_generated
FROM information_schema.columns
WHERE table_schema = %s AND table_name = %s
ORDER BY ordinal_position
"""

_PRIMARY_KEY_SQL = """
SELECT kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = %s AND tc.table_name = %s
ORDER BY kcu.ordinal_position
"""


def python_type_for(data_type: str, nullable: bool) -> Any:
    base = _TYPE_MAP.get(data_type.lower(), str)
    return typing.Optional[base] if nullable else base


def _split_table(table: str) -> tuple[str, str]:
    if "." in table:
        schema_name, name = table.split(".", 1)
        return schema_name, name
    return "public", table


class PostgresTableSchema(TargetSchema):
    """Reflects one table.

    - key: primary key columns and identity / serial (nextval) columns
    - writable: everything except GENERATED ... STORED columns
    """

    def __init__(self, cursor: Any, table: str) -> None:
        self.table = table
        schema_name, name = _split_table(table)
        cursor.execute(_PRIMARY_KEY_SQL, (schema_name, name))
        self.primary_key = [r[0] for r in cursor.fetchall()]
        cursor.execute(_COLUMNS_SQL, (schema_name, name))
        columns = cursor.fetchall()
        if not columns:
            raise LookupError(f"table not found or has no columns: {table}")
        self._fields: list[FieldInfo] = []
        for column_name, data_type, is_nullable, default, is_identity, is_generated in columns:
            serial = isinstance(default, str) and default.startswith("nextval(")
            self._fields.append(
                FieldInfo(
                    name=column_name,
                    field_type=python_type_for(data_type, is_nullable == "YES"),
                    is_writable=is_generated != "ALWAYS",
                    is_key=column_name in self.primary_key or is_identity == "YES" or serial,
                )
            )

    def fields(self) -> list[FieldInfo]:
        return list(self._fields)


class PostgresRecordStore(RecordStore):
    """RecordStore over a psycopg2 connection (autocommit off).

    Existing records are identified by primary key when the table has one,
    otherwise by the predicate they were found with.
    """

    def __init__(self, connection: Any, schema: PostgresTableSchema, *, dry_run: bool = False, page_size: int = 1000) -> None:
        if sql is None:
            raise RuntimeError("psycopg2 not available")
        self.connection = connection
        self.schema = schema
        self.table = schema.table
        self.dry_run = dry_run  # True: COMMIT の代わりに ROLLBACK
        self.page_size = page_size
        self._pending: list[dict[str, Any]] = []
        self._loaded: dict[tuple[Any, ...], tuple[dict[str, Any], dict[str, Any]]] = {}

    def _identity(self, record: dict[str, Any], field_name: str, value: Any) -> tuple[Any, ...]:
        if self.schema.primary_key:
            return tuple(record.get(c) for c in self.schema.primary_key)
        return (field_name, value)

    def create(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        self._pending.append(record)
        return record

    def find_one(self, field_name: str, value: Any) -> dict[str, Any] | None:
        for record in self._pending:
            if record.get(field_name) == value:
                return record
        for record, _original in self._loaded.values():
            if record.get(field_name) == value:
                return record

        schema_name, name = _split_table(self.table)
        statement = sql.SQL("SELECT * FROM {} WHERE {} = %s LIMIT 1").format(
            sql.Identifier(schema_name, name), sql.Identifier(field_name)
        )
        with self.connection.cursor() as cursor:
            cursor.execute(statement, (value,))
            row = cursor.fetchone()
            if row is None:
                return None
            names = [d[0] for d in cursor.description]
        record = dict(zip(names, row, strict=False))
        identity = self._identity(record, field_name, value)
        self._loaded[identity] = (record, copy.copy(record))
        return record

    def _flush_inserts(self, cursor: Any) -> None:
        # 列集合ごとにまとめる (未設定列は DB 既定値に任せる)
        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for record in self._pending:
            groups.setdefault(tuple(record.keys()), []).append(record)
        for columns, records in groups.items():
            if not columns:
                statement = sql.SQL("INSERT INTO {} DEFAULT VALUES").format(sql.Identifier(*_split_table(self.table)))
                for _ in records:
                    cursor.execute(statement)
                continue
            result = batch_insert(
                cursor,
                self.table,
                list(columns),
                [[r[c] for c in columns] for r in records],
                returning=True,
                page_size=self.page_size,
            )
            for record, returned in zip(records, result.returned_values or [], strict=False):
                record.update(zip(result.returned_columns or [], returned, strict=False))
            logger.debug("inserted table=%s rows=%d elapsed=%.3f", self.table, result.inserted_rows, result.elapsed_seconds)

    def _flush_updates(self, cursor: Any) -> None:
        schema_name, name = _split_table(self.table)
        for identity, (record, original) in self._loaded.items():
            changed = [c for c in record if record.get(c) != original.get(c)]
            if not changed:
                continue
            if self.schema.primary_key:
                where_columns = list(self.schema.primary_key)
                where_values = [original.get(c) for c in where_columns]
            else:
                where_columns = [identity[0]]
                where_values = [identity[1]]
            statement = sql.SQL("UPDATE {} SET {} WHERE {}").format(
                sql.Identifier(schema_name, name),
                sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in changed),
                sql.SQL(" AND ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in where_columns),
            )
            cursor.execute(statement, [record[c] for c in changed] + where_values)

    def commit(self) -> None:
        try:
            with self.connection.cursor() as cursor:
                self._flush_inserts(cursor)
                self._flush_updates(cursor)
            if self.dry_run:
                self.connection.rollback()
            else:
                self.connection.commit()
        except Exception as e:
            try:
                self.connection.rollback()
            except Exception:  # pragma: no cover
                logger.exception("rollback failed table=%s", self.table)
            raise CommitError(f"commit failed for table {self.table}: {e}") from e
        self._pending.clear()
        self._loaded = {
            identity: (record, copy.copy(record)) for identity, (record, _original) in self._loaded.items()
        }

    def rollback(self) -> None:
        self.connection.rollback()
        self._pending.clear()
        for record, original in self._loaded.values():
            record.clear()
            record.update(original)
