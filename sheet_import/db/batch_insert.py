from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

"""Batched INSERT through psycopg2.extras.execute_values.

Used by PostgresRecordStore.commit to flush the records created since the
previous commit. Identifiers are quoted with psycopg2.sql so table and column
names coming from the sheet mapping never reach the statement unescaped.
"""

try:  # pragma: no cover - optional until psycopg2 present at runtime
    from psycopg2 import sql
    from psycopg2.extras import execute_values
except Exception:  # pragma: no cover
    sql = None  # type: ignore
    execute_values = None  # type: ignore


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    elapsed_seconds: float = 0.0
    returned_values: list[tuple[Any, ...]] | None = None
    returned_columns: list[str] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: bool = False,
    page_size: int = 1000,
) -> InsertResult:
    """Insert ``rows`` into ``table`` in pages of ``page_size``.

    Parameters
    ----------
    cursor: psycopg2 cursor (transaction controlled by the caller)
    table: target table, optionally schema qualified ("schema.table")
    columns: column names in the order of each row
    rows: row value sequences
    returning: append RETURNING * and return every inserted row
    page_size: execute_values page size
    """
    if execute_values is None or sql is None:
        raise BatchInsertError("psycopg2 not available")

    rows_list = [list(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    statement = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
        sql.Identifier(*table.split(".")),
        sql.SQL(", ").join(sql.Identifier(c) for c in columns),
    )
    if returning:
        statement = statement + sql.SQL(" RETURNING *")

    start_time = time.time()
    try:
        returned = execute_values(cursor, statement, rows_list, page_size=page_size, fetch=returning)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    elapsed = time.time() - start_time

    if not returning:
        return InsertResult(inserted_rows=len(rows_list), elapsed_seconds=elapsed)
    description = getattr(cursor, "description", None) or []
    return InsertResult(
        inserted_rows=len(rows_list),
        elapsed_seconds=elapsed,
        returned_values=[tuple(r) for r in (returned or [])],
        returned_columns=[d[0] for d in description],
    )
