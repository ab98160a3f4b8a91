from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..excel.reader import parse_rows
from ..models.import_parameter import FieldMap, ImportMode, ImportParameter
from ..models.import_result import ErrorRecord, ImportResult
from ..models.parsed_row import ParsedRow
from ..store.base import CommitError, FieldInfo, RecordStore, TargetSchema
from .coercion import ConversionError, convert, to_text
from .progress import ProgressTracker
from .summary import render_summary

"""Import execution engine.

Processes parsed rows strictly in sheet order:

1. Setup: validate the run configuration, parse rows, resolve the active field
   maps against the target schema, pick the batch size
2. Per row: resolve a record (Insert / Update / Upsert), then coerce and assign
   every mapped field. Each row yields an explicit RowOutcome; failures are
   recorded as ErrorRecord entries and the loop continues
3. Batching: commit after every batch_size-th row position, and once more
   after the loop
4. Completion: counters, elapsed time and the summary sentence

Failures before the loop (configuration, unreadable document) and commit
failures propagate to the caller. Commits that already happened stay
committed.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigurationError",
    "ImportExecutor",
    "KeyResolutionError",
    "RowOutcome",
    "RowStatus",
    "execute",
]


class ConfigurationError(Exception):
    """Raised before any row is processed when the run cannot be executed."""


class KeyResolutionError(LookupError):
    """No existing record matches the row key (Update mode)."""

    def __init__(self, key_property: str) -> None:
        self.key_property = key_property
        super().__init__(f"no existing object found for key '{key_property}'")


class RowStatus(Enum):
    RESOLVED = "resolved"  # レコード確定 (新規 or 既存)
    SKIPPED = "skipped"  # エラー記録済みで次の行へ
    FATAL = "fatal"  # 実行全体を中断 (コミット失敗のみ)


@dataclass(frozen=True)
class RowOutcome:
    """Result of one step of the row loop."""
    status: RowStatus
    record: Any = None
    created: bool = False
    error: ErrorRecord | None = None
    exception: BaseException | None = None

    @classmethod
    def resolved(cls, record: Any, *, created: bool) -> RowOutcome:
        return cls(RowStatus.RESOLVED, record=record, created=created)

    @classmethod
    def skipped(cls, error: ErrorRecord, exception: BaseException | None = None) -> RowOutcome:
        return cls(RowStatus.SKIPPED, error=error, exception=exception)

    @classmethod
    def fatal(cls, exception: BaseException) -> RowOutcome:
        return cls(RowStatus.FATAL, exception=exception)


@dataclass(frozen=True)
class _Assignment:
    field_map: FieldMap
    field: FieldInfo


@dataclass(frozen=True)
class _Plan:
    mode: ImportMode
    assignments: list[_Assignment]
    key_property: str | None
    key_column: str | None
    key_field: FieldInfo | None


class ImportExecutor:
    """Runs one import against an injected record store and target schema."""

    def __init__(self, store: RecordStore, schema: TargetSchema, *, show_progress: bool = True) -> None:
        self.store = store
        self.schema = schema
        self.show_progress = show_progress

    # ------------------------------------------------------------------ setup
    def _build_plan(self, parameter: ImportParameter) -> _Plan:
        """Validate the configuration and resolve active maps to schema fields.

        Raises:
            ConfigurationError: unknown / read-only target field, missing key
                property, or a key property without exactly one active mapping
        """
        assignments: list[_Assignment] = []
        for field_map in parameter.active_maps:
            info = self.schema.find_field(field_map.target_property or "")
            if info is None:
                raise ConfigurationError(
                    f"column '{field_map.source_column}' is mapped to unknown field '{field_map.target_property}'"
                )
            if not info.is_writable:
                raise ConfigurationError(f"field '{info.name}' is not writable")
            assignments.append(_Assignment(field_map, info))

        mode = parameter.import_mode
        key_property = (parameter.key_property or "").strip() or None
        key_column = None
        key_field = None
        if mode.requires_key:
            if key_property is None:
                raise ConfigurationError(f"{mode.value} mode requires a key property")
            key_field = self.schema.find_field(key_property)
            if key_field is None:
                raise ConfigurationError(f"key property '{key_property}' does not exist on the target")
            key_maps = [a for a in assignments if a.field.name == key_field.name]
            if not key_maps:
                raise ConfigurationError(f"key property '{key_property}' has no active column mapping")
            if len(key_maps) > 1:
                columns = [a.field_map.source_column for a in key_maps]
                raise ConfigurationError(f"key property '{key_property}' is mapped by several columns: {columns}")
            key_column = key_maps[0].field_map.source_column
        return _Plan(mode, assignments, key_property, key_column, key_field)

    # -------------------------------------------------------------- per row
    def _find_existing(self, row: ParsedRow, plan: _Plan) -> Any | None:
        if plan.key_column is None or plan.key_field is None:
            return None
        raw_key = row.get(plan.key_column)
        key_value = convert(raw_key, plan.key_field.field_type)
        if key_value is None:
            return None
        return self.store.find_one(plan.key_field.name, key_value)

    def _resolve(self, row: ParsedRow, plan: _Plan) -> RowOutcome:
        if plan.mode is ImportMode.INSERT:
            return RowOutcome.resolved(self.store.create(), created=True)

        existing = self._find_existing(row, plan)
        if existing is not None:
            return RowOutcome.resolved(existing, created=False)
        if plan.mode is ImportMode.UPSERT:
            return RowOutcome.resolved(self.store.create(), created=True)

        exc = KeyResolutionError(plan.key_property or "")
        return RowOutcome.skipped(ErrorRecord(row_index=row.row_index, message=str(exc)), exc)

    def _apply_fields(self, record: Any, row: ParsedRow, plan: _Plan) -> list[ErrorRecord]:
        """Coerce and assign every mapped field; conversion failures do not stop the row."""
        errors: list[ErrorRecord] = []
        for assignment in plan.assignments:
            field_map = assignment.field_map
            raw_value = row.get(field_map.source_column)
            try:
                value = convert(raw_value, assignment.field.field_type, field_map.default_value)
            except ConversionError as e:
                errors.append(
                    ErrorRecord(
                        row_index=row.row_index,
                        column_name=field_map.source_column,
                        raw_value=None if raw_value is None else to_text(raw_value),
                        target_property=assignment.field.name,
                        message=str(e),
                    )
                )
                continue
            assignment.field.set_value(record, value)
        return errors

    def _process_row(self, row: ParsedRow, plan: _Plan, result: ImportResult) -> RowOutcome:
        """Resolve and populate one row. Nothing raised here leaves the row."""
        try:
            outcome = self._resolve(row, plan)
            if outcome.status is not RowStatus.RESOLVED:
                return outcome
            if outcome.created:
                result.inserted_count += 1
            else:
                result.updated_count += 1
            for error in self._apply_fields(outcome.record, row, plan):
                result.add_error(error)
                logger.warning(
                    "row=%d column=%s value=%r: %s",
                    error.row_index,
                    error.column_name,
                    error.raw_value,
                    error.message,
                )
            return outcome
        except Exception as e:
            return RowOutcome.skipped(ErrorRecord(row_index=row.row_index, message=str(e)), e)

    def _commit(self, result: ImportResult) -> RowOutcome | None:
        try:
            self.store.commit()
        except CommitError as e:
            return RowOutcome.fatal(e)
        result.committed_batches += 1
        logger.debug("committed batch=%d", result.committed_batches)
        return None

    def _abort(self, outcome: RowOutcome, result: ImportResult, started: float) -> CommitError:
        try:
            self.store.rollback()
        except Exception:  # pragma: no cover - rollback failure must not hide the commit error
            logger.exception("rollback after commit failure failed")
        self._finish(result, started)
        exc = outcome.exception
        error = exc if isinstance(exc, CommitError) else CommitError(str(exc))
        error.result = result
        logger.error("commit failed after %d batches: %s", result.committed_batches, error)
        return error

    def _finish(self, result: ImportResult, started: float) -> ImportResult:
        result.finalize(time.perf_counter() - started)
        result.summary = render_summary(result)
        return result

    # ------------------------------------------------------------------ run
    def execute(self, parameter: ImportParameter) -> ImportResult:
        """Execute the import described by ``parameter``.

        Returns:
            ImportResult with counters, errors and the summary sentence

        Raises:
            ConfigurationError: invalid mapping / key configuration
            DocumentParseError: unreadable source document
            CommitError: a commit failed; ``exc.result`` holds the partial result
        """
        started = time.perf_counter()
        plan = self._build_plan(parameter)
        rows = parse_rows(parameter)
        result = ImportResult(total_rows=len(rows))
        batch_size = parameter.effective_batch_size
        limit = parameter.max_records_to_import

        logger.info(
            "import start file=%s sheet=%s mode=%s rows=%d columns=%d batch_size=%d",
            parameter.file_name,
            parameter.sheet_name,
            plan.mode.value,
            len(rows),
            len(plan.assignments),
            batch_size,
        )

        processed = 0
        progress = ProgressTracker(len(rows)) if self.show_progress else None
        try:
            for position, row in enumerate(rows):
                if limit > 0 and processed >= limit:
                    logger.info("max_records_to_import=%d reached, stopping", limit)
                    break
                outcome = self._process_row(row, plan, result)
                processed += 1
                if outcome.status is RowStatus.SKIPPED and outcome.error is not None:
                    result.add_error(outcome.error)
                    logger.warning("row=%d skipped: %s", row.row_index, outcome.error.message)
                if progress is not None:
                    progress.advance(
                        inserted=result.inserted_count, updated=result.updated_count, errors=len(result.errors)
                    )
                # バッチ境界は成功件数ではなく行位置で判定
                if (position + 1) % batch_size == 0:
                    commit_outcome = self._commit(result)
                    if commit_outcome is not None:
                        raise self._abort(commit_outcome, result, started)

            commit_outcome = self._commit(result)
            if commit_outcome is not None:
                raise self._abort(commit_outcome, result, started)
        finally:
            if progress is not None:
                progress.close()

        self._finish(result, started)
        logger.info(result.summary)
        return result


def execute(
    parameter: ImportParameter,
    store: RecordStore,
    schema: TargetSchema,
    *,
    show_progress: bool = True,
) -> ImportResult:
    """Convenience wrapper around ImportExecutor."""
    return ImportExecutor(store, schema, show_progress=show_progress).execute(parameter)
