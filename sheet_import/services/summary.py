from __future__ import annotations

from ..models.import_result import ImportResult

"""Summary line rendering.

Two renderings of the same ImportResult:
- render_summary: the human sentence stored in ImportResult.summary
- render_summary_line: the key=value SUMMARY line printed by the CLI
"""


def _format_seconds(value: float) -> str:
    # 整数値は小数点なし、極小値は指数表記を避ける
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(value)


def render_summary(result: ImportResult) -> str:
    """Render the result sentence.

    Examples:
        >>> r = ImportResult(total_rows=2, inserted_count=2, success_count=2, elapsed_seconds=0.5)
        >>> render_summary(r)
        'Imported 2 of 2 rows (2 inserted, 0 updated, 0 errors) in 0.5s'
    """
    return (
        f"Imported {result.success_count} of {result.total_rows} rows "
        f"({result.inserted_count} inserted, {result.updated_count} updated, "
        f"{result.error_count} errors) in {_format_seconds(result.elapsed_seconds)}s"
    )


def render_summary_line(result: ImportResult) -> str:
    """Render the machine readable SUMMARY line.

    Format:
    SUMMARY rows={total} success={success} inserted={inserted} updated={updated}
    errors={errors} batches={batches} elapsed_sec={elapsed}
    """
    return (
        f"SUMMARY rows={result.total_rows} "
        f"success={result.success_count} "
        f"inserted={result.inserted_count} "
        f"updated={result.updated_count} "
        f"errors={result.error_count} "
        f"batches={result.committed_batches} "
        f"elapsed_sec={_format_seconds(result.elapsed_seconds)}"
    )
