from __future__ import annotations

import argparse
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from sheet_import.config.loader import ConfigError, ImportConfig, load_config
from sheet_import.excel.reader import DocumentParseError, load_into_parameter
from sheet_import.logging.error_log import ErrorLogBuffer
from sheet_import.logging.init import log_summary, setup_logging
from sheet_import.models.import_parameter import ImportParameter
from sheet_import.services.execution import ConfigurationError, ImportExecutor
from sheet_import.services.field_mapping import apply_overrides, auto_map
from sheet_import.services.summary import render_summary_line
from sheet_import.store.base import CommitError, TargetSchema

"""CLI entrypoint.

Flow:
- Load .env and the YAML job configuration
- Connect to PostgreSQL and reflect the target table
- Read the source document, build field maps, auto-map, apply overrides
- Execute the import, print the SUMMARY line, write the error log

Exit codes: 0 every row imported, 2 some rows failed, 1 fatal error.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")


@contextmanager
def _db_connection(cfg: ImportConfig):  # pragma: no cover (thin wrapper; tested via integration)
    """Yield a psycopg2 connection with autocommit disabled.

    Connection settings: DATABASE_URL / PGDSN, then the database block of the
    job file, with PG* environment variables taking precedence per field.
    """
    try:
        import psycopg2  # type: ignore
    except Exception as e:
        raise RuntimeError(f"psycopg2 not available: {e}") from e

    conn = psycopg2.connect(cfg.database.resolve_dsn())
    try:
        conn.autocommit = False  # コミット境界は store.commit() が管理
        yield conn
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; values in the file win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="sheet-import", description="Spreadsheet / CSV -> PostgreSQL row importer")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Job configuration (YAML)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print sheets, headers, sample row and mapping then exit")
    p.add_argument("--dry-run", action="store_true", help="Run the import but roll back instead of committing")
    return p.parse_args(argv)


def prepare_parameter(cfg: ImportConfig, schema: TargetSchema | None) -> ImportParameter:
    """Load the document into a parameter and build its field maps."""
    parameter = cfg.to_parameter()
    load_into_parameter(parameter)
    if schema is not None and cfg.auto_map:
        auto_map(schema.fields(), parameter.field_maps)
    apply_overrides(parameter.field_maps, cfg.field_maps, schema.fields() if schema is not None else None)
    return parameter


def _inspect_data(parameter: ImportParameter) -> int:
    print(f"FILE: {parameter.file_name}")
    print(f"  sheets={parameter.available_sheets} selected={parameter.sheet_name}")
    for m in parameter.field_maps:
        target = m.target_property or "-"
        flags = " skip" if m.skip else (" auto" if m.auto_mapped else "")
        print(f"  {m.source_column!r} -> {target} [{m.target_property_type or '?'}]{flags} sample={m.sample_value!r}")
    return EXIT_SUCCESS_ALL


def _reflect_schema(conn: Any, table: str) -> TargetSchema:
    from sheet_import.db.postgres import PostgresTableSchema

    with conn.cursor() as cur:
        schema = PostgresTableSchema(cur, table)
    conn.rollback()  # information_schema 参照のトランザクションを閉じる
    return schema


def _inspect(cfg: ImportConfig, logger: Any) -> int:
    """--inspect-data: mapping preview; works without a database (no auto-map then)."""
    schema: TargetSchema | None = None
    try:
        with _db_connection(cfg) as conn:
            schema = _reflect_schema(conn, cfg.table)
    except Exception as e:
        logger.info(f"DB connection failed -> preview without target schema: {e}")
    return _inspect_data(prepare_parameter(cfg, schema))


def _run(cfg: ImportConfig, dry_run: bool, logger: Any) -> int:
    from sheet_import.db.postgres import PostgresRecordStore

    with _db_connection(cfg) as conn:
        schema = _reflect_schema(conn, cfg.table)
        parameter = prepare_parameter(cfg, schema)
        store = PostgresRecordStore(conn, schema, dry_run=dry_run)
        result = ImportExecutor(store, schema).execute(parameter)

    logger.info(f"mode={'dry-run' if dry_run else 'live'} {result.summary}")
    if result.errors:
        error_log = ErrorLogBuffer.from_result(result)
        breakdown = error_log.describe()
        path = error_log.flush()
        logger.warning(f"{breakdown} written to {path}")
    log_summary(render_summary_line(result)[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if result.error_count else EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None のときのみ sys.argv を読む (テストで [] を渡すケース)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        if args.inspect_data:
            return _inspect(cfg, logger)
        logger.info(f"Importing {cfg.source_file} into {cfg.table} mode={cfg.mode.value}")
        return _run(cfg, args.dry_run, logger)
    except (ConfigError, ConfigurationError) as e:
        logger.error(f"configuration: {e}")
    except DocumentParseError as e:
        logger.error(f"document: {e}")
    except CommitError as e:
        if e.result is not None:
            log_summary(render_summary_line(e.result)[len("SUMMARY "):])
        logger.error(f"commit: {e}")
    except Exception as e:
        logger.error(f"fatal: {e}")
    return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
