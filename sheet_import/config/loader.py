from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.import_parameter import DEFAULT_BATCH_SIZE, ImportMode, ImportParameter

"""Job configuration loader.

Responsibilities:
- Load the YAML job file (config/import.yml by default)
- Validate it against the packaged JSON schema (no unknown keys)
- Apply defaults and build an ImportConfig
- Resolve the database DSN (environment first, then the database block)
"""

SCHEMA_PATH = Path(__file__).with_name("import_schema.json")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    def resolve_dsn(self) -> str:
        """DSN resolution order: DATABASE_URL / PGDSN, dsn, then PG* variables over the fields."""
        direct = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or self.dsn
        if direct:
            return direct
        host = os.getenv("PGHOST", self.host or "localhost")
        port = os.getenv("PGPORT", str(self.port) if self.port else "5432")
        user = os.getenv("PGUSER", self.user or "postgres")
        password = os.getenv("PGPASSWORD", self.password or "")
        database = os.getenv("PGDATABASE", self.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"
        return dsn


@dataclass(frozen=True)
class ImportConfig:
    source_file: str
    table: str
    sheet: str | None = None
    has_headers: bool = True
    header_row_index: int = 0
    data_start_row_index: int = 1
    mode: ImportMode = ImportMode.INSERT
    key_property: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    max_records: int = 0
    auto_map: bool = True
    field_maps: dict[str, dict[str, Any]] = field(default_factory=dict)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def to_parameter(self) -> ImportParameter:
        """Build an ImportParameter with the source file bytes loaded.

        A relative source_file is resolved against the working directory, the
        same way the CLI resolves --config. Field maps are not created here;
        the tabular parser builds them from the sheet header.
        """
        path = Path(self.source_file)
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ConfigError(f"cannot read source file {path}: {e}") from e
        return ImportParameter(
            file_name=path.name,
            file_content=content,
            sheet_name=self.sheet,
            has_headers=self.has_headers,
            header_row_index=self.header_row_index,
            data_start_row_index=self.data_start_row_index,
            import_mode=self.mode,
            key_property=self.key_property,
            batch_size=self.batch_size,
            max_records_to_import=self.max_records,
        )


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: the schema file is missing or invalid, or the data does
            not satisfy it (missing keys, wrong types, unknown keys)
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    mode = ImportMode(data.get("mode", ImportMode.INSERT.value))
    key_property = data.get("key_property")
    # 早期検出: update/upsert にはキー列が必須
    if mode.requires_key and not key_property:
        raise ConfigError(f"config validation failed: mode '{mode.value}' requires key_property")
    return ImportConfig(
        source_file=data["source_file"],
        table=data["table"],
        sheet=data.get("sheet"),
        has_headers=data.get("has_headers", True),
        header_row_index=data.get("header_row_index", 0),
        data_start_row_index=data.get("data_start_row_index", 1),
        mode=mode,
        key_property=key_property,
        batch_size=data.get("batch_size", DEFAULT_BATCH_SIZE),
        max_records=data.get("max_records", 0),
        auto_map=data.get("auto_map", True),
        field_maps=dict(data.get("field_maps") or {}),
        database=db,
    )
