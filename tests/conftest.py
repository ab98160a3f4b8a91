# Shared pytest fixtures
from __future__ import annotations

import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

import pandas as pd
import pytest

from sheet_import.logging.init import reset_logging
from sheet_import.models.import_parameter import ImportMode, ImportParameter
from sheet_import.store.memory import DataclassSchema, InMemoryRecordStore


class Status(Enum):
    DRAFT = 1
    ACTIVE = 2
    RETIRED = 3


@dataclass
class Product:
    oid: int = field(default=0, metadata={"key": True})
    code: str | None = None
    name: str | None = None
    quantity: int = 0
    price: Decimal = Decimal(0)
    is_active: bool = False
    created_date: datetime | None = None
    external_id: uuid.UUID | None = None
    status: Status = Status.DRAFT
    note: str | None = None
    revision: int = field(default=0, metadata={"readonly": True})


PRODUCT_ROWS: list[list[object]] = [
    ["Code", "Name", "Quantity", "Price", "Is Active", "Created_Date"],
    ["A-1", "Apple", 10, 1.5, True, datetime(2024, 1, 15)],
    ["B-2", "Banana", 20, 0.25, False, datetime(2024, 2, 1)],
    ["C-3", "Cherry", 30, 12, True, None],
]


def make_xlsx(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet, header=False, index=False)
    return path


@pytest.fixture(autouse=True)
def _reset_logging_state():
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def xlsx_bytes(tmp_path: Path):
    """Build an xlsx document from {sheet: rows} and return its bytes."""
    def _build(sheets: dict[str, list[list[object]]]) -> bytes:
        return make_xlsx(tmp_path / "book.xlsx", sheets).read_bytes()
    return _build


@pytest.fixture()
def products_xlsx(xlsx_bytes) -> bytes:
    return xlsx_bytes({"Products": PRODUCT_ROWS})


@pytest.fixture()
def product_schema() -> DataclassSchema:
    return DataclassSchema(Product)


@pytest.fixture()
def product_store() -> InMemoryRecordStore:
    return InMemoryRecordStore(Product, identity_field="oid")


@pytest.fixture()
def make_parameter():
    """ImportParameter factory for in-memory CSV content."""
    def _make(content: str | bytes, *, file_name: str = "products.csv", mode: ImportMode = ImportMode.INSERT, **kwargs) -> ImportParameter:
        data = content.encode("utf-8") if isinstance(content, str) else content
        return ImportParameter(file_name=file_name, file_content=data, import_mode=mode, **kwargs)
    return _make
