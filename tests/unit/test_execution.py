from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import Product, Status
from sheet_import.excel.reader import DocumentParseError, load_into_parameter
from sheet_import.models.import_parameter import FieldMap, ImportMode
from sheet_import.services.execution import (
    ConfigurationError,
    ImportExecutor,
    KeyResolutionError,
    RowOutcome,
    RowStatus,
    execute,
)
from sheet_import.services.field_mapping import auto_map
from sheet_import.store.base import CommitError
from sheet_import.store.memory import InMemoryRecordStore

CSV = "Code,Name,Quantity,Price\nA-1,Apple,10,1.5\nB-2,Banana,20,0.25\nC-3,Cherry,30,12\n"


def _prepared(make_parameter, schema, content=CSV, **kwargs):
    parameter = make_parameter(content, **kwargs)
    load_into_parameter(parameter)
    auto_map(schema.fields(), parameter.field_maps)
    return parameter


def _run(parameter, store, schema):
    return ImportExecutor(store, schema, show_progress=False).execute(parameter)


def test_insert_all_rows(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema)
    result = _run(parameter, product_store, product_schema)

    assert result.total_rows == 3
    assert result.inserted_count == 3
    assert result.success_count == 3
    assert result.error_count == 0
    assert result.summary.startswith("Imported 3 of 3 rows (3 inserted, 0 updated, 0 errors) in ")
    records = product_store.records
    assert [r.code for r in records] == ["A-1", "B-2", "C-3"]
    assert records[0].quantity == 10
    assert records[0].price == Decimal("1.5")
    assert [r.oid for r in records] == [1, 2, 3]


def test_update_existing_records(make_parameter, product_schema):
    store = InMemoryRecordStore(
        Product,
        records=[Product(oid=1, code="A-1", quantity=1), Product(oid=2, code="B-2", quantity=2)],
    )
    parameter = _prepared(
        make_parameter, product_schema, "Code,Quantity\nA-1,5\nB-2,6\n", mode=ImportMode.UPDATE, key_property="code"
    )
    result = _run(parameter, store, product_schema)

    assert result.updated_count == 2
    assert result.inserted_count == 0
    assert [r.quantity for r in store.records] == [5, 6]


def test_update_missing_key_records_error_and_continues(make_parameter, product_schema):
    store = InMemoryRecordStore(Product, records=[Product(oid=1, code="A-1")])
    parameter = _prepared(
        make_parameter, product_schema, "Code,Name\nZ-9,Ghost\nA-1,Apple\n", mode=ImportMode.UPDATE, key_property="Code"
    )
    result = _run(parameter, store, product_schema)

    assert result.total_rows == 2
    assert result.updated_count == 1
    assert result.error_count == 1
    assert result.errors[0].row_index == 1
    assert result.errors[0].message == "no existing object found for key 'Code'"
    assert store.records[0].name == "Apple"


def test_update_blank_key_is_not_found(make_parameter, product_schema):
    store = InMemoryRecordStore(Product, records=[Product(oid=1, code=None, name="orphan")])
    parameter = _prepared(make_parameter, product_schema, "Code,Name\n,X\n", mode=ImportMode.UPDATE, key_property="code")
    result = _run(parameter, store, product_schema)
    assert result.error_count == 1
    assert store.records[0].name == "orphan"


def test_upsert_updates_or_creates(make_parameter, product_schema):
    store = InMemoryRecordStore(Product, records=[Product(oid=1, code="A-1", quantity=1)], identity_field="oid")
    parameter = _prepared(
        make_parameter, product_schema, "Code,Quantity\nA-1,5\nN-1,7\nN-1,8\n", mode=ImportMode.UPSERT, key_property="code"
    )
    result = _run(parameter, store, product_schema)

    assert result.updated_count == 2  # A-1 と、同じ実行内で作成済みの N-1
    assert result.inserted_count == 1
    assert [(r.code, r.quantity) for r in store.records] == [("A-1", 5), ("N-1", 8)]


def test_conversion_failure_keeps_row_and_other_fields(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, "Code,Quantity,Name\nA-1,abc,Apple\nB-2,3,Banana\n")
    result = _run(parameter, product_store, product_schema)

    assert result.inserted_count == 2
    assert result.error_count == 1
    error = result.errors[0]
    assert error.row_index == 1
    assert error.column_name == "Quantity"
    assert error.raw_value == "abc"
    assert error.target_property == "quantity"
    assert error.message == "Cannot convert 'abc' to int"
    first = product_store.records[0]
    assert first.name == "Apple"
    assert first.quantity == 0


def test_default_value_and_enum(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, "Code,Quantity,Status\nA-1,,active\nB-2,4,\n")
    parameter.field_maps[1].default_value = "9"
    result = _run(parameter, product_store, product_schema)
    assert result.error_count == 0
    first, second = product_store.records
    assert first.quantity == 9
    assert first.status is Status.ACTIVE
    assert second.status is Status.DRAFT


def test_batches_commit_on_row_position(make_parameter, product_schema, product_store):
    content = "Code,Quantity\n" + "".join(f"C{i},{'x' if i == 2 else i}\n" for i in range(5))
    parameter = _prepared(make_parameter, product_schema, content, batch_size=2)
    result = _run(parameter, product_store, product_schema)

    # 2 + 2 + 最終コミット
    assert product_store.commit_count == 3
    assert result.committed_batches == 3
    assert result.error_count == 1


def test_max_records_limits_processing(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, max_records_to_import=2)
    result = _run(parameter, product_store, product_schema)
    assert result.total_rows == 3
    assert result.inserted_count == 2
    assert len(product_store.records) == 2


def test_header_only_document(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, "Code,Name\n")
    result = _run(parameter, product_store, product_schema)
    assert result.total_rows == 0
    assert result.success_count == 0
    assert result.summary.startswith("Imported 0 of 0 rows")
    assert product_store.commit_count == 1


def test_key_required_for_update(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, mode=ImportMode.UPDATE)
    with pytest.raises(ConfigurationError, match="requires a key property"):
        _run(parameter, product_store, product_schema)


@pytest.mark.parametrize(
    "key_property, message",
    [
        ("sku", "does not exist"),
        ("note", "has no active column mapping"),
    ],
)
def test_key_property_problems(make_parameter, product_schema, product_store, key_property, message):
    parameter = _prepared(make_parameter, product_schema, mode=ImportMode.UPSERT, key_property=key_property)
    with pytest.raises(ConfigurationError, match=message):
        _run(parameter, product_store, product_schema)


def test_key_mapped_by_two_columns(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, "Code,Sku\nA,B\n", mode=ImportMode.UPSERT, key_property="code")
    parameter.field_maps[1].target_property = "code"
    with pytest.raises(ConfigurationError, match="several columns"):
        _run(parameter, product_store, product_schema)


def test_unknown_and_readonly_targets(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema)
    parameter.field_maps.append(FieldMap("Extra", target_property="nonexistent"))
    with pytest.raises(ConfigurationError, match="unknown field"):
        _run(parameter, product_store, product_schema)

    parameter.field_maps[-1] = FieldMap("Rev", target_property="revision")
    with pytest.raises(ConfigurationError, match="not writable"):
        _run(parameter, product_store, product_schema)
    assert product_store.commit_count == 0


def test_unreadable_document_propagates(make_parameter, product_schema, product_store):
    parameter = make_parameter(b"garbage", file_name="bad.xlsx")
    with pytest.raises(DocumentParseError):
        _run(parameter, product_store, product_schema)


class FailingStore(InMemoryRecordStore):
    def __init__(self, *args, fail_on: int, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_on = fail_on
        self.attempts = 0

    def _before_commit(self) -> None:
        self.attempts += 1
        if self.attempts == self.fail_on:
            raise RuntimeError("disk full")


def test_commit_failure_carries_partial_result(make_parameter, product_schema):
    store = FailingStore(Product, fail_on=2)
    content = "Code\n" + "".join(f"C{i}\n" for i in range(5))
    parameter = _prepared(make_parameter, product_schema, content, batch_size=2)

    with pytest.raises(CommitError) as exc:
        _run(parameter, store, product_schema)

    partial = exc.value.result
    assert partial is not None
    assert partial.committed_batches == 1
    assert partial.inserted_count == 4
    # 最初のバッチのみ確定
    assert [r.code for r in store.records] == ["C0", "C1"]
    assert store.pending == []


def test_module_level_execute(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema)
    result = execute(parameter, product_store, product_schema, show_progress=False)
    assert result.inserted_count == 3


def test_row_outcome_constructors():
    ok = RowOutcome.resolved(object(), created=True)
    assert ok.status is RowStatus.RESOLVED and ok.created
    err = KeyResolutionError("code")
    assert isinstance(err, LookupError)
    assert RowOutcome.fatal(err).status is RowStatus.FATAL


def test_overflowing_number_is_a_cell_error(make_parameter, product_schema, product_store):
    parameter = _prepared(make_parameter, product_schema, "Quantity,Name\n1e999,Apple\n")
    result = _run(parameter, product_store, product_schema)

    assert result.inserted_count == 1
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.column_name == "Quantity"
    assert error.target_property == "quantity"
    assert error.raw_value == "inf"
    assert product_store.records[0].name == "Apple"
    assert product_store.records[0].quantity == 0
