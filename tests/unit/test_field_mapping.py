from __future__ import annotations

import copy
from typing import Optional

from sheet_import.models.import_parameter import FieldMap
from sheet_import.services.field_mapping import (
    apply_overrides,
    auto_map,
    mappable_fields,
    mappable_property_names,
    normalize_name,
)
from sheet_import.store.base import FieldInfo

FIELDS = [
    FieldInfo("oid", int, is_key=True),
    FieldInfo("CustomerName", Optional[str]),
    FieldInfo("customer_name", str),
    FieldInfo("quantity", int),
    FieldInfo("computed", str, is_writable=False),
    FieldInfo("_hidden", str, is_public=False),
]


def _maps(*columns: str) -> list[FieldMap]:
    return [FieldMap(source_column=c) for c in columns]


def test_normalize_name():
    assert normalize_name("Customer_Name") == "customername"
    assert normalize_name("customer-name") == "customername"
    assert normalize_name(" Customer Name ") == "customername"
    assert normalize_name(None) == ""


def test_mappable_fields_excludes_keys_readonly_and_private():
    assert [f.name for f in mappable_fields(FIELDS)] == ["CustomerName", "customer_name", "quantity"]
    assert "oid" in mappable_property_names(FIELDS)
    assert "computed" not in mappable_property_names(FIELDS)


def test_auto_map_first_match_wins_and_sets_type():
    maps = auto_map(FIELDS, _maps("customer name", "QUANTITY", "oid", "computed", "unknown"))
    by_col = {m.source_column: m for m in maps}
    assert by_col["customer name"].target_property == "CustomerName"
    assert by_col["customer name"].target_property_type == "str | None"
    assert by_col["customer name"].auto_mapped is True
    assert by_col["QUANTITY"].target_property == "quantity"
    assert by_col["QUANTITY"].target_property_type == "int"
    # key / read-only / unmatched columns stay unmapped
    assert by_col["oid"].target_property is None
    assert by_col["computed"].target_property is None
    assert by_col["unknown"].target_property is None
    assert by_col["unknown"].auto_mapped is False


def test_auto_map_leaves_skipped_columns_alone():
    maps = _maps("quantity")
    maps[0].skip = True
    maps[0].target_property = "manual"
    auto_map(FIELDS, maps)
    assert maps[0].target_property == "manual"
    assert maps[0].auto_mapped is False


def test_auto_map_is_idempotent():
    maps = auto_map(FIELDS, _maps("Customer-Name", "quantity", "x"))
    once = copy.deepcopy(maps)
    auto_map(FIELDS, maps)
    assert maps == once


def test_apply_overrides_target_default_skip(caplog):
    maps = auto_map(FIELDS, _maps("Customer Name", "Quantity", "Note"))
    apply_overrides(
        maps,
        {
            "customer name": {"target": "customer_name"},
            "QUANTITY": {"default": 0, "skip": True},
            "Note": {"target": None},
            "Ghost": {"target": "quantity"},
        },
        FIELDS,
    )
    by_col = {m.source_column: m for m in maps}
    assert by_col["Customer Name"].target_property == "customer_name"
    assert by_col["Customer Name"].target_property_type == "str"
    assert by_col["Customer Name"].auto_mapped is False
    assert by_col["Quantity"].default_value == "0"
    assert by_col["Quantity"].skip is True
    assert by_col["Quantity"].is_active is False
    assert by_col["Note"].target_property is None
    assert "unknown column=Ghost" in caplog.text


def test_apply_overrides_without_schema_keeps_given_name():
    maps = apply_overrides(_maps("a"), {"a": {"target": "Whatever"}})
    assert maps[0].target_property == "Whatever"
    assert maps[0].target_property_type is None
    assert maps[0].is_active
