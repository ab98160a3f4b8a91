from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..models.import_parameter import FieldMap
from ..store.base import FieldInfo
from .coercion import type_name

"""Field mapping engine: source columns -> destination fields.

Matching compares normalised names (``_``, space and ``-`` removed, lower
case). The first candidate field that matches wins. Columns the user marked
as skipped are left untouched so re-mapping never undoes a manual override.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "apply_overrides",
    "auto_map",
    "mappable_fields",
    "mappable_property_names",
    "normalize_name",
]


def normalize_name(name: str | None) -> str:
    if not name:
        return ""
    return name.replace("_", "").replace(" ", "").replace("-", "").lower()


def mappable_fields(target_fields: Iterable[FieldInfo]) -> list[FieldInfo]:
    """Candidates for auto mapping: public, writable, not a key/identity field."""
    return [f for f in target_fields if f.is_public and f.is_writable and not f.is_key]


def mappable_property_names(target_fields: Iterable[FieldInfo]) -> list[str]:
    """Names a user may pick manually (key fields included, e.g. for Update mode)."""
    return [f.name for f in target_fields if f.is_public and f.is_writable]


def auto_map(target_fields: Iterable[FieldInfo], field_maps: list[FieldMap]) -> list[FieldMap]:
    """Propose a target field for every non-skipped column, in place.

    Idempotent: calling it again on the same maps gives the same result.
    """
    candidates = [(normalize_name(f.name), f) for f in mappable_fields(target_fields)]
    for field_map in field_maps:
        if field_map.skip:
            continue
        normalized = normalize_name(field_map.source_column)
        match = next((f for key, f in candidates if key == normalized), None)
        if match is None:
            continue
        field_map.target_property = match.name
        field_map.target_property_type = type_name(match.field_type)
        field_map.auto_mapped = True
    logger.debug(
        "auto_map mapped=%d/%d",
        sum(1 for m in field_maps if m.auto_mapped),
        len(field_maps),
    )
    return field_maps


def apply_overrides(
    field_maps: list[FieldMap],
    overrides: Mapping[str, Mapping[str, Any]],
    target_fields: Iterable[FieldInfo] | None = None,
) -> list[FieldMap]:
    """Apply user mapping overrides keyed by source column (case-insensitive).

    Each override may carry ``target``, ``default`` and ``skip``. Columns that
    are not present in the sheet are reported and ignored.
    """
    by_column = {m.source_column.casefold(): m for m in field_maps}
    fields_by_name = {f.name.casefold(): f for f in (target_fields or [])}
    for column, override in overrides.items():
        field_map = by_column.get(column.casefold())
        if field_map is None:
            logger.warning("mapping override for unknown column=%s ignored", column)
            continue
        if "target" in override:
            target = override["target"] or None
            field_map.target_property = target
            field_map.auto_mapped = False
            info = fields_by_name.get(target.casefold()) if target else None
            if info is not None:
                field_map.target_property = info.name
            field_map.target_property_type = type_name(info.field_type) if info else None
        if "default" in override:
            default = override["default"]
            field_map.default_value = None if default is None else str(default)
        if "skip" in override:
            field_map.skip = bool(override["skip"])
    return field_maps
