from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from campuseav_core.db.attribute_defs import (
    AttributeDefRow,
    create_attribute_def,
    get_attribute_def_by_name,
    list_attribute_defs,
    patch_attribute_def,
    soft_delete_attribute_defs,
)
from campuseav_core.db.entity_types import (
    EntityTypeRow,
    create_entity_type,
    get_entity_type_by_name,
)
from campuseav_core.eav.codec import ValueKind, decode_default, parse_value_kind
from campuseav_core.eav.validation import check_rules_document
from campuseav_core.errors import (
    AttributeNotFound,
    ConstraintViolation,
    EntityTypeNotFound,
    InvalidValueKind,
    SchemaError,
)

logger = logging.getLogger(__name__)


def default_to_text(value: Any) -> str | None:
    """Store a default in the text column the way it will be read back per kind."""

    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def category_of(name: str) -> str | None:
    head, sep, _rest = name.partition("_")
    return head if sep and head else None


@dataclass(frozen=True)
class AttributeSpec:
    name: str
    value_kind: ValueKind | str
    display_name: str | None = None
    description: str | None = None
    required: bool = False
    multi_valued: bool = False
    default_value: Any = None
    validation_rules: dict[str, Any] = field(default_factory=dict)
    sort_order: int = 0
    category: str | None = None


class AttributeCatalog:
    """Entity types and their attribute definitions, with a per-type definition cache.

    All methods take an open connection so catalog changes share the caller's
    transaction. The cache is dropped on every catalog mutation.
    """

    def __init__(self, *, cache_ttl_s: float = 300.0) -> None:
        self._cache_ttl_s = cache_ttl_s
        self._cache: dict[str, tuple[float, list[AttributeDefRow]]] = {}
        self._lock = threading.Lock()

    def invalidate(self, entity_type_id: str | None = None) -> None:
        with self._lock:
            if entity_type_id is None:
                self._cache.clear()
            else:
                self._cache.pop(entity_type_id, None)

    def ensure_entity_type(
        self,
        conn: sqlite3.Connection,
        name: str,
        table_ref: str,
        description: str | None = None,
    ) -> str:
        existing = get_entity_type_by_name(conn, name=name)
        if existing is not None:
            return existing.entity_type_id

        row = create_entity_type(conn, name=name, table_name=table_ref, description=description)
        logger.info("Created entity type %s (table %s)", name, table_ref)
        return row.entity_type_id

    def resolve_entity_type(self, conn: sqlite3.Connection, name: str) -> EntityTypeRow:
        row = get_entity_type_by_name(conn, name=name)
        if row is None:
            raise EntityTypeNotFound(name)
        return row

    def ensure_attribute(
        self, conn: sqlite3.Connection, entity_type_id: str, spec: AttributeSpec
    ) -> str:
        """Create the definition if no active one has this name; never overwrites rules."""

        existing = get_attribute_def_by_name(conn, entity_type_id=entity_type_id, name=spec.name)
        if existing is not None:
            return existing.attribute_def_id

        row = self.define_attribute(conn, entity_type_id, spec)
        return row.attribute_def_id

    def define_attribute(
        self, conn: sqlite3.Connection, entity_type_id: str, spec: AttributeSpec
    ) -> AttributeDefRow:
        kind = parse_value_kind(spec.value_kind)
        problems = check_rules_document(spec.validation_rules or {})
        if problems:
            raise SchemaError(
                f"Invalid validation rules for '{spec.name}': "
                + "; ".join(p["message"] for p in problems)
            )

        default_text = default_to_text(spec.default_value)
        try:
            decode_default(default_text, kind)
        except InvalidValueKind as err:
            raise SchemaError(f"Default for '{spec.name}' is not a valid {kind}") from err

        try:
            row = create_attribute_def(
                conn,
                entity_type_id=entity_type_id,
                name=spec.name,
                value_kind=kind.value,
                display_name=spec.display_name,
                description=spec.description,
                category=spec.category or category_of(spec.name),
                required=spec.required,
                multi_valued=spec.multi_valued,
                default_value=default_text,
                validation_rules=spec.validation_rules or {},
                sort_order=spec.sort_order,
            )
        except sqlite3.IntegrityError as err:
            raise ConstraintViolation(f"Attribute '{spec.name}' already exists") from err
        finally:
            self.invalidate(entity_type_id)

        logger.info("Defined attribute %s (%s)", spec.name, kind)
        return row

    def update_attribute(
        self,
        conn: sqlite3.Connection,
        entity_type_id: str,
        name: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
        required: bool | None = None,
        default_value: Any = None,
        validation_rules: dict[str, Any] | None = None,
        sort_order: int | None = None,
    ) -> AttributeDefRow:
        current = get_attribute_def_by_name(conn, entity_type_id=entity_type_id, name=name)
        if current is None:
            raise AttributeNotFound(entity_type_id, name)

        if validation_rules is not None:
            problems = check_rules_document(validation_rules)
            if problems:
                raise SchemaError(
                    f"Invalid validation rules for '{name}': "
                    + "; ".join(p["message"] for p in problems)
                )

        changes: dict[str, Any] = {}
        if default_value is not None:
            default_text = default_to_text(default_value)
            try:
                decode_default(default_text, current.value_kind)
            except InvalidValueKind as err:
                raise SchemaError(
                    f"Default for '{name}' is not a valid {current.value_kind}"
                ) from err
            changes["default_value"] = default_text

        try:
            row = patch_attribute_def(
                conn,
                attribute_def_id=current.attribute_def_id,
                display_name=display_name,
                description=description,
                required=required,
                validation_rules=validation_rules,
                sort_order=sort_order,
                **changes,
            )
        finally:
            self.invalidate(entity_type_id)

        if row is None:
            raise AttributeNotFound(entity_type_id, name)
        return row

    def list_active(
        self,
        conn: sqlite3.Connection,
        entity_type_id: str,
        category: str | None = None,
    ) -> list[AttributeDefRow]:
        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(entity_type_id)
        if cached is not None and now - cached[0] < self._cache_ttl_s:
            rows = cached[1]
        else:
            rows = list_attribute_defs(conn, entity_type_id=entity_type_id)
            if self._cache_ttl_s > 0:
                with self._lock:
                    self._cache[entity_type_id] = (now, rows)

        if category is None:
            return list(rows)
        return [r for r in rows if r.category == category]

    def get_definition(
        self, conn: sqlite3.Connection, entity_type: str, attribute_name: str
    ) -> AttributeDefRow:
        entity_type_row = self.resolve_entity_type(conn, entity_type)
        for row in self.list_active(conn, entity_type_row.entity_type_id):
            if row.name == attribute_name:
                return row
        raise AttributeNotFound(entity_type, attribute_name)

    def soft_delete(self, conn: sqlite3.Connection, entity_type_id: str, name_pattern: str) -> int:
        """Soft-delete definitions whose name matches a LIKE pattern. Values are untouched."""

        try:
            return soft_delete_attribute_defs(
                conn, entity_type_id=entity_type_id, name_pattern=name_pattern
            )
        finally:
            self.invalidate(entity_type_id)
