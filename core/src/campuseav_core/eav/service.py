from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from campuseav_core.config import EavConfig
from campuseav_core.db import connect, savepoint, transaction
from campuseav_core.db.attribute_defs import AttributeDefRow
from campuseav_core.db.attribute_values import AttributeValueRow
from campuseav_core.db.audit import AuditLogRow, append_audit_log, list_audit_logs
from campuseav_core.db.entity_types import EntityTypeRow, list_entity_types
from campuseav_core.db.ids import new_group_id
from campuseav_core.db.rollout import get_eav_enabled, set_eav_enabled
from campuseav_core.eav.catalog import AttributeCatalog, AttributeSpec
from campuseav_core.eav.codec import decode, decode_default, encode, to_json_compatible
from campuseav_core.eav.store import AttributeValueStore
from campuseav_core.eav.validation import validate
from campuseav_core.errors import (
    AttributeNotFound,
    ConstraintViolation,
    EavError,
    GroupNotFound,
    InvalidValueKind,
    SchemaError,
    ValidationError,
)
from campuseav_core.legacy import LegacySource

logger = logging.getLogger(__name__)

_FIELD_ERRORS = (AttributeNotFound, ValidationError, InvalidValueKind, ConstraintViolation)


@dataclass(frozen=True)
class FieldResult:
    field: str
    ok: bool
    action: str
    value: Any = None
    occurrence: int | None = None
    error: dict[str, Any] | None = None


@dataclass(frozen=True)
class GroupSpec:
    """A repeating record stored as several multi-valued attributes.

    Every repetition shares one occurrence number across its attributes and
    carries a group id value in `group_attribute`.
    """

    group_attribute: str
    fields: Mapping[str, str] = field(default_factory=dict)  # field name -> attribute name


def _error_payload(err: EavError) -> dict[str, Any]:
    return {"code": err.code, "message": err.message, "details": err.details()}


class EavService:
    """Entry point for host services reading and writing entity attributes."""

    def __init__(
        self,
        db_path: Path,
        *,
        config: EavConfig | None = None,
        legacy_sources: Mapping[str, LegacySource] | None = None,
        catalog: AttributeCatalog | None = None,
        store: AttributeValueStore | None = None,
    ) -> None:
        self.db_path = db_path
        self.config = config or EavConfig()
        self.legacy_sources: dict[str, LegacySource] = dict(legacy_sources or {})
        self.catalog = catalog or AttributeCatalog(cache_ttl_s=self.config.catalog_cache_ttl_s)
        self.store = store or AttributeValueStore()

    def register_legacy_source(self, entity_type: str, source: LegacySource) -> None:
        self.legacy_sources[entity_type] = source

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        try:
            with transaction(self.db_path, busy_timeout_ms=self.config.busy_timeout_ms) as conn:
                yield conn
        except BaseException:
            # Rolled-back catalog writes must not linger in the cache.
            self.catalog.invalidate()
            raise

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = connect(self.db_path, busy_timeout_ms=self.config.busy_timeout_ms)
        try:
            yield conn
        finally:
            conn.close()

    # Reads

    def get_profile(
        self, entity_type: str, entity_id: str, category: str | None = None
    ) -> dict[str, Any]:
        """All active attributes of one entity, defaults applied.

        Multi-valued attributes come back as lists in occurrence order. When the
        instance has not been switched to EAV and a legacy source is registered
        for its type, the legacy profile is returned instead.
        """

        with self._read() as conn:
            legacy = self.legacy_sources.get(entity_type)
            if legacy is not None and not self._eav_enabled(conn, entity_type, entity_id):
                logger.debug(
                    "Serving %s %s from legacy source %s", entity_type, entity_id, legacy.name
                )
                return legacy.read_profile(entity_id)

            entity_type_row = self.catalog.resolve_entity_type(conn, entity_type)
            definitions = self.catalog.list_active(conn, entity_type_row.entity_type_id, category)
            rows = self.store.list_for_entity(conn, entity_type, entity_id)

        by_def: dict[str, list[AttributeValueRow]] = {}
        for row in rows:
            by_def.setdefault(row.attribute_def_id, []).append(row)

        profile: dict[str, Any] = {}
        for definition in definitions:
            stored = sorted(by_def.get(definition.attribute_def_id, []), key=lambda r: r.sort_order)
            values = [decode(r) for r in stored]
            default = decode_default(definition.default_value, definition.value_kind)
            if definition.multi_valued:
                profile[definition.name] = values or ([default] if default is not None else [])
            else:
                profile[definition.name] = values[0] if values else default
        return profile

    def list_entity_types(self) -> list[EntityTypeRow]:
        with self._read() as conn:
            return list_entity_types(conn)

    def list_attributes(
        self, entity_type: str, category: str | None = None
    ) -> list[AttributeDefRow]:
        with self._read() as conn:
            entity_type_row = self.catalog.resolve_entity_type(conn, entity_type)
            return self.catalog.list_active(conn, entity_type_row.entity_type_id, category)

    def audit_trail(self, entity_type: str, entity_id: str, limit: int = 100) -> list[AuditLogRow]:
        with self._read() as conn:
            return list_audit_logs(conn, entity_type=entity_type, entity_id=entity_id, limit=limit)

    # Writes

    def _set_in_tx(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        attribute_name: str,
        raw_value: Any,
        *,
        occurrence: int | None = None,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> FieldResult:
        definition = self.catalog.get_definition(conn, entity_type, attribute_name)
        value = validate(raw_value, definition)

        if value is None:
            removed = self.store.soft_delete(
                conn, entity_type, entity_id, definition, occurrence=occurrence
            )
            if removed:
                append_audit_log(
                    conn,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    attribute_name=attribute_name,
                    action="delete",
                    changed_by=changed_by,
                    change_reason=change_reason,
                )
            return FieldResult(
                field=attribute_name, ok=True, action="cleared", occurrence=occurrence
            )

        slots = encode(value, definition.value_kind)
        result = self.store.upsert(
            conn, entity_type, entity_id, definition, slots, occurrence=occurrence
        )
        new_value = to_json_compatible(decode(result.row))

        if result.action != "unchanged":
            append_audit_log(
                conn,
                entity_type=entity_type,
                entity_id=entity_id,
                attribute_name=attribute_name,
                action="create" if result.previous is None else "update",
                old_value=to_json_compatible(decode(result.previous)) if result.previous else None,
                new_value=new_value,
                changed_by=changed_by,
                change_reason=change_reason,
            )

        return FieldResult(
            field=attribute_name,
            ok=True,
            action=result.action,
            value=new_value,
            occurrence=result.row.sort_order,
        )

    def set_attribute(
        self,
        entity_type: str,
        entity_id: str,
        attribute_name: str,
        raw_value: Any,
        *,
        occurrence: int | None = None,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> FieldResult:
        """Validate and persist one value; nothing is written when validation fails."""

        with self._tx() as conn:
            return self._set_in_tx(
                conn,
                entity_type,
                entity_id,
                attribute_name,
                raw_value,
                occurrence=occurrence,
                changed_by=changed_by,
                change_reason=change_reason,
            )

    def bulk_update(
        self,
        entity_type: str,
        entity_id: str,
        values: Mapping[str, Any],
        *,
        changed_by: str | None = None,
        change_reason: str | None = None,
    ) -> list[FieldResult]:
        """Set several attributes; each field succeeds or fails on its own."""

        results: list[FieldResult] = []
        with self._tx() as conn:
            self.catalog.resolve_entity_type(conn, entity_type)
            for index, (name, raw_value) in enumerate(values.items()):
                try:
                    with savepoint(conn, f"field_{index}"):
                        results.append(
                            self._set_in_tx(
                                conn,
                                entity_type,
                                entity_id,
                                name,
                                raw_value,
                                changed_by=changed_by,
                                change_reason=change_reason,
                            )
                        )
                except _FIELD_ERRORS as err:
                    logger.info(
                        "Bulk update of %s %s rejected %s: %s", entity_type, entity_id, name, err
                    )
                    results.append(
                        FieldResult(
                            field=name, ok=False, action="rejected", error=_error_payload(err)
                        )
                    )
        return results

    def delete_attribute(
        self,
        entity_type: str,
        entity_id: str,
        attribute_name: str,
        *,
        occurrence: int | None = None,
        changed_by: str | None = None,
    ) -> int:
        with self._tx() as conn:
            definition = self.catalog.get_definition(conn, entity_type, attribute_name)
            removed = self.store.soft_delete(
                conn, entity_type, entity_id, definition, occurrence=occurrence
            )
            if removed:
                append_audit_log(
                    conn,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    attribute_name=attribute_name,
                    action="delete",
                    changed_by=changed_by,
                )
            return removed

    def initialize_defaults(
        self, entity_type: str, entity_id: str, category: str | None = None
    ) -> list[FieldResult]:
        """Seed definition defaults for one entity, leaving attributes that already have values."""

        results: list[FieldResult] = []
        with self._tx() as conn:
            entity_type_row = self.catalog.resolve_entity_type(conn, entity_type)
            definitions = self.catalog.list_active(conn, entity_type_row.entity_type_id, category)
            for definition in definitions:
                if definition.default_value is None:
                    continue
                if self.store.get_all(conn, entity_type, entity_id, definition):
                    results.append(FieldResult(field=definition.name, ok=True, action="skipped"))
                    continue
                value = validate(definition.default_value, definition)
                row = self.store.insert(
                    conn, entity_type, entity_id, definition, encode(value, definition.value_kind)
                )
                append_audit_log(
                    conn,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    attribute_name=definition.name,
                    action="create",
                    new_value=to_json_compatible(value),
                    change_reason="initialize defaults",
                )
                results.append(
                    FieldResult(
                        field=definition.name,
                        ok=True,
                        action="initialized",
                        value=to_json_compatible(value),
                        occurrence=row.sort_order,
                    )
                )
        return results

    # Rollout flags

    def _eav_enabled(self, conn: sqlite3.Connection, entity_type: str, entity_id: str) -> bool:
        explicit = get_eav_enabled(conn, entity_type=entity_type, entity_id=entity_id)
        return self.config.default_eav_enabled if explicit is None else explicit

    def is_eav_enabled(self, entity_type: str, entity_id: str) -> bool:
        with self._read() as conn:
            return self._eav_enabled(conn, entity_type, entity_id)

    def set_eav_enabled(self, entity_type: str, entity_id: str, enabled: bool) -> None:
        with self._tx() as conn:
            set_eav_enabled(conn, entity_type=entity_type, entity_id=entity_id, enabled=enabled)
        state = "enabled" if enabled else "disabled"
        logger.info("EAV %s for %s %s", state, entity_type, entity_id)

    # Catalog administration

    def define_attribute(
        self,
        entity_type: str,
        spec: AttributeSpec,
        *,
        table_ref: str | None = None,
    ) -> AttributeDefRow:
        with self._tx() as conn:
            entity_type_id = self.catalog.ensure_entity_type(
                conn, entity_type, table_ref or entity_type
            )
            return self.catalog.define_attribute(conn, entity_type_id, spec)

    def update_attribute(
        self, entity_type: str, attribute_name: str, **changes: Any
    ) -> AttributeDefRow:
        with self._tx() as conn:
            entity_type_row = self.catalog.resolve_entity_type(conn, entity_type)
            try:
                return self.catalog.update_attribute(
                    conn, entity_type_row.entity_type_id, attribute_name, **changes
                )
            except AttributeNotFound:
                raise AttributeNotFound(entity_type, attribute_name) from None

    def decommission_attribute(self, entity_type: str, name_pattern: str) -> int:
        with self._tx() as conn:
            entity_type_row = self.catalog.resolve_entity_type(conn, entity_type)
            return self.catalog.soft_delete(conn, entity_type_row.entity_type_id, name_pattern)

    # Grouped repeating records

    def _group_definitions(
        self, conn: sqlite3.Connection, entity_type: str, group: GroupSpec
    ) -> tuple[AttributeDefRow, dict[str, AttributeDefRow]]:
        id_def = self.catalog.get_definition(conn, entity_type, group.group_attribute)
        field_defs = {
            name: self.catalog.get_definition(conn, entity_type, attribute)
            for name, attribute in group.fields.items()
        }
        for definition in (id_def, *field_defs.values()):
            if not definition.multi_valued:
                raise SchemaError(f"Group attribute '{definition.name}' must be multi-valued")
        return id_def, field_defs

    def _group_occurrences(
        self, conn: sqlite3.Connection, entity_type: str, entity_id: str, id_def: AttributeDefRow
    ) -> dict[str, int]:
        rows = self.store.get_all(conn, entity_type, entity_id, id_def)
        return {str(decode(r)): r.sort_order for r in rows}

    def list_groups(
        self, entity_type: str, entity_id: str, group: GroupSpec
    ) -> list[dict[str, Any]]:
        with self._read() as conn:
            id_def, field_defs = self._group_definitions(conn, entity_type, group)
            occurrences = self._group_occurrences(conn, entity_type, entity_id, id_def)
            by_field = {
                name: {
                    r.sort_order: decode(r)
                    for r in self.store.get_all(conn, entity_type, entity_id, d)
                }
                for name, d in field_defs.items()
            }

        records: list[dict[str, Any]] = []
        for group_id, occurrence in sorted(occurrences.items(), key=lambda item: item[1]):
            record: dict[str, Any] = {"group_id": group_id, "occurrence": occurrence}
            for name, values in by_field.items():
                if occurrence in values:
                    record[name] = values[occurrence]
            records.append(record)
        return records

    def add_group(
        self,
        entity_type: str,
        entity_id: str,
        group: GroupSpec,
        fields: Mapping[str, Any],
        *,
        changed_by: str | None = None,
    ) -> dict[str, Any]:
        unknown = set(fields) - set(group.fields)
        if unknown:
            raise ValidationError(sorted(unknown)[0], "field", "not part of this group")

        with self._tx() as conn:
            id_def, field_defs = self._group_definitions(conn, entity_type, group)
            validated = {name: validate(fields.get(name), d) for name, d in field_defs.items()}

            occupied = [
                r.sort_order
                for d in (id_def, *field_defs.values())
                for r in self.store.get_all(conn, entity_type, entity_id, d)
            ]
            occurrence = max(occupied) + 1 if occupied else 0
            group_id = new_group_id()

            self.store.insert(
                conn,
                entity_type,
                entity_id,
                id_def,
                encode(group_id, id_def.value_kind),
                occurrence,
            )
            record: dict[str, Any] = {"group_id": group_id, "occurrence": occurrence}
            for name, value in validated.items():
                if value is None:
                    continue
                d = field_defs[name]
                self.store.insert(
                    conn, entity_type, entity_id, d, encode(value, d.value_kind), occurrence
                )
                record[name] = value

            append_audit_log(
                conn,
                entity_type=entity_type,
                entity_id=entity_id,
                attribute_name=group.group_attribute,
                action="create",
                new_value=to_json_compatible(record),
                changed_by=changed_by,
            )
        return record

    def update_group(
        self,
        entity_type: str,
        entity_id: str,
        group: GroupSpec,
        group_id: str,
        fields: Mapping[str, Any],
        *,
        changed_by: str | None = None,
    ) -> dict[str, Any]:
        unknown = set(fields) - set(group.fields)
        if unknown:
            raise ValidationError(sorted(unknown)[0], "field", "not part of this group")

        with self._tx() as conn:
            id_def, field_defs = self._group_definitions(conn, entity_type, group)
            occurrence = self._group_occurrences(conn, entity_type, entity_id, id_def).get(group_id)
            if occurrence is None:
                raise GroupNotFound(group_id)

            for name, raw_value in fields.items():
                self._set_in_tx(
                    conn,
                    entity_type,
                    entity_id,
                    group.fields[name],
                    raw_value,
                    occurrence=occurrence,
                    changed_by=changed_by,
                )

        records = self.list_groups(entity_type, entity_id, group)
        return next(r for r in records if r["group_id"] == group_id)

    def delete_group(
        self,
        entity_type: str,
        entity_id: str,
        group: GroupSpec,
        group_id: str,
        *,
        changed_by: str | None = None,
    ) -> int:
        with self._tx() as conn:
            id_def, field_defs = self._group_definitions(conn, entity_type, group)
            occurrence = self._group_occurrences(conn, entity_type, entity_id, id_def).get(group_id)
            if occurrence is None:
                raise GroupNotFound(group_id)

            removed = 0
            for d in (id_def, *field_defs.values()):
                removed += self.store.soft_delete(
                    conn, entity_type, entity_id, d, occurrence=occurrence
                )

            append_audit_log(
                conn,
                entity_type=entity_type,
                entity_id=entity_id,
                attribute_name=group.group_attribute,
                action="delete",
                old_value={"group_id": group_id, "occurrence": occurrence},
                changed_by=changed_by,
            )
        return removed
