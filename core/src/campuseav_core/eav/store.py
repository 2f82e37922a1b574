from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from campuseav_core.db.attribute_defs import AttributeDefRow
from campuseav_core.db.attribute_values import (
    AttributeValueRow,
    find_matching_value,
    insert_attribute_value,
    list_attribute_values,
    max_sort_order,
    soft_delete_attribute_values,
    soft_delete_values_for_defs,
    update_attribute_value,
)
from campuseav_core.eav.codec import TypedSlots
from campuseav_core.errors import ConstraintViolation, InvalidValueKind


@dataclass(frozen=True)
class UpsertResult:
    row: AttributeValueRow
    action: str  # "created" | "updated" | "replaced" | "unchanged"
    previous: AttributeValueRow | None = None


class AttributeValueStore:
    """Typed attribute values for entity instances, one row per occurrence.

    Single-valued attributes always live at occurrence 0. Multi-valued
    attributes use the occurrence (sort order) to order repetitions and to
    tie the attributes of one repeated record together.
    """

    def get(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        definition: AttributeDefRow,
        occurrence: int | None = None,
    ) -> AttributeValueRow | None:
        rows = list_attribute_values(
            conn,
            entity_type=entity_type,
            entity_id=entity_id,
            attribute_def_id=definition.attribute_def_id,
            sort_order=0 if occurrence is None and not definition.multi_valued else occurrence,
        )
        return rows[0] if rows else None

    def get_all(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        definition: AttributeDefRow,
    ) -> list[AttributeValueRow]:
        return list_attribute_values(
            conn,
            entity_type=entity_type,
            entity_id=entity_id,
            attribute_def_id=definition.attribute_def_id,
        )

    def list_for_entity(
        self, conn: sqlite3.Connection, entity_type: str, entity_id: str
    ) -> list[AttributeValueRow]:
        return list_attribute_values(conn, entity_type=entity_type, entity_id=entity_id)

    def insert(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        definition: AttributeDefRow,
        slots: TypedSlots,
        occurrence: int = 0,
    ) -> AttributeValueRow:
        self._check_kind(definition, slots)
        try:
            return insert_attribute_value(
                conn,
                attribute_def_id=definition.attribute_def_id,
                entity_type=entity_type,
                entity_id=entity_id,
                value_kind=slots.kind.value,
                slots=slots.columns(),
                sort_order=occurrence,
            )
        except sqlite3.IntegrityError as err:
            raise ConstraintViolation(
                f"{definition.name} already has an active value at occurrence {occurrence} "
                f"for {entity_type} {entity_id}"
            ) from err

    def upsert(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        definition: AttributeDefRow,
        slots: TypedSlots,
        occurrence: int | None = None,
    ) -> UpsertResult:
        self._check_kind(definition, slots)

        if definition.multi_valued and occurrence is None:
            current_max = max_sort_order(
                conn,
                attribute_def_id=definition.attribute_def_id,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            next_occurrence = 0 if current_max is None else current_max + 1
            row = self.insert(conn, entity_type, entity_id, definition, slots, next_occurrence)
            return UpsertResult(row=row, action="created")

        target = 0 if not definition.multi_valued else occurrence
        current = self.get(conn, entity_type, entity_id, definition, occurrence=target)
        if current is None:
            row = self.insert(conn, entity_type, entity_id, definition, slots, target)
            return UpsertResult(row=row, action="created")

        if current.value_kind == slots.kind.value:
            if current.slots() == slots.columns():
                return UpsertResult(row=current, action="unchanged", previous=current)
            updated = update_attribute_value(
                conn,
                attribute_value_id=current.attribute_value_id,
                value_kind=slots.kind.value,
                slots=slots.columns(),
            )
            if updated is None:
                raise RuntimeError("Failed to read attribute value after update")
            return UpsertResult(row=updated, action="updated", previous=current)

        # Kind changed since the value was written: retire the old row, keep history.
        self.soft_delete(conn, entity_type, entity_id, definition, occurrence=target)
        row = self.insert(conn, entity_type, entity_id, definition, slots, target)
        return UpsertResult(row=row, action="replaced", previous=current)

    def dedupe_check(
        self,
        conn: sqlite3.Connection,
        attribute_def_id: str,
        entity_id: str,
        entity_type: str,
        slots: TypedSlots,
        occurrence: int | None = None,
    ) -> bool:
        """True when an identical active value already exists."""

        existing = find_matching_value(
            conn,
            attribute_def_id=attribute_def_id,
            entity_type=entity_type,
            entity_id=entity_id,
            slots=slots.columns(),
            sort_order=occurrence,
        )
        return existing is not None

    def soft_delete(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        definition: AttributeDefRow,
        occurrence: int | None = None,
    ) -> int:
        return soft_delete_attribute_values(
            conn,
            attribute_def_id=definition.attribute_def_id,
            entity_type=entity_type,
            entity_id=entity_id,
            sort_order=occurrence,
        )

    def soft_delete_for_definitions(
        self, conn: sqlite3.Connection, attribute_def_ids: list[str]
    ) -> int:
        return soft_delete_values_for_defs(conn, attribute_def_ids=attribute_def_ids)

    @staticmethod
    def _check_kind(definition: AttributeDefRow, slots: TypedSlots) -> None:
        if slots.kind.value != definition.value_kind:
            raise InvalidValueKind(
                definition.value_kind,
                f"{definition.name} was given a {slots.kind.value} value",
            )
