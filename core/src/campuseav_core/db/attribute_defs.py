from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from campuseav_core.db import dumps_json, loads_json, utc_now_sqlite_iso
from campuseav_core.db.ids import new_attribute_def_id

_COLUMNS = """
attribute_def_id, entity_type_id, name, display_name, description, value_kind, category,
is_required, is_multi_valued, default_value, validation_rules_json, sort_order, is_active,
created_at, updated_at, deleted_at
""".strip()

_UNSET: Any = object()


@dataclass(frozen=True)
class AttributeDefRow:
    attribute_def_id: str
    entity_type_id: str
    name: str
    display_name: str
    description: str | None
    value_kind: str
    category: str | None
    required: bool
    multi_valued: bool
    default_value: str | None
    validation_rules: dict[str, Any]
    sort_order: int
    is_active: bool
    created_at: str
    updated_at: str
    deleted_at: str | None


def _attribute_def_from_db_row(row: sqlite3.Row) -> AttributeDefRow:
    rules = loads_json(row["validation_rules_json"], default={})
    return AttributeDefRow(
        attribute_def_id=row["attribute_def_id"],
        entity_type_id=row["entity_type_id"],
        name=row["name"],
        display_name=row["display_name"],
        description=row["description"],
        value_kind=row["value_kind"],
        category=row["category"],
        required=bool(int(row["is_required"])),
        multi_valued=bool(int(row["is_multi_valued"])),
        default_value=row["default_value"],
        validation_rules=rules if isinstance(rules, dict) else {},
        sort_order=int(row["sort_order"]),
        is_active=bool(int(row["is_active"])),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


def create_attribute_def(
    conn: sqlite3.Connection,
    *,
    entity_type_id: str,
    name: str,
    value_kind: str,
    display_name: str | None = None,
    description: str | None = None,
    category: str | None = None,
    required: bool = False,
    multi_valued: bool = False,
    default_value: str | None = None,
    validation_rules: dict[str, Any] | None = None,
    sort_order: int = 0,
) -> AttributeDefRow:
    attribute_def_id = new_attribute_def_id()
    conn.execute(
        """
        INSERT INTO attribute_definitions (
            attribute_def_id, entity_type_id, name, display_name, description, value_kind,
            category, is_required, is_multi_valued, default_value, validation_rules_json,
            sort_order
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
        """.strip(),
        (
            attribute_def_id,
            entity_type_id,
            name,
            display_name or name,
            description,
            str(value_kind),
            category,
            1 if required else 0,
            1 if multi_valued else 0,
            default_value,
            dumps_json(validation_rules or {}),
            int(sort_order),
        ),
    )

    row = get_attribute_def(conn, attribute_def_id=attribute_def_id)
    if row is None:
        raise RuntimeError("Failed to read attribute definition after insert")
    return row


def get_attribute_def(
    conn: sqlite3.Connection, *, attribute_def_id: str, include_deleted: bool = False
) -> AttributeDefRow | None:
    where = "WHERE attribute_def_id = ?"
    if not include_deleted:
        where += " AND deleted_at IS NULL"

    row = conn.execute(
        f"SELECT {_COLUMNS} FROM attribute_definitions {where};",
        (attribute_def_id,),
    ).fetchone()
    return _attribute_def_from_db_row(row) if row is not None else None


def get_attribute_def_by_name(
    conn: sqlite3.Connection, *, entity_type_id: str, name: str
) -> AttributeDefRow | None:
    row = conn.execute(
        f"""
        SELECT {_COLUMNS}
        FROM attribute_definitions
        WHERE entity_type_id = ? AND name = ? AND deleted_at IS NULL;
        """.strip(),
        (entity_type_id, name),
    ).fetchone()
    return _attribute_def_from_db_row(row) if row is not None else None


def list_attribute_defs(
    conn: sqlite3.Connection,
    *,
    entity_type_id: str,
    category: str | None = None,
    name_pattern: str | None = None,
    active_only: bool = True,
    include_deleted: bool = False,
) -> list[AttributeDefRow]:
    clauses: list[str] = ["entity_type_id = ?"]
    params: list[Any] = [entity_type_id]

    if category is not None and category.strip():
        clauses.append("category = ?")
        params.append(category.strip())

    if name_pattern is not None:
        clauses.append("name LIKE ? ESCAPE '\\'")
        params.append(name_pattern)

    if active_only:
        clauses.append("is_active = 1")

    if not include_deleted:
        clauses.append("deleted_at IS NULL")

    rows = conn.execute(
        f"""
        SELECT {_COLUMNS}
        FROM attribute_definitions
        WHERE {" AND ".join(clauses)}
        ORDER BY sort_order ASC, name ASC;
        """.strip(),
        params,
    ).fetchall()
    return [_attribute_def_from_db_row(r) for r in rows]


def patch_attribute_def(
    conn: sqlite3.Connection,
    *,
    attribute_def_id: str,
    display_name: str | None = None,
    description: str | None = None,
    required: bool | None = None,
    default_value: str | None = _UNSET,
    validation_rules: dict[str, Any] | None = None,
    sort_order: int | None = None,
    is_active: bool | None = None,
) -> AttributeDefRow | None:
    updates: list[str] = []
    params: list[Any] = []

    if display_name is not None:
        updates.append("display_name = ?")
        params.append(display_name)

    if description is not None:
        updates.append("description = ?")
        params.append(description)

    if required is not None:
        updates.append("is_required = ?")
        params.append(1 if required else 0)

    if default_value is not _UNSET:
        updates.append("default_value = ?")
        params.append(default_value)

    if validation_rules is not None:
        updates.append("validation_rules_json = ?")
        params.append(dumps_json(validation_rules))

    if sort_order is not None:
        updates.append("sort_order = ?")
        params.append(int(sort_order))

    if is_active is not None:
        updates.append("is_active = ?")
        params.append(1 if is_active else 0)

    if updates:
        updates.append("updated_at = ?")
        params.append(utc_now_sqlite_iso())
        params.append(attribute_def_id)
        conn.execute(
            f"""
            UPDATE attribute_definitions
            SET {", ".join(updates)}
            WHERE attribute_def_id = ? AND deleted_at IS NULL;
            """.strip(),
            params,
        )

    return get_attribute_def(conn, attribute_def_id=attribute_def_id)


def soft_delete_attribute_defs(
    conn: sqlite3.Connection, *, entity_type_id: str, name_pattern: str
) -> int:
    now = utc_now_sqlite_iso()
    cur = conn.execute(
        """
        UPDATE attribute_definitions
        SET deleted_at = ?, updated_at = ?, is_active = 0
        WHERE entity_type_id = ? AND name LIKE ? ESCAPE '\\' AND deleted_at IS NULL;
        """.strip(),
        (now, now, entity_type_id, name_pattern),
    )
    return cur.rowcount
