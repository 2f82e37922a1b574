from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from campuseav_core.db.ids import new_entity_type_id

_COLUMNS = """
entity_type_id, name, table_name, description, is_active, created_at, updated_at, deleted_at
""".strip()


@dataclass(frozen=True)
class EntityTypeRow:
    entity_type_id: str
    name: str
    table_name: str
    description: str | None
    is_active: bool
    created_at: str
    updated_at: str
    deleted_at: str | None


def _entity_type_from_db_row(row: sqlite3.Row) -> EntityTypeRow:
    return EntityTypeRow(
        entity_type_id=row["entity_type_id"],
        name=row["name"],
        table_name=row["table_name"],
        description=row["description"],
        is_active=bool(int(row["is_active"])),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


def get_entity_type(
    conn: sqlite3.Connection, *, entity_type_id: str, include_deleted: bool = False
) -> EntityTypeRow | None:
    where = "WHERE entity_type_id = ?"
    if not include_deleted:
        where += " AND deleted_at IS NULL"

    row = conn.execute(
        f"SELECT {_COLUMNS} FROM entity_types {where};",
        (entity_type_id,),
    ).fetchone()
    return _entity_type_from_db_row(row) if row is not None else None


def get_entity_type_by_name(
    conn: sqlite3.Connection, *, name: str, include_deleted: bool = False
) -> EntityTypeRow | None:
    where = "WHERE name = ?"
    if not include_deleted:
        where += " AND deleted_at IS NULL"

    row = conn.execute(
        f"SELECT {_COLUMNS} FROM entity_types {where} ORDER BY created_at DESC LIMIT 1;",
        (name,),
    ).fetchone()
    return _entity_type_from_db_row(row) if row is not None else None


def create_entity_type(
    conn: sqlite3.Connection,
    *,
    name: str,
    table_name: str,
    description: str | None = None,
) -> EntityTypeRow:
    entity_type_id = new_entity_type_id()
    conn.execute(
        """
        INSERT INTO entity_types (entity_type_id, name, table_name, description)
        VALUES (?, ?, ?, ?);
        """.strip(),
        (entity_type_id, name, table_name, description),
    )

    row = get_entity_type(conn, entity_type_id=entity_type_id)
    if row is None:
        raise RuntimeError("Failed to read entity type after insert")
    return row


def list_entity_types(
    conn: sqlite3.Connection, *, include_deleted: bool = False
) -> list[EntityTypeRow]:
    where_sql = "" if include_deleted else "WHERE deleted_at IS NULL"
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM entity_types {where_sql} ORDER BY name ASC;"
    ).fetchall()
    return [_entity_type_from_db_row(r) for r in rows]
