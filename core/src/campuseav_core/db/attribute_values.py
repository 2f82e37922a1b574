from __future__ import annotations

import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from campuseav_core.db import utc_now_sqlite_iso
from campuseav_core.db.ids import new_attribute_value_id

SLOT_COLUMNS: tuple[str, ...] = (
    "value_string",
    "value_integer",
    "value_decimal",
    "value_boolean",
    "value_date",
    "value_datetime",
    "value_text",
    "value_json",
)

_COLUMNS = ", ".join(
    (
        "attribute_value_id",
        "attribute_def_id",
        "entity_type",
        "entity_id",
        "value_kind",
        *SLOT_COLUMNS,
        "sort_order",
        "created_at",
        "updated_at",
        "deleted_at",
    )
)


@dataclass(frozen=True)
class AttributeValueRow:
    attribute_value_id: str
    attribute_def_id: str
    entity_type: str
    entity_id: str
    value_kind: str
    value_string: str | None
    value_integer: int | None
    value_decimal: str | None
    value_boolean: int | None
    value_date: str | None
    value_datetime: str | None
    value_text: str | None
    value_json: str | None
    sort_order: int
    created_at: str
    updated_at: str
    deleted_at: str | None

    def slots(self) -> dict[str, Any]:
        return {col: getattr(self, col) for col in SLOT_COLUMNS}


def _attribute_value_from_db_row(row: sqlite3.Row) -> AttributeValueRow:
    return AttributeValueRow(
        attribute_value_id=row["attribute_value_id"],
        attribute_def_id=row["attribute_def_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        value_kind=row["value_kind"],
        value_string=row["value_string"],
        value_integer=row["value_integer"],
        value_decimal=row["value_decimal"],
        value_boolean=row["value_boolean"],
        value_date=row["value_date"],
        value_datetime=row["value_datetime"],
        value_text=row["value_text"],
        value_json=row["value_json"],
        sort_order=int(row["sort_order"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row["deleted_at"],
    )


def _slot_params(slots: Mapping[str, Any]) -> list[Any]:
    unknown = set(slots) - set(SLOT_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown value columns: {sorted(unknown)}")
    return [slots.get(col) for col in SLOT_COLUMNS]


def get_attribute_value(
    conn: sqlite3.Connection, *, attribute_value_id: str, include_deleted: bool = False
) -> AttributeValueRow | None:
    where = "WHERE attribute_value_id = ?"
    if not include_deleted:
        where += " AND deleted_at IS NULL"

    row = conn.execute(
        f"SELECT {_COLUMNS} FROM attribute_values {where};",
        (attribute_value_id,),
    ).fetchone()
    return _attribute_value_from_db_row(row) if row is not None else None


def insert_attribute_value(
    conn: sqlite3.Connection,
    *,
    attribute_def_id: str,
    entity_type: str,
    entity_id: str,
    value_kind: str,
    slots: Mapping[str, Any],
    sort_order: int = 0,
) -> AttributeValueRow:
    attribute_value_id = new_attribute_value_id()
    conn.execute(
        f"""
        INSERT INTO attribute_values (
            attribute_value_id, attribute_def_id, entity_type, entity_id, value_kind,
            {", ".join(SLOT_COLUMNS)}, sort_order
        )
        VALUES ({", ".join("?" * (6 + len(SLOT_COLUMNS)))});
        """.strip(),
        (
            attribute_value_id,
            attribute_def_id,
            entity_type,
            entity_id,
            str(value_kind),
            *_slot_params(slots),
            int(sort_order),
        ),
    )

    row = get_attribute_value(conn, attribute_value_id=attribute_value_id)
    if row is None:
        raise RuntimeError("Failed to read attribute value after insert")
    return row


def update_attribute_value(
    conn: sqlite3.Connection,
    *,
    attribute_value_id: str,
    value_kind: str,
    slots: Mapping[str, Any],
) -> AttributeValueRow | None:
    assignments = ", ".join(f"{col} = ?" for col in SLOT_COLUMNS)
    conn.execute(
        f"""
        UPDATE attribute_values
        SET value_kind = ?, {assignments}, updated_at = ?
        WHERE attribute_value_id = ? AND deleted_at IS NULL;
        """.strip(),
        (str(value_kind), *_slot_params(slots), utc_now_sqlite_iso(), attribute_value_id),
    )
    return get_attribute_value(conn, attribute_value_id=attribute_value_id)


def list_attribute_values(
    conn: sqlite3.Connection,
    *,
    entity_type: str,
    entity_id: str,
    attribute_def_id: str | None = None,
    sort_order: int | None = None,
    include_deleted: bool = False,
) -> list[AttributeValueRow]:
    clauses: list[str] = ["entity_type = ?", "entity_id = ?"]
    params: list[Any] = [entity_type, entity_id]

    if attribute_def_id is not None:
        clauses.append("attribute_def_id = ?")
        params.append(attribute_def_id)

    if sort_order is not None:
        clauses.append("sort_order = ?")
        params.append(int(sort_order))

    if not include_deleted:
        clauses.append("deleted_at IS NULL")

    rows = conn.execute(
        f"""
        SELECT {_COLUMNS}
        FROM attribute_values
        WHERE {" AND ".join(clauses)}
        ORDER BY attribute_def_id ASC, sort_order ASC, created_at ASC;
        """.strip(),
        params,
    ).fetchall()
    return [_attribute_value_from_db_row(r) for r in rows]


def max_sort_order(
    conn: sqlite3.Connection, *, attribute_def_id: str, entity_type: str, entity_id: str
) -> int | None:
    row = conn.execute(
        """
        SELECT MAX(sort_order) AS max_sort
        FROM attribute_values
        WHERE attribute_def_id = ? AND entity_type = ? AND entity_id = ? AND deleted_at IS NULL;
        """.strip(),
        (attribute_def_id, entity_type, entity_id),
    ).fetchone()
    value = row["max_sort"] if row is not None else None
    return int(value) if value is not None else None


def find_matching_value(
    conn: sqlite3.Connection,
    *,
    attribute_def_id: str,
    entity_type: str,
    entity_id: str,
    slots: Mapping[str, Any],
    sort_order: int | None = None,
) -> AttributeValueRow | None:
    """Return an active row holding exactly these slot values, if one exists."""

    clauses = ["attribute_def_id = ?", "entity_type = ?", "entity_id = ?", "deleted_at IS NULL"]
    params: list[Any] = [attribute_def_id, entity_type, entity_id]

    # `IS` compares NULLs as equal, so untouched slots must match too.
    for col, value in zip(SLOT_COLUMNS, _slot_params(slots), strict=True):
        clauses.append(f"{col} IS ?")
        params.append(value)

    if sort_order is not None:
        clauses.append("sort_order = ?")
        params.append(int(sort_order))

    row = conn.execute(
        f"""
        SELECT {_COLUMNS}
        FROM attribute_values
        WHERE {" AND ".join(clauses)}
        LIMIT 1;
        """.strip(),
        params,
    ).fetchone()
    return _attribute_value_from_db_row(row) if row is not None else None


def soft_delete_attribute_values(
    conn: sqlite3.Connection,
    *,
    attribute_def_id: str,
    entity_type: str,
    entity_id: str,
    sort_order: int | None = None,
) -> int:
    now = utc_now_sqlite_iso()
    clauses = ["attribute_def_id = ?", "entity_type = ?", "entity_id = ?", "deleted_at IS NULL"]
    params: list[Any] = [now, now, attribute_def_id, entity_type, entity_id]
    if sort_order is not None:
        clauses.append("sort_order = ?")
        params.append(int(sort_order))

    cur = conn.execute(
        f"""
        UPDATE attribute_values
        SET deleted_at = ?, updated_at = ?
        WHERE {" AND ".join(clauses)};
        """.strip(),
        params,
    )
    return cur.rowcount


def soft_delete_values_for_defs(
    conn: sqlite3.Connection, *, attribute_def_ids: list[str]
) -> int:
    if not attribute_def_ids:
        return 0

    now = utc_now_sqlite_iso()
    placeholders = ", ".join("?" * len(attribute_def_ids))
    cur = conn.execute(
        f"""
        UPDATE attribute_values
        SET deleted_at = ?, updated_at = ?
        WHERE attribute_def_id IN ({placeholders}) AND deleted_at IS NULL;
        """.strip(),
        (now, now, *attribute_def_ids),
    )
    return cur.rowcount
