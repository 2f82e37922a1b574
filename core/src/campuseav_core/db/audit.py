from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from campuseav_core.db import dumps_json, loads_json
from campuseav_core.db.ids import new_audit_log_id


@dataclass(frozen=True)
class AuditLogRow:
    audit_log_id: str
    entity_type: str
    entity_id: str
    attribute_name: str
    action: str
    old_value: Any
    new_value: Any
    changed_by: str | None
    change_reason: str | None
    created_at: str


def _audit_log_from_db_row(row: sqlite3.Row) -> AuditLogRow:
    return AuditLogRow(
        audit_log_id=row["audit_log_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        attribute_name=row["attribute_name"],
        action=row["action"],
        old_value=loads_json(row["old_value_json"]),
        new_value=loads_json(row["new_value_json"]),
        changed_by=row["changed_by"],
        change_reason=row["change_reason"],
        created_at=row["created_at"],
    )


def append_audit_log(
    conn: sqlite3.Connection,
    *,
    entity_type: str,
    entity_id: str,
    attribute_name: str,
    action: str,
    old_value: Any = None,
    new_value: Any = None,
    changed_by: str | None = None,
    change_reason: str | None = None,
) -> str:
    audit_log_id = new_audit_log_id()
    conn.execute(
        """
        INSERT INTO eav_audit_logs (
            audit_log_id, entity_type, entity_id, attribute_name, action,
            old_value_json, new_value_json, changed_by, change_reason
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
        """.strip(),
        (
            audit_log_id,
            entity_type,
            entity_id,
            attribute_name,
            action,
            dumps_json(old_value) if old_value is not None else None,
            dumps_json(new_value) if new_value is not None else None,
            changed_by,
            change_reason,
        ),
    )
    return audit_log_id


def list_audit_logs(
    conn: sqlite3.Connection,
    *,
    entity_type: str,
    entity_id: str,
    limit: int = 100,
) -> list[AuditLogRow]:
    rows = conn.execute(
        """
        SELECT audit_log_id, entity_type, entity_id, attribute_name, action,
               old_value_json, new_value_json, changed_by, change_reason, created_at
        FROM eav_audit_logs
        WHERE entity_type = ? AND entity_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?;
        """.strip(),
        (entity_type, entity_id, max(1, min(int(limit), 1000))),
    ).fetchall()
    return [_audit_log_from_db_row(r) for r in rows]
