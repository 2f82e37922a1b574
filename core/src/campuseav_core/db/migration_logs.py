from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from campuseav_core.db import dumps_json, loads_json
from campuseav_core.db.ids import new_migration_log_id


@dataclass(frozen=True)
class MigrationLogRow:
    migration_log_id: str
    migration_name: str
    version: str
    executed_at: str
    dry_run: bool
    stats: dict[str, Any]
    notes: str | None


def _migration_log_from_db_row(row: sqlite3.Row) -> MigrationLogRow:
    return MigrationLogRow(
        migration_log_id=row["migration_log_id"],
        migration_name=row["migration_name"],
        version=row["version"],
        executed_at=row["executed_at"],
        dry_run=bool(int(row["dry_run"])),
        stats=loads_json(row["stats_json"], default={}),
        notes=row["notes"],
    )


def append_migration_log(
    conn: sqlite3.Connection,
    *,
    migration_name: str,
    version: str,
    dry_run: bool,
    stats: dict[str, Any],
    notes: str | None = None,
) -> MigrationLogRow:
    migration_log_id = new_migration_log_id()
    conn.execute(
        """
        INSERT INTO eav_migration_logs (
            migration_log_id, migration_name, version, dry_run, stats_json, notes
        )
        VALUES (?, ?, ?, ?, ?, ?);
        """.strip(),
        (migration_log_id, migration_name, version, 1 if dry_run else 0, dumps_json(stats), notes),
    )

    row = conn.execute(
        """
        SELECT migration_log_id, migration_name, version, executed_at, dry_run, stats_json, notes
        FROM eav_migration_logs
        WHERE migration_log_id = ?;
        """.strip(),
        (migration_log_id,),
    ).fetchone()
    if row is None:
        raise RuntimeError("Failed to read migration log after insert")
    return _migration_log_from_db_row(row)


def list_migration_logs(
    conn: sqlite3.Connection,
    *,
    migration_name: str | None = None,
    limit: int = 100,
) -> list[MigrationLogRow]:
    where_sql = ""
    params: list[Any] = []
    if migration_name is not None and migration_name.strip():
        where_sql = "WHERE migration_name = ?"
        params.append(migration_name.strip())

    params.append(max(1, min(int(limit), 1000)))
    rows = conn.execute(
        f"""
        SELECT migration_log_id, migration_name, version, executed_at, dry_run, stats_json, notes
        FROM eav_migration_logs
        {where_sql}
        ORDER BY executed_at DESC, rowid DESC
        LIMIT ?;
        """.strip(),
        params,
    ).fetchall()
    return [_migration_log_from_db_row(r) for r in rows]
