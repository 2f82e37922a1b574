from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from campuseav_core.db import utc_now_sqlite_iso


@dataclass(frozen=True)
class LegacySourceStateRow:
    source_name: str
    read_only: bool
    note: str | None
    expires_at: str | None
    updated_at: str


def get_eav_enabled(conn: sqlite3.Connection, *, entity_type: str, entity_id: str) -> bool | None:
    """Explicit rollout flag for one entity instance, or None when never set."""

    row = conn.execute(
        """
        SELECT enabled FROM eav_rollout_flags
        WHERE entity_type = ? AND entity_id = ?;
        """.strip(),
        (entity_type, entity_id),
    ).fetchone()
    return bool(int(row["enabled"])) if row is not None else None


def set_eav_enabled(
    conn: sqlite3.Connection, *, entity_type: str, entity_id: str, enabled: bool
) -> None:
    conn.execute(
        """
        INSERT INTO eav_rollout_flags (entity_type, entity_id, enabled, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(entity_type, entity_id)
        DO UPDATE SET enabled = excluded.enabled, updated_at = excluded.updated_at;
        """.strip(),
        (entity_type, entity_id, 1 if enabled else 0, utc_now_sqlite_iso()),
    )


def reset_eav_flags(conn: sqlite3.Connection, *, entity_type: str) -> int:
    """Turn off every enabled flag for an entity type; returns the number changed."""

    cur = conn.execute(
        """
        UPDATE eav_rollout_flags
        SET enabled = 0, updated_at = ?
        WHERE entity_type = ? AND enabled = 1;
        """.strip(),
        (utc_now_sqlite_iso(), entity_type),
    )
    return cur.rowcount


def get_legacy_state(conn: sqlite3.Connection, *, source_name: str) -> LegacySourceStateRow | None:
    row = conn.execute(
        """
        SELECT source_name, read_only, note, expires_at, updated_at
        FROM legacy_source_states
        WHERE source_name = ?;
        """.strip(),
        (source_name,),
    ).fetchone()
    if row is None:
        return None
    return LegacySourceStateRow(
        source_name=row["source_name"],
        read_only=bool(int(row["read_only"])),
        note=row["note"],
        expires_at=row["expires_at"],
        updated_at=row["updated_at"],
    )


def set_legacy_state(
    conn: sqlite3.Connection,
    *,
    source_name: str,
    read_only: bool,
    note: str | None,
    expires_at: str | None = None,
) -> bool:
    """Record the documented state of a legacy column.

    Returns False when the stored state already matched.
    """

    current = get_legacy_state(conn, source_name=source_name)
    if (
        current is not None
        and current.read_only == read_only
        and current.note == note
        and current.expires_at == expires_at
    ):
        return False

    conn.execute(
        """
        INSERT INTO legacy_source_states (source_name, read_only, note, expires_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(source_name)
        DO UPDATE SET read_only = excluded.read_only, note = excluded.note,
                      expires_at = excluded.expires_at, updated_at = excluded.updated_at;
        """.strip(),
        (source_name, 1 if read_only else 0, note, expires_at, utc_now_sqlite_iso()),
    )
    return True
