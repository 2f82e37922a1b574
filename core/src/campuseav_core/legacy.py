"""Read access to legacy denormalized blob columns on host entity tables.

Host tables are owned by other services. The engine only reads them, and
records their fallback state (read-only, expiry note) in its own
`legacy_source_states` table instead of rewriting the host schema.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from campuseav_core.db.rollout import LegacySourceStateRow, get_legacy_state, set_legacy_state

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class LegacyRecord:
    entity_id: str
    payload: Any


class LegacySource(Protocol):
    name: str

    def iter_records(self) -> Iterator[LegacyRecord]: ...

    def read_profile(self, entity_id: str) -> dict[str, Any]: ...

    def mark_read_only(
        self, conn: sqlite3.Connection, note: str, expires_at: str | None = None
    ) -> bool: ...

    def restore(self, conn: sqlite3.Connection, note: str | None) -> bool: ...


def parse_blob(raw: str | None) -> Any:
    """Decode a legacy blob: JSON when it parses, otherwise a comma-separated list."""

    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return [part.strip() for part in text.split(",") if part.strip()]


def _check_identifier(value: str, label: str) -> str:
    if not _IDENTIFIER_RE.match(value):
        raise ValueError(f"{label} must be a plain SQL identifier, got {value!r}")
    return value


class SqliteBlobSource:
    """A JSON (or comma-separated) text column on a host SQLite table."""

    def __init__(
        self,
        db_path: Path,
        *,
        table: str,
        id_column: str,
        blob_column: str,
        name: str | None = None,
    ) -> None:
        self.db_path = db_path
        self.table = _check_identifier(table, "table")
        self.id_column = _check_identifier(id_column, "id_column")
        self.blob_column = _check_identifier(blob_column, "blob_column")
        self.name = name or f"{table}.{blob_column}"

    def exists(self) -> bool:
        """Whether the host table and both columns are present."""

        conn = sqlite3.connect(self.db_path)
        try:
            columns = {
                row[1] for row in conn.execute(f"PRAGMA table_info({self.table});").fetchall()
            }
        finally:
            conn.close()
        return {self.id_column, self.blob_column} <= columns

    def _fetch(self, where: str = "", params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        # Rows are fetched eagerly and the connection closed, so a long-running
        # writer on the same database file is never blocked by this reader.
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            return conn.execute(
                f"""
                SELECT {self.id_column} AS entity_id, {self.blob_column} AS blob
                FROM {self.table}
                {where}
                ORDER BY {self.id_column} ASC;
                """.strip(),
                params,
            ).fetchall()
        finally:
            conn.close()

    def iter_records(self) -> Iterator[LegacyRecord]:
        for row in self._fetch(f"WHERE {self.blob_column} IS NOT NULL"):
            yield LegacyRecord(entity_id=str(row["entity_id"]), payload=parse_blob(row["blob"]))

    def read_profile(self, entity_id: str) -> dict[str, Any]:
        rows = self._fetch(f"WHERE {self.id_column} = ?", (entity_id,))
        if not rows:
            return {}
        payload = parse_blob(rows[0]["blob"])
        if payload is None:
            return {}
        if isinstance(payload, dict):
            return payload
        return {self.blob_column: payload}

    def state(self, conn: sqlite3.Connection) -> LegacySourceStateRow | None:
        return get_legacy_state(conn, source_name=self.name)

    def mark_read_only(
        self, conn: sqlite3.Connection, note: str, expires_at: str | None = None
    ) -> bool:
        changed = set_legacy_state(
            conn, source_name=self.name, read_only=True, note=note, expires_at=expires_at
        )
        if changed:
            logger.info("Legacy source %s marked read-only", self.name)
        return changed

    def restore(self, conn: sqlite3.Connection, note: str | None) -> bool:
        changed = set_legacy_state(conn, source_name=self.name, read_only=False, note=note)
        if changed:
            logger.info("Legacy source %s restored", self.name)
        return changed
