from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from campuseav_core.home import CampusEavPaths

DEFAULT_DB_FILENAME = "campuseav.sqlite3"
DEFAULT_BUSY_TIMEOUT_MS = 5000


def resolve_db_path(paths: CampusEavPaths) -> Path:
    """Resolve the attribute store SQLite database path (under the `db_dir` override)."""

    return paths.db_dir / DEFAULT_DB_FILENAME


def utc_now_sqlite_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def loads_json(raw: str | None, default: Any = None) -> Any:
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


def dumps_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def like_prefix(prefix: str) -> str:
    """Build a LIKE pattern (ESCAPE '\\') matching names that start with `prefix`."""

    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def connect(db_path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> sqlite3.Connection:
    """Open a connection in autocommit mode; callers issue BEGIN/COMMIT explicitly."""

    conn = sqlite3.connect(db_path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
    return conn


@contextmanager
def transaction(
    db_path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
) -> Iterator[sqlite3.Connection]:
    """Run a block inside one write transaction.

    Commits when the block exits normally, rolls back when it raises.
    """

    conn = connect(db_path, busy_timeout_ms=busy_timeout_ms)
    try:
        conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
        conn.execute("COMMIT;")
    finally:
        conn.close()


@contextmanager
def savepoint(conn: sqlite3.Connection, name: str) -> Iterator[None]:
    """Nested unit of work: undone on its own when the block raises."""

    conn.execute(f"SAVEPOINT {name};")
    try:
        yield
    except BaseException:
        conn.execute(f"ROLLBACK TO {name};")
        conn.execute(f"RELEASE {name};")
        raise
    conn.execute(f"RELEASE {name};")
