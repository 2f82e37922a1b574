from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from campuseav_core.config import load_core_config, resolve_configured_paths
from campuseav_core.db import resolve_db_path
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.home import ensure_campuseav_layout


def _table_names(db_path: Path) -> set[str]:
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name ASC;"
        ).fetchall()
    return {r[0] for r in rows}


def _table_columns(db_path: Path, table: str) -> set[str]:
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return {r[1] for r in rows}


def test_migrations_blank_to_latest(tmp_path: Path) -> None:
    paths = ensure_campuseav_layout(tmp_path)
    config = load_core_config(paths)
    paths = resolve_configured_paths(paths, config)

    db_path = resolve_db_path(paths)

    first = apply_migrations(db_path)
    second = apply_migrations(db_path)  # idempotent

    assert first == ["0001_eav_core", "0002_rollout_and_audit"]
    assert second == []

    tables = _table_names(db_path)
    assert {
        "schema_migrations",
        "entity_types",
        "attribute_definitions",
        "attribute_values",
        "eav_migration_logs",
        "eav_rollout_flags",
        "legacy_source_states",
        "eav_audit_logs",
    } <= tables

    value_cols = _table_columns(db_path, "attribute_values")
    assert {
        "value_string",
        "value_integer",
        "value_decimal",
        "value_boolean",
        "value_date",
        "value_datetime",
        "value_text",
        "value_json",
        "sort_order",
        "deleted_at",
    } <= value_cols


def test_value_rows_need_exactly_one_slot(tmp_path: Path) -> None:
    db_path = tmp_path / "eav.sqlite3"
    apply_migrations(db_path)

    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "INSERT INTO entity_types (entity_type_id, name, table_name) VALUES ('t', 'T', 't');"
        )
        conn.execute(
            "INSERT INTO attribute_definitions (attribute_def_id, entity_type_id, name,"
            " display_name, value_kind) VALUES ('d', 't', 'n', 'N', 'string');"
        )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO attribute_values (attribute_value_id, attribute_def_id, entity_type,"
                " entity_id, value_kind, value_string, value_integer)"
                " VALUES ('v', 'd', 'T', '1', 'string', 'x', 5);"
            )
