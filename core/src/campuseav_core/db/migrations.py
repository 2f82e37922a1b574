from __future__ import annotations

MIGRATIONS: list[tuple[str, str]] = [
    (
        "0001_eav_core",
        """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS entity_types (
    entity_type_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    table_name TEXT NOT NULL,
    description TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    deleted_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_entity_types_name_active
    ON entity_types(name) WHERE deleted_at IS NULL;

CREATE TABLE IF NOT EXISTS attribute_definitions (
    attribute_def_id TEXT PRIMARY KEY,
    entity_type_id TEXT NOT NULL,
    name TEXT NOT NULL,
    display_name TEXT NOT NULL,
    description TEXT,
    value_kind TEXT NOT NULL CHECK (
        value_kind IN ('string', 'integer', 'decimal', 'boolean', 'date', 'datetime', 'text', 'json')
    ),
    category TEXT,
    is_required INTEGER NOT NULL DEFAULT 0,
    is_multi_valued INTEGER NOT NULL DEFAULT 0,
    default_value TEXT,
    validation_rules_json TEXT NOT NULL DEFAULT '{}',
    sort_order INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    deleted_at TEXT,
    FOREIGN KEY(entity_type_id) REFERENCES entity_types(entity_type_id) ON DELETE RESTRICT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_attribute_definitions_name_active
    ON attribute_definitions(entity_type_id, name) WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_attribute_definitions_deleted_at
    ON attribute_definitions(deleted_at);

CREATE TABLE IF NOT EXISTS attribute_values (
    attribute_value_id TEXT PRIMARY KEY,
    attribute_def_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    value_kind TEXT NOT NULL,
    value_string TEXT,
    value_integer INTEGER,
    value_decimal TEXT,
    value_boolean INTEGER,
    value_date TEXT,
    value_datetime TEXT,
    value_text TEXT,
    value_json TEXT,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    deleted_at TEXT,
    CHECK (
        (value_string IS NOT NULL) + (value_integer IS NOT NULL) + (value_decimal IS NOT NULL)
        + (value_boolean IS NOT NULL) + (value_date IS NOT NULL) + (value_datetime IS NOT NULL)
        + (value_text IS NOT NULL) + (value_json IS NOT NULL) = 1
    ),
    FOREIGN KEY(attribute_def_id) REFERENCES attribute_definitions(attribute_def_id)
        ON DELETE RESTRICT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_attribute_values_occurrence_active
    ON attribute_values(attribute_def_id, entity_type, entity_id, sort_order)
    WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_attribute_values_entity
    ON attribute_values(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_attribute_values_deleted_at ON attribute_values(deleted_at);

CREATE TABLE IF NOT EXISTS eav_migration_logs (
    migration_log_id TEXT PRIMARY KEY,
    migration_name TEXT NOT NULL,
    version TEXT NOT NULL,
    executed_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    dry_run INTEGER NOT NULL DEFAULT 0,
    stats_json TEXT NOT NULL DEFAULT '{}',
    notes TEXT
);

CREATE INDEX IF NOT EXISTS idx_eav_migration_logs_name ON eav_migration_logs(migration_name);
""".strip(),
    ),
    (
        "0002_rollout_and_audit",
        """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS eav_rollout_flags (
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    enabled INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    PRIMARY KEY (entity_type, entity_id)
);

CREATE TABLE IF NOT EXISTS legacy_source_states (
    source_name TEXT PRIMARY KEY,
    read_only INTEGER NOT NULL DEFAULT 0,
    note TEXT,
    expires_at TEXT,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS eav_audit_logs (
    audit_log_id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    attribute_name TEXT NOT NULL,
    action TEXT NOT NULL,
    old_value_json TEXT,
    new_value_json TEXT,
    changed_by TEXT,
    change_reason TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_eav_audit_logs_entity ON eav_audit_logs(entity_type, entity_id);
""".strip(),
    ),
]
