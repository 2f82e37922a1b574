"""Batch migration of legacy blob columns into attribute values, and its rollback.

A run executes inside one SQLite transaction:

    ensure entity type -> ensure attribute definitions
    -> per legacy record (savepoint): extract -> validate/encode -> dedupe -> insert
    -> mark legacy source read-only -> write migration log
    -> commit (or roll back for a dry run)

A failing record is rolled back to its savepoint and reported; it never
aborts the run. A field that fails validation is skipped and reported
without undoing the rest of its record. Database failures and anything
outside the per-record loop roll back everything.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from campuseav_core.config import MigrationConfig
from campuseav_core.db import DEFAULT_BUSY_TIMEOUT_MS, connect, like_prefix, savepoint, transaction
from campuseav_core.db.attribute_defs import AttributeDefRow, list_attribute_defs
from campuseav_core.db.entity_types import get_entity_type_by_name
from campuseav_core.db.ids import migration_group_id
from campuseav_core.db.migration_logs import append_migration_log
from campuseav_core.db.rollout import reset_eav_flags, set_eav_enabled
from campuseav_core.eav.catalog import AttributeCatalog, AttributeSpec
from campuseav_core.eav.codec import encode
from campuseav_core.eav.service import GroupSpec
from campuseav_core.eav.store import AttributeValueStore
from campuseav_core.eav.validation import validate
from campuseav_core.errors import (
    EavError,
    InvalidValueKind,
    MigrationRecordError,
    SchemaError,
    TransactionError,
    ValidationError,
)
from campuseav_core.legacy import LegacyRecord, LegacySource

logger = logging.getLogger(__name__)

Reporter = Callable[[str, str], None]

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class FieldMapping:
    """One target attribute fed by the first non-empty legacy key among `synonyms`."""

    attribute: str
    synonyms: tuple[str, ...]
    field: str | None = None

    @property
    def name(self) -> str:
        return self.field or self.synonyms[0]

    def pick(self, item: Mapping[str, Any]) -> Any:
        for key in self.synonyms:
            value = item.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            return value
        return None


@dataclass(frozen=True)
class GroupMapping:
    group_attribute: str
    fields: tuple[FieldMapping, ...]

    def spec(self) -> GroupSpec:
        return GroupSpec(
            group_attribute=self.group_attribute,
            fields={m.name: m.attribute for m in self.fields},
        )


def default_extract(payload: Any) -> list[dict[str, Any]]:
    """Split a parsed legacy payload into per-repetition dicts."""

    if payload is None:
        return []
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        items: list[dict[str, Any]] = []
        for item in payload:
            if isinstance(item, dict):
                items.append(item)
            elif isinstance(item, str) and item.strip():
                items.append({"name": item.strip()})
            else:
                raise ValueError(f"unsupported legacy item {item!r}")
        return items
    raise ValueError(f"unsupported legacy payload of type {type(payload).__name__}")


@dataclass(frozen=True)
class MigrationPlan:
    name: str
    version: str
    entity_type: str
    table_ref: str
    description: str
    attributes: tuple[AttributeSpec, ...]
    attribute_prefixes: tuple[str, ...] = ()
    group: GroupMapping | None = None
    fields: tuple[FieldMapping, ...] = ()
    extract: Callable[[Any], list[dict[str, Any]]] = default_extract
    legacy_table: str | None = None
    legacy_id_column: str = "id"
    legacy_blob_column: str | None = None
    legacy_note: str | None = None

    @property
    def reads_legacy(self) -> bool:
        return self.group is not None or bool(self.fields)

    def rollback_patterns(self) -> list[str]:
        if self.attribute_prefixes:
            return [like_prefix(p) for p in self.attribute_prefixes]
        return [like_prefix(spec.name)[:-1] for spec in self.attributes]

    def deprecation_note(self, executed_at: datetime, expires_at: datetime, sprints: int) -> str:
        return (
            f"[DEPRECATED - READ-ONLY FALLBACK] Migrated to EAV by {self.name} "
            f"v{self.version} on {executed_at.date().isoformat()}. "
            f"Will be removed after {sprints} sprints ({expires_at.date().isoformat()}). "
            "Use attribute values for new data."
        )


@dataclass
class MigrationResult:
    plan: str
    version: str
    dry_run: bool
    entities_processed: int = 0
    groups_extracted: int = 0
    values_created: int = 0
    values_skipped: int = 0
    definitions_ensured: int = 0
    legacy_marked: bool = False
    errors: list[MigrationRecordError] = field(default_factory=list)
    migration_log_id: str | None = None

    def stats(self) -> dict[str, Any]:
        return {
            "entities_processed": self.entities_processed,
            "groups_extracted": self.groups_extracted,
            "values_created": self.values_created,
            "values_skipped": self.values_skipped,
            "definitions_ensured": self.definitions_ensured,
            "errors": len(self.errors),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "version": self.version,
            "dry_run": self.dry_run,
            "legacy_marked": self.legacy_marked,
            "migration_log_id": self.migration_log_id,
            "stats": self.stats(),
            "errors": [{"entity_id": e.entity_id, "reason": e.reason} for e in self.errors],
        }


@dataclass
class RollbackResult:
    plan: str
    version: str
    dry_run: bool
    values_deleted: int = 0
    definitions_deleted: int = 0
    flags_reset: int = 0
    legacy_restored: bool = False
    migration_log_id: str | None = None

    def stats(self) -> dict[str, Any]:
        return {
            "values_deleted": self.values_deleted,
            "definitions_deleted": self.definitions_deleted,
            "flags_reset": self.flags_reset,
            "legacy_restored": self.legacy_restored,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan,
            "version": self.version,
            "dry_run": self.dry_run,
            "migration_log_id": self.migration_log_id,
            "stats": self.stats(),
        }


class _Progress:
    def __init__(self, reporter: Reporter | None, verbose: bool) -> None:
        self.reporter = reporter
        self.verbose = verbose

    def __call__(self, level: str, message: str) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        if self.reporter is not None and (level != "debug" or self.verbose):
            self.reporter(level, message)


def _append_dry_run_log(
    db_path: Path,
    *,
    migration_name: str,
    version: str,
    stats: dict[str, Any],
    busy_timeout_ms: int,
) -> str:
    # The dry-run transaction has already been rolled back; the log row is
    # the only thing a dry run persists.
    with transaction(db_path, busy_timeout_ms=busy_timeout_ms) as conn:
        return append_migration_log(
            conn,
            migration_name=migration_name,
            version=version,
            dry_run=True,
            stats=stats,
            notes="dry run: all changes rolled back",
        ).migration_log_id


def _finish(conn: sqlite3.Connection, *, dry_run: bool) -> None:
    try:
        conn.execute("ROLLBACK;" if dry_run else "COMMIT;")
    except sqlite3.Error as err:
        raise TransactionError(f"Failed to {'roll back' if dry_run else 'commit'}: {err}") from err


def _abort(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK;")


def _ensure_schema(
    conn: sqlite3.Connection,
    plan: MigrationPlan,
    catalog: AttributeCatalog,
    progress: _Progress,
) -> dict[str, AttributeDefRow]:
    entity_type_id = catalog.ensure_entity_type(
        conn, plan.entity_type, plan.table_ref, plan.description
    )
    progress("debug", f"Entity type {plan.entity_type}: {entity_type_id}")

    for spec in plan.attributes:
        attribute_def_id = catalog.ensure_attribute(conn, entity_type_id, spec)
        progress("debug", f"Attribute {spec.name}: {attribute_def_id}")

    definitions = {d.name: d for d in catalog.list_active(conn, entity_type_id)}
    missing = [spec.name for spec in plan.attributes if spec.name not in definitions]
    if missing:
        raise SchemaError(f"Attribute definitions unavailable after setup: {', '.join(missing)}")
    return definitions


def _write_value(
    conn: sqlite3.Connection,
    store: AttributeValueStore,
    result: MigrationResult,
    *,
    entity_type: str,
    entity_id: str,
    definition: AttributeDefRow,
    raw_value: Any,
    occurrence: int,
) -> None:
    try:
        value = validate(raw_value, definition)
        if value is None:
            return
        slots = encode(value, definition.value_kind)
    except (ValidationError, InvalidValueKind) as err:
        reason = str(err) if isinstance(err, ValidationError) else f"{definition.name}: {err}"
        result.errors.append(MigrationRecordError(entity_id, reason))
        logger.warning("%s: skipped %s: %s", entity_id, definition.name, err)
        return

    if store.dedupe_check(
        conn, definition.attribute_def_id, entity_id, entity_type, slots, occurrence=occurrence
    ):
        result.values_skipped += 1
        return

    store.insert(conn, entity_type, entity_id, definition, slots, occurrence)
    result.values_created += 1


def _migrate_record(
    conn: sqlite3.Connection,
    plan: MigrationPlan,
    record: LegacyRecord,
    definitions: dict[str, AttributeDefRow],
    store: AttributeValueStore,
    result: MigrationResult,
    progress: _Progress,
) -> None:
    items = plan.extract(record.payload)

    if plan.group is not None:
        group = plan.group
        for index, item in enumerate(items):
            picked = {m.attribute: m.pick(item) for m in group.fields}
            picked = {attr: value for attr, value in picked.items() if value is not None}
            if not picked:
                progress("debug", f"{record.entity_id}: item {index} has no mapped fields")
                continue

            result.groups_extracted += 1
            group_id = migration_group_id(plan.name, record.entity_id, index)
            _write_value(
                conn,
                store,
                result,
                entity_type=plan.entity_type,
                entity_id=record.entity_id,
                definition=definitions[group.group_attribute],
                raw_value=group_id,
                occurrence=index,
            )
            for attribute, raw_value in picked.items():
                _write_value(
                    conn,
                    store,
                    result,
                    entity_type=plan.entity_type,
                    entity_id=record.entity_id,
                    definition=definitions[attribute],
                    raw_value=raw_value,
                    occurrence=index,
                )
        progress("debug", f"{record.entity_id}: {len(items)} legacy items")

    # Flat plans map one legacy document onto single-valued attributes.
    for item in items[:1]:
        for mapping in plan.fields:
            raw_value = mapping.pick(item)
            if raw_value is None:
                continue
            _write_value(
                conn,
                store,
                result,
                entity_type=plan.entity_type,
                entity_id=record.entity_id,
                definition=definitions[mapping.attribute],
                raw_value=raw_value,
                occurrence=0,
            )

    set_eav_enabled(conn, entity_type=plan.entity_type, entity_id=record.entity_id, enabled=True)


def run_migration(
    db_path: Path,
    plan: MigrationPlan,
    source: LegacySource | None = None,
    *,
    dry_run: bool = False,
    verbose: bool = False,
    reporter: Reporter | None = None,
    catalog: AttributeCatalog | None = None,
    store: AttributeValueStore | None = None,
    config: MigrationConfig | None = None,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> MigrationResult:
    config = config or MigrationConfig()
    catalog = catalog or AttributeCatalog(cache_ttl_s=0)
    store = store or AttributeValueStore()
    progress = _Progress(reporter, verbose)
    result = MigrationResult(plan=plan.name, version=plan.version, dry_run=dry_run)

    if plan.reads_legacy and source is None:
        raise SchemaError(f"Plan '{plan.name}' needs a legacy source")

    progress("info", f"Starting {plan.name} v{plan.version}{' (dry run)' if dry_run else ''}")
    executed_at = datetime.now(UTC)

    conn = connect(db_path, busy_timeout_ms=busy_timeout_ms)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE;")
            definitions = _ensure_schema(conn, plan, catalog, progress)
            result.definitions_ensured = len(plan.attributes)
            progress("success", f"{len(plan.attributes)} attribute definitions ready")

            if plan.reads_legacy and source is not None:
                for record in source.iter_records():
                    result.entities_processed += 1
                    try:
                        with savepoint(conn, "legacy_record"):
                            _migrate_record(
                                conn, plan, record, definitions, store, result, progress
                            )
                    except sqlite3.DatabaseError:
                        # Storage failures are not record failures; abort the run.
                        raise
                    except Exception as err:
                        error = MigrationRecordError(record.entity_id, str(err))
                        result.errors.append(error)
                        progress("error", f"Record {record.entity_id} failed: {err}")

                expires_at = executed_at + timedelta(
                    days=config.fallback_expiry_sprints * config.sprint_length_days
                )
                note = plan.deprecation_note(
                    executed_at, expires_at, config.fallback_expiry_sprints
                )
                result.legacy_marked = source.mark_read_only(
                    conn, note, expires_at.date().isoformat()
                )
                progress("info", f"Legacy source {source.name} kept as read-only fallback")

            if not dry_run:
                result.migration_log_id = append_migration_log(
                    conn,
                    migration_name=plan.name,
                    version=plan.version,
                    dry_run=False,
                    stats=result.stats(),
                ).migration_log_id
        except EavError:
            _abort(conn)
            raise
        except Exception as err:
            _abort(conn)
            raise TransactionError(f"{plan.name} aborted: {err}") from err

        _finish(conn, dry_run=dry_run)
    finally:
        conn.close()
        catalog.invalidate()

    if dry_run:
        result.migration_log_id = _append_dry_run_log(
            db_path,
            migration_name=plan.name,
            version=plan.version,
            stats=result.stats(),
            busy_timeout_ms=busy_timeout_ms,
        )
        progress("warning", "Dry run: no changes were committed")
    else:
        progress("success", f"{plan.name} committed")

    return result


def run_rollback(
    db_path: Path,
    plan: MigrationPlan,
    source: LegacySource | None = None,
    *,
    dry_run: bool = False,
    verbose: bool = False,
    reporter: Reporter | None = None,
    catalog: AttributeCatalog | None = None,
    store: AttributeValueStore | None = None,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> RollbackResult:
    """Undo a migration: soft-delete its values and definitions, restore the legacy state.

    Running it again finds nothing active and changes nothing.
    """

    catalog = catalog or AttributeCatalog(cache_ttl_s=0)
    store = store or AttributeValueStore()
    progress = _Progress(reporter, verbose)
    result = RollbackResult(plan=plan.name, version=plan.version, dry_run=dry_run)
    log_name = f"{plan.name}:rollback"

    progress("warning", f"Rolling back {plan.name}{' (dry run)' if dry_run else ''}")

    conn = connect(db_path, busy_timeout_ms=busy_timeout_ms)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE;")
            entity_type_row = get_entity_type_by_name(conn, name=plan.entity_type)
            if entity_type_row is not None:
                for pattern in plan.rollback_patterns():
                    definitions = list_attribute_defs(
                        conn,
                        entity_type_id=entity_type_row.entity_type_id,
                        name_pattern=pattern,
                        active_only=False,
                    )
                    ids = [d.attribute_def_id for d in definitions]
                    result.values_deleted += store.soft_delete_for_definitions(conn, ids)
                    result.definitions_deleted += catalog.soft_delete(
                        conn, entity_type_row.entity_type_id, pattern
                    )
                    progress("debug", f"{pattern}: {len(ids)} definitions")

            result.flags_reset = reset_eav_flags(conn, entity_type=plan.entity_type)
            if source is not None:
                result.legacy_restored = source.restore(conn, plan.legacy_note)

            if not dry_run:
                result.migration_log_id = append_migration_log(
                    conn,
                    migration_name=log_name,
                    version=plan.version,
                    dry_run=False,
                    stats=result.stats(),
                ).migration_log_id
        except EavError:
            _abort(conn)
            raise
        except Exception as err:
            _abort(conn)
            raise TransactionError(f"{log_name} aborted: {err}") from err

        _finish(conn, dry_run=dry_run)
    finally:
        conn.close()
        catalog.invalidate()

    if dry_run:
        result.migration_log_id = _append_dry_run_log(
            db_path,
            migration_name=log_name,
            version=plan.version,
            stats=result.stats(),
            busy_timeout_ms=busy_timeout_ms,
        )

    progress(
        "success",
        f"Rolled back {result.values_deleted} values and {result.definitions_deleted} definitions",
    )
    return result


def format_summary(result: MigrationResult | RollbackResult) -> str:
    banner = "=" * 60
    title = "Rollback Summary" if isinstance(result, RollbackResult) else "Migration Summary"
    lines = [
        "",
        banner,
        f" {title}",
        banner,
        f" Plan: {result.plan}",
        f" Version: {result.version}",
        f" Mode: {'DRY RUN (no changes committed)' if result.dry_run else 'LIVE'}",
    ]
    for key, value in result.stats().items():
        lines.append(f" {key.replace('_', ' ').capitalize()}: {value}")

    if isinstance(result, MigrationResult) and result.errors:
        lines.append("")
        lines.append(" Errors:")
        for error in result.errors:
            lines.append(f"   - {error.entity_id}: {error.reason}")

    lines.append(banner)
    return "\n".join(lines)
