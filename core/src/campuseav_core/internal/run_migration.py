from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from campuseav_core.config import load_core_config, resolve_configured_paths
from campuseav_core.db import resolve_db_path
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.errors import EavError
from campuseav_core.home import ensure_campuseav_layout, resolve_campuseav_home
from campuseav_core.jobs.migration import format_summary, run_migration, run_rollback
from campuseav_core.jobs.plans import build_legacy_source, get_plan, known_plans
from campuseav_core.logs import configure_logging

logger = logging.getLogger(__name__)

_PREFIXES = {
    "debug": "·",
    "info": "ℹ",
    "success": "✓",
    "warning": "⚠",
    "error": "✗",
}


def console_reporter(level: str, message: str) -> None:
    timestamp = datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")
    stream = sys.stderr if level == "error" else sys.stdout
    print(f"[{timestamp}] {_PREFIXES.get(level, 'ℹ')} {message}", file=stream)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m campuseav_core.internal.run_migration",
        description="Migrate a legacy blob column into attribute values, or roll it back.",
    )
    parser.add_argument("plan", choices=known_plans(), help="Migration plan to run")
    parser.add_argument("--home", type=Path, default=None, help="Override CAMPUSEAV_HOME")
    parser.add_argument(
        "--db", type=Path, default=None, help="Attribute store database (default: under home)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run every step, then roll back instead of committing",
    )
    parser.add_argument("--verbose", action="store_true", help="Print per-record progress")
    parser.add_argument("--rollback", action="store_true", help="Reverse a previous migration")
    parser.add_argument(
        "--source-db",
        type=Path,
        default=None,
        help="Database holding the legacy host table (default: the attribute store database)",
    )
    parser.add_argument("--source-table", default=None, help="Override the legacy host table")
    parser.add_argument("--id-column", default=None, help="Override the host table id column")
    parser.add_argument("--blob-column", default=None, help="Override the legacy blob column")
    args = parser.parse_args(argv)

    environ = None
    if args.home is not None:
        environ = {"CAMPUSEAV_HOME": str(args.home)}

    home = resolve_campuseav_home(environ)
    paths = ensure_campuseav_layout(home)
    config = load_core_config(paths)
    paths = resolve_configured_paths(paths, config)
    configure_logging(paths, config.logging)

    db_path = args.db or resolve_db_path(paths)
    apply_migrations(db_path)

    plan = get_plan(args.plan)
    try:
        source = build_legacy_source(
            plan,
            args.source_db or db_path,
            table=args.source_table,
            id_column=args.id_column,
            blob_column=args.blob_column,
        )
    except ValueError as err:
        parser.error(str(err))
    if source is not None and not args.rollback and not source.exists():
        parser.error(f"legacy column {source.name} not found in {args.source_db or db_path}")

    try:
        if args.rollback:
            result = run_rollback(
                db_path,
                plan,
                source,
                dry_run=args.dry_run,
                verbose=args.verbose,
                reporter=console_reporter,
                busy_timeout_ms=config.eav.busy_timeout_ms,
            )
        else:
            result = run_migration(
                db_path,
                plan,
                source,
                dry_run=args.dry_run,
                verbose=args.verbose,
                reporter=console_reporter,
                config=config.migration,
                busy_timeout_ms=config.eav.busy_timeout_ms,
            )
    except EavError as err:
        logger.error("%s failed: %s", plan.name, err)
        console_reporter("error", f"{plan.name} failed: {err}")
        return 1

    print(format_summary(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
