from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from campuseav_core.api.models import ApiResponse, ok
from campuseav_core.api.v1.attributes import get_service
from campuseav_core.db import connect
from campuseav_core.db.migration_logs import list_migration_logs
from campuseav_core.errors import SchemaError
from campuseav_core.jobs.migration import run_migration, run_rollback
from campuseav_core.jobs.plans import build_legacy_source, get_plan, known_plans

router = APIRouter(tags=["migrations"])


class MigrationRunRequest(BaseModel):
    dry_run: bool = False
    verbose: bool = False


class MigrationLog(BaseModel):
    migration_log_id: str
    migration_name: str
    version: str
    executed_at: str
    dry_run: bool
    stats: dict[str, Any]
    notes: str | None = None


@router.get("/migrations/plans", response_model=ApiResponse[dict[str, list[str]]])
async def migrations_plans() -> ApiResponse[dict[str, list[str]]]:
    return ok({"items": known_plans()})


@router.post("/migrations/{plan_name}/run", response_model=ApiResponse[dict[str, Any]])
async def migrations_run(
    request: Request, plan_name: str, payload: MigrationRunRequest
) -> ApiResponse[dict[str, Any]]:
    service = get_service(request)
    config = getattr(request.app.state, "campuseav_config", None)
    plan = get_plan(plan_name)
    source = build_legacy_source(plan, service.db_path)
    if source is not None and not source.exists():
        raise SchemaError(f"Legacy column {source.name} not found")

    result = run_migration(
        service.db_path,
        plan,
        source,
        dry_run=payload.dry_run,
        verbose=payload.verbose,
        catalog=service.catalog,
        store=service.store,
        config=config.migration if config is not None else None,
        busy_timeout_ms=service.config.busy_timeout_ms,
    )
    return ok(result.to_dict())


@router.post("/migrations/{plan_name}/rollback", response_model=ApiResponse[dict[str, Any]])
async def migrations_rollback(
    request: Request, plan_name: str, payload: MigrationRunRequest
) -> ApiResponse[dict[str, Any]]:
    service = get_service(request)
    plan = get_plan(plan_name)

    result = run_rollback(
        service.db_path,
        plan,
        build_legacy_source(plan, service.db_path),
        dry_run=payload.dry_run,
        verbose=payload.verbose,
        catalog=service.catalog,
        store=service.store,
        busy_timeout_ms=service.config.busy_timeout_ms,
    )
    return ok(result.to_dict())


@router.get("/migrations/logs", response_model=ApiResponse[dict[str, list[MigrationLog]]])
async def migrations_logs(
    request: Request,
    migration_name: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
) -> ApiResponse[dict[str, list[MigrationLog]]]:
    service = get_service(request)
    conn = connect(service.db_path)
    try:
        rows = list_migration_logs(conn, migration_name=migration_name, limit=limit)
    finally:
        conn.close()

    items = [
        MigrationLog(
            migration_log_id=r.migration_log_id,
            migration_name=r.migration_name,
            version=r.version,
            executed_at=r.executed_at,
            dry_run=r.dry_run,
            stats=r.stats,
            notes=r.notes,
        )
        for r in rows
    ]
    return ok({"items": items})
