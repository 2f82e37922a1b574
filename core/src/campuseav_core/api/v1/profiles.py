from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from campuseav_core.api.models import ApiResponse, ok
from campuseav_core.api.v1.attributes import get_service
from campuseav_core.eav.codec import to_json_compatible
from campuseav_core.eav.service import GroupSpec
from campuseav_core.jobs.plans import get_plan

router = APIRouter(tags=["profiles"])


class FieldResultModel(BaseModel):
    field: str
    ok: bool
    action: str
    value: Any | None = None
    occurrence: int | None = None
    error: dict[str, Any] | None = None


class FieldResultList(BaseModel):
    items: list[FieldResultModel]


@router.get(
    "/entities/{entity_type}/{entity_id}/profile",
    response_model=ApiResponse[dict[str, Any]],
)
async def profile_get(
    request: Request,
    entity_type: str,
    entity_id: str,
    category: str | None = Query(default=None, description="Optional category filter"),
) -> ApiResponse[dict[str, Any]]:
    profile = get_service(request).get_profile(entity_type, entity_id, category)
    return ok(to_json_compatible(profile))


class BulkUpdateRequest(BaseModel):
    values: dict[str, Any]
    changed_by: str | None = None
    change_reason: str | None = None


@router.patch(
    "/entities/{entity_type}/{entity_id}/profile",
    response_model=ApiResponse[FieldResultList],
)
async def profile_bulk_update(
    request: Request,
    entity_type: str,
    entity_id: str,
    payload: BulkUpdateRequest,
) -> ApiResponse[FieldResultList]:
    results = get_service(request).bulk_update(
        entity_type,
        entity_id,
        payload.values,
        changed_by=payload.changed_by,
        change_reason=payload.change_reason,
    )
    return ok(FieldResultList(items=[FieldResultModel(**asdict(r)) for r in results]))


class AttributeSetRequest(BaseModel):
    value: Any | None = None
    occurrence: int | None = Field(default=None, ge=0)
    changed_by: str | None = None
    change_reason: str | None = None


@router.put(
    "/entities/{entity_type}/{entity_id}/attributes/{name}",
    response_model=ApiResponse[FieldResultModel],
)
async def attribute_set(
    request: Request,
    entity_type: str,
    entity_id: str,
    name: str,
    payload: AttributeSetRequest,
) -> ApiResponse[FieldResultModel]:
    result = get_service(request).set_attribute(
        entity_type,
        entity_id,
        name,
        payload.value,
        occurrence=payload.occurrence,
        changed_by=payload.changed_by,
        change_reason=payload.change_reason,
    )
    return ok(FieldResultModel(**asdict(result)))


@router.delete(
    "/entities/{entity_type}/{entity_id}/attributes/{name}",
    response_model=ApiResponse[dict[str, int]],
)
async def attribute_delete(
    request: Request,
    entity_type: str,
    entity_id: str,
    name: str,
    occurrence: int | None = Query(default=None, ge=0),
) -> ApiResponse[dict[str, int]]:
    deleted = get_service(request).delete_attribute(
        entity_type, entity_id, name, occurrence=occurrence
    )
    return ok({"deleted": deleted})


class InitializeRequest(BaseModel):
    category: str | None = None


@router.post(
    "/entities/{entity_type}/{entity_id}/initialize",
    response_model=ApiResponse[FieldResultList],
)
async def profile_initialize(
    request: Request,
    entity_type: str,
    entity_id: str,
    payload: InitializeRequest,
) -> ApiResponse[FieldResultList]:
    results = get_service(request).initialize_defaults(entity_type, entity_id, payload.category)
    return ok(FieldResultList(items=[FieldResultModel(**asdict(r)) for r in results]))


class EavEnabled(BaseModel):
    enabled: bool


@router.get(
    "/entities/{entity_type}/{entity_id}/eav-enabled",
    response_model=ApiResponse[EavEnabled],
)
async def eav_enabled_get(
    request: Request, entity_type: str, entity_id: str
) -> ApiResponse[EavEnabled]:
    return ok(EavEnabled(enabled=get_service(request).is_eav_enabled(entity_type, entity_id)))


@router.put(
    "/entities/{entity_type}/{entity_id}/eav-enabled",
    response_model=ApiResponse[EavEnabled],
)
async def eav_enabled_set(
    request: Request, entity_type: str, entity_id: str, payload: EavEnabled
) -> ApiResponse[EavEnabled]:
    service = get_service(request)
    service.set_eav_enabled(entity_type, entity_id, payload.enabled)
    return ok(EavEnabled(enabled=service.is_eav_enabled(entity_type, entity_id)))


class AuditEntry(BaseModel):
    attribute_name: str
    action: str
    old_value: Any | None = None
    new_value: Any | None = None
    changed_by: str | None = None
    change_reason: str | None = None
    created_at: str


@router.get(
    "/entities/{entity_type}/{entity_id}/audit",
    response_model=ApiResponse[dict[str, list[AuditEntry]]],
)
async def audit_list(
    request: Request,
    entity_type: str,
    entity_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
) -> ApiResponse[dict[str, list[AuditEntry]]]:
    rows = get_service(request).audit_trail(entity_type, entity_id, limit)
    items = [
        AuditEntry(
            attribute_name=r.attribute_name,
            action=r.action,
            old_value=r.old_value,
            new_value=r.new_value,
            changed_by=r.changed_by,
            change_reason=r.change_reason,
            created_at=r.created_at,
        )
        for r in rows
    ]
    return ok({"items": items})


def _group_spec(plan_name: str) -> GroupSpec:
    plan = get_plan(plan_name)
    if plan.group is None:
        raise HTTPException(status_code=404, detail="Plan has no repeating group")
    return plan.group.spec()


class GroupFields(BaseModel):
    fields: dict[str, Any]
    changed_by: str | None = None


@router.get(
    "/entities/{entity_type}/{entity_id}/groups/{plan_name}",
    response_model=ApiResponse[dict[str, list[dict[str, Any]]]],
)
async def groups_list(
    request: Request, entity_type: str, entity_id: str, plan_name: str
) -> ApiResponse[dict[str, list[dict[str, Any]]]]:
    records = get_service(request).list_groups(entity_type, entity_id, _group_spec(plan_name))
    return ok({"items": to_json_compatible(records)})


@router.post(
    "/entities/{entity_type}/{entity_id}/groups/{plan_name}",
    response_model=ApiResponse[dict[str, Any]],
)
async def groups_add(
    request: Request, entity_type: str, entity_id: str, plan_name: str, payload: GroupFields
) -> ApiResponse[dict[str, Any]]:
    record = get_service(request).add_group(
        entity_type,
        entity_id,
        _group_spec(plan_name),
        payload.fields,
        changed_by=payload.changed_by,
    )
    return ok(to_json_compatible(record))


@router.patch(
    "/entities/{entity_type}/{entity_id}/groups/{plan_name}/{group_id}",
    response_model=ApiResponse[dict[str, Any]],
)
async def groups_update(
    request: Request,
    entity_type: str,
    entity_id: str,
    plan_name: str,
    group_id: str,
    payload: GroupFields,
) -> ApiResponse[dict[str, Any]]:
    record = get_service(request).update_group(
        entity_type,
        entity_id,
        _group_spec(plan_name),
        group_id,
        payload.fields,
        changed_by=payload.changed_by,
    )
    return ok(to_json_compatible(record))


@router.delete(
    "/entities/{entity_type}/{entity_id}/groups/{plan_name}/{group_id}",
    response_model=ApiResponse[dict[str, int]],
)
async def groups_delete(
    request: Request, entity_type: str, entity_id: str, plan_name: str, group_id: str
) -> ApiResponse[dict[str, int]]:
    deleted = get_service(request).delete_group(
        entity_type, entity_id, _group_spec(plan_name), group_id
    )
    return ok({"deleted": deleted})
