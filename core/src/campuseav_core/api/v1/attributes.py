from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from campuseav_core.api.models import ApiResponse, ok
from campuseav_core.db import like_prefix
from campuseav_core.db.attribute_defs import AttributeDefRow
from campuseav_core.eav.catalog import AttributeSpec
from campuseav_core.eav.codec import ValueKind
from campuseav_core.eav.service import EavService

router = APIRouter(tags=["attributes"])


def get_service(request: Request) -> EavService:
    service = getattr(request.app.state, "eav_service", None)
    if service is None:
        raise HTTPException(status_code=500, detail="Attribute service not initialized")
    return service


class AttributeDefinition(BaseModel):
    attribute_def_id: str
    name: str
    display_name: str
    description: str | None = None
    value_kind: str
    category: str | None = None
    required: bool
    multi_valued: bool
    default_value: str | None = None
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    sort_order: int
    created_at: str
    updated_at: str


def _to_definition(row: AttributeDefRow) -> AttributeDefinition:
    return AttributeDefinition(
        attribute_def_id=row.attribute_def_id,
        name=row.name,
        display_name=row.display_name,
        description=row.description,
        value_kind=row.value_kind,
        category=row.category,
        required=row.required,
        multi_valued=row.multi_valued,
        default_value=row.default_value,
        validation_rules=row.validation_rules,
        sort_order=row.sort_order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class EntityType(BaseModel):
    entity_type_id: str
    name: str
    table_name: str
    description: str | None = None
    created_at: str


@router.get("/entity-types", response_model=ApiResponse[dict[str, list[EntityType]]])
async def entity_types_list(request: Request) -> ApiResponse[dict[str, list[EntityType]]]:
    rows = get_service(request).list_entity_types()
    items = [
        EntityType(
            entity_type_id=r.entity_type_id,
            name=r.name,
            table_name=r.table_name,
            description=r.description,
            created_at=r.created_at,
        )
        for r in rows
    ]
    return ok({"items": items})


class AttributeListResponse(BaseModel):
    items: list[AttributeDefinition]


@router.get(
    "/entity-types/{entity_type}/attributes",
    response_model=ApiResponse[AttributeListResponse],
)
async def attributes_list(
    request: Request,
    entity_type: str,
    category: str | None = Query(default=None, description="Optional category filter"),
) -> ApiResponse[AttributeListResponse]:
    rows = get_service(request).list_attributes(entity_type, category)
    return ok(AttributeListResponse(items=[_to_definition(r) for r in rows]))


class AttributeCreateRequest(BaseModel):
    name: str = Field(min_length=1, pattern=r"^[a-z][a-z0-9_]*$")
    value_kind: ValueKind
    display_name: str | None = None
    description: str | None = None
    category: str | None = None
    required: bool = False
    multi_valued: bool = False
    default_value: Any | None = None
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    sort_order: int = 0
    table_ref: str | None = Field(
        default=None, description="Host table for a new entity type (defaults to its name)"
    )


@router.post(
    "/entity-types/{entity_type}/attributes",
    response_model=ApiResponse[AttributeDefinition],
)
async def attributes_create(
    request: Request,
    entity_type: str,
    payload: AttributeCreateRequest,
) -> ApiResponse[AttributeDefinition]:
    spec = AttributeSpec(
        name=payload.name,
        value_kind=payload.value_kind,
        display_name=payload.display_name,
        description=payload.description,
        required=payload.required,
        multi_valued=payload.multi_valued,
        default_value=payload.default_value,
        validation_rules=payload.validation_rules,
        sort_order=payload.sort_order,
        category=payload.category,
    )
    row = get_service(request).define_attribute(entity_type, spec, table_ref=payload.table_ref)
    return ok(_to_definition(row))


class AttributePatchRequest(BaseModel):
    display_name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    required: bool | None = None
    default_value: Any | None = None
    validation_rules: dict[str, Any] | None = None
    sort_order: int | None = None


@router.patch(
    "/entity-types/{entity_type}/attributes/{name}",
    response_model=ApiResponse[AttributeDefinition],
)
async def attributes_patch(
    request: Request,
    entity_type: str,
    name: str,
    payload: AttributePatchRequest,
) -> ApiResponse[AttributeDefinition]:
    row = get_service(request).update_attribute(
        entity_type,
        name,
        display_name=payload.display_name,
        description=payload.description,
        required=payload.required,
        default_value=payload.default_value,
        validation_rules=payload.validation_rules,
        sort_order=payload.sort_order,
    )
    return ok(_to_definition(row))


@router.delete(
    "/entity-types/{entity_type}/attributes/{name}",
    response_model=ApiResponse[dict[str, int]],
)
async def attributes_delete(
    request: Request, entity_type: str, name: str
) -> ApiResponse[dict[str, int]]:
    # Exact name match: the escaped prefix pattern without its trailing wildcard.
    deleted = get_service(request).decommission_attribute(entity_type, like_prefix(name)[:-1])
    if deleted == 0:
        raise HTTPException(status_code=404, detail="Attribute definition not found")
    return ok({"deleted": deleted})
