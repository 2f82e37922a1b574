from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from campuseav_core import __version__
from campuseav_core.api.models import ApiResponse, ok
from campuseav_core.api.v1.attributes import router as attributes_router
from campuseav_core.api.v1.migrations import router as migrations_router
from campuseav_core.api.v1.profiles import router as profiles_router

router = APIRouter(prefix="/v1", tags=["v1"])

router.include_router(attributes_router)
router.include_router(profiles_router)
router.include_router(migrations_router)


class SystemInfo(BaseModel):
    version: str
    campuseav_home: str
    paths: dict[str, str]
    legacy_sources: list[str]


@router.get("/ping", response_model=ApiResponse[dict[str, bool]])
async def ping() -> ApiResponse[dict[str, bool]]:
    return ok({"pong": True})


@router.get("/system/info", response_model=ApiResponse[SystemInfo])
async def system_info(request: Request) -> ApiResponse[SystemInfo]:
    home = getattr(request.app.state, "campuseav_home", None)
    paths = getattr(request.app.state, "campuseav_paths", None)
    service = getattr(request.app.state, "eav_service", None)

    info = SystemInfo(
        version=__version__,
        campuseav_home=str(home) if home is not None else "",
        paths={
            "db_dir": str(paths.db_dir) if paths is not None else "",
            "logs_dir": str(paths.logs_dir) if paths is not None else "",
            "config_dir": str(paths.config_dir) if paths is not None else "",
            "tmp_dir": str(paths.tmp_dir) if paths is not None else "",
        },
        legacy_sources=sorted(service.legacy_sources) if service is not None else [],
    )
    return ok(info)
