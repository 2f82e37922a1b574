from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from campuseav_core import __version__
from campuseav_core.api.models import fail, fail_from_error, status_for_error
from campuseav_core.api.v1.router import router as v1_router
from campuseav_core.config import load_core_config, resolve_configured_paths
from campuseav_core.db import resolve_db_path
from campuseav_core.db.migrate import apply_migrations
from campuseav_core.eav.service import EavService
from campuseav_core.errors import EavError
from campuseav_core.home import ensure_campuseav_layout, resolve_campuseav_home
from campuseav_core.jobs.plans import register_legacy_sources
from campuseav_core.logs import configure_logging

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        home = resolve_campuseav_home()
        paths = ensure_campuseav_layout(home)
        config = load_core_config(paths)
        paths = resolve_configured_paths(paths, config)
        configure_logging(paths, config.logging)

        logger.info("CampusEAV Core starting up")
        logger.info("Logs directory: %s", paths.logs_dir)

        db_path = resolve_db_path(paths)
        apply_migrations(db_path)

        service = EavService(db_path, config=config.eav)
        registered = register_legacy_sources(service, db_path)
        if registered:
            logger.info("Legacy fallbacks: %s", ", ".join(registered))

        app.state.campuseav_home = home
        app.state.campuseav_paths = paths
        app.state.campuseav_config = config
        app.state.db_path = db_path
        app.state.eav_service = service

        yield

    app = FastAPI(title="CampusEAV Core", version=__version__, lifespan=_lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s - %s", request.method, request.url.path, response.status_code)
        return response

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=fail(
                code="validation_error",
                message="Request validation failed",
                details=exc.errors(),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(EavError)
    async def _eav_error_handler(request: Request, exc: EavError) -> JSONResponse:
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content=fail_from_error(exc).model_dump(mode="json"),
        )

    def _status_to_code(status_code: int) -> str:
        if status_code == 404:
            return "not_found"
        if status_code == 409:
            return "conflict"
        if status_code == 422:
            return "validation_error"
        if 400 <= status_code < 500:
            return "client_error"
        return "server_error"

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=fail(
                code=_status_to_code(exc.status_code),
                message=str(exc.detail),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=fail(
                code=_status_to_code(exc.status_code),
                message=exc.detail if isinstance(exc.detail, str) else "HTTP error",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=fail(code="internal_error", message="Internal server error").model_dump(
                mode="json"
            ),
        )

    app.include_router(v1_router)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app
