from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from campuseav_core.home import CampusEavPaths


class NetworkConfig(BaseModel):
    bind_host: str = Field(default="127.0.0.1")
    core_port: int = Field(default=8797, ge=1, le=65535)


class PathOverrides(BaseModel):
    db_dir: str | None = None
    logs_dir: str | None = None


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    max_size_mb: int = Field(
        default=10, ge=1, description="Max size of a log file in MB before rolling."
    )
    backup_count: int = Field(default=5, ge=1, description="Number of log archives to keep.")


class EavConfig(BaseModel):
    """Runtime behaviour of the attribute engine."""

    default_eav_enabled: bool = Field(
        default=True,
        description=(
            "Rollout flag assumed for an entity instance that has no explicit flag row. "
            "When false, profile reads fall back to the registered legacy source."
        ),
    )
    catalog_cache_ttl_s: float = Field(
        default=300.0,
        ge=0,
        description="Seconds a cached list of active definitions stays valid (0 disables).",
    )
    busy_timeout_ms: int = Field(default=5000, ge=0)


class MigrationConfig(BaseModel):
    fallback_expiry_sprints: int = Field(
        default=2,
        ge=1,
        description="How long a migrated legacy column stays available as a read-only fallback.",
    )
    sprint_length_days: int = Field(default=14, ge=1)


class CoreConfig(BaseModel):
    version: str = Field(default="1")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    paths: PathOverrides = Field(default_factory=PathOverrides)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    eav: EavConfig = Field(default_factory=EavConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)


def _read_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def load_core_config(paths: CampusEavPaths) -> CoreConfig:
    """Load config from ${CAMPUSEAV_HOME}/config/core.json.

    - If missing: returns defaults.
    - Validation is performed by Pydantic.
    """

    config_path = paths.core_config_path
    if not config_path.exists():
        return CoreConfig()

    raw = _read_json(config_path)
    return CoreConfig.model_validate(raw)


def write_core_config(paths: CampusEavPaths, config: CoreConfig) -> None:
    payload = config.model_dump(mode="json", exclude_none=True)
    paths.config_dir.mkdir(parents=True, exist_ok=True)
    paths.core_config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def resolve_configured_paths(paths: CampusEavPaths, config: CoreConfig) -> CampusEavPaths:
    """Apply user-configurable path overrides from config.

    config/ and tmp/ always stay under the home directory.
    """

    def _resolve_dir(raw: str | None, default: Path) -> Path:
        if raw is None or not str(raw).strip():
            return default
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = (paths.home / candidate).resolve()
        else:
            candidate = candidate.resolve()
        return candidate

    db_dir = _resolve_dir(config.paths.db_dir, paths.db_dir)
    logs_dir = _resolve_dir(config.paths.logs_dir, paths.logs_dir)

    for p in (db_dir, logs_dir):
        p.mkdir(parents=True, exist_ok=True)

    return CampusEavPaths(
        home=paths.home,
        db_dir=db_dir,
        logs_dir=logs_dir,
        config_dir=paths.config_dir,
        tmp_dir=paths.tmp_dir,
    )
