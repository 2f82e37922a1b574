from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from campuseav_core.config import (
    CoreConfig,
    load_core_config,
    resolve_configured_paths,
    write_core_config,
)
from campuseav_core.home import ensure_campuseav_layout


def test_load_core_config_defaults_when_missing(tmp_path: Path) -> None:
    paths = ensure_campuseav_layout(tmp_path)
    cfg = load_core_config(paths)
    assert isinstance(cfg, CoreConfig)
    assert cfg.network.bind_host == "127.0.0.1"
    assert cfg.eav.default_eav_enabled is True
    assert cfg.migration.fallback_expiry_sprints == 2


def test_load_core_config_validation_error(tmp_path: Path) -> None:
    paths = ensure_campuseav_layout(tmp_path)

    paths.core_config_path.write_text(
        json.dumps({"eav": {"catalog_cache_ttl_s": -1}}),
        encoding="utf-8",
    )

    with pytest.raises(ValidationError):
        load_core_config(paths)


def test_write_core_config_round_trips(tmp_path: Path) -> None:
    paths = ensure_campuseav_layout(tmp_path)
    cfg = CoreConfig.model_validate({"eav": {"default_eav_enabled": False}})

    write_core_config(paths, cfg)

    loaded = load_core_config(paths)
    assert loaded.eav.default_eav_enabled is False


def test_resolve_configured_paths_creates_overrides(tmp_path: Path) -> None:
    paths = ensure_campuseav_layout(tmp_path)

    cfg = CoreConfig.model_validate(
        {
            "paths": {
                "db_dir": "custom_db",
                "logs_dir": "custom_logs",
            }
        }
    )

    resolved = resolve_configured_paths(paths, cfg)
    assert resolved.db_dir.is_dir()
    assert resolved.logs_dir.is_dir()

    # Overrides are resolved relative to CAMPUSEAV_HOME.
    assert resolved.db_dir == (tmp_path / "custom_db").resolve()
    assert resolved.logs_dir == (tmp_path / "custom_logs").resolve()

    assert resolved.config_dir == paths.config_dir
