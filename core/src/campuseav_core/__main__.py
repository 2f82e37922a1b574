from __future__ import annotations

import os

import uvicorn

from campuseav_core.app import create_app
from campuseav_core.config import load_core_config, resolve_configured_paths
from campuseav_core.home import ensure_campuseav_layout, resolve_campuseav_home
from campuseav_core.logs import configure_logging


def main() -> None:
    home = resolve_campuseav_home()
    paths = ensure_campuseav_layout(home)
    config = load_core_config(paths)
    paths = resolve_configured_paths(paths, config)
    configure_logging(paths, config.logging, console=True)

    host = os.environ.get("CAMPUSEAV_BIND") or config.network.bind_host

    env_port = os.environ.get("CAMPUSEAV_PORT")
    port = int(env_port) if env_port else config.network.core_port

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
