from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from campuseav_core.config import LoggingConfig
from campuseav_core.home import CampusEavPaths

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    paths: CampusEavPaths,
    config: LoggingConfig,
    *,
    console: bool = False,
) -> None:
    """Attach a rotating ${logs_dir}/core.log handler to the root logger.

    Safe to call more than once (app reloads, repeated CLI invocations in tests).
    """

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        file_handler = RotatingFileHandler(
            paths.logs_dir / "core.log",
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if console and not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
