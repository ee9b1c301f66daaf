from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

LOGGER_NAME = "labengine"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"
_CONFIGURED = False
_HANDLER: Optional[logging.Handler] = None


def configure_logging(base_dir: Optional[Path] = None, level: int = logging.INFO) -> Dict[str, str]:
    """Attach the key-value file handler to the engine loggers.

    Engine modules log through ``logging.getLogger(__name__)``; their records
    reach the file because ``lab_engine`` and ``runtime_bus`` are routed to the
    ``labengine`` logger here.
    """
    global _CONFIGURED, _HANDLER
    root = base_dir or Path("data/roaming")
    log_dir = root / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "labengine.log"

    logger_name = LOGGER_NAME if base_dir is None else f"{LOGGER_NAME}.test"
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False

    if base_dir is None and not _CONFIGURED:
        handler = _file_handler(log_path)
        logger.addHandler(handler)
        _HANDLER = handler
        _CONFIGURED = True
    elif base_dir is not None and not logger.handlers:
        logger.addHandler(_file_handler(log_path))

    for package in ("lab_engine", "runtime_bus"):
        package_logger = logging.getLogger(package)
        package_logger.setLevel(level)
        for handler in logger.handlers:
            if handler not in package_logger.handlers:
                package_logger.addHandler(handler)

    return {
        "log_path": str(log_path),
        "format": "kv",
        "handlers": "file",
        "logger_name": logger_name,
    }


def _file_handler(log_path: Path) -> logging.Handler:
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT))
    return handler


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)
