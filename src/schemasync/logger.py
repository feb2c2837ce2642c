"""
Logging utilities for schemasync.

``setup_logging`` configures the root logger from the ``logging`` section of
the configuration; ``SchemaBuildLogger`` is the progress sink the
reconciler reports every schema decision to.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, List, Mapping, Optional


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
BUILD_LOGGER_NAME = "schemasync.schema.build"


def setup_logging(config: Optional[Mapping[str, Any]] = None, debug: bool = False) -> logging.Logger:
    """Configure and return the root logger based on configuration values."""
    config = config or {}

    level_name = "DEBUG" if debug else str(config.get("level") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Drop handlers from a previous configuration
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(str(config.get("format") or DEFAULT_FORMAT))

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    log_file = config.get("file")
    if log_file:
        path = Path(str(log_file)).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(config.get("max_size", 10485760)),
            backupCount=int(config.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.debug(f"Logging configured at level {level_name}")
    return root


class SchemaBuildLogger:
    """
    Write-only sink for schema build progress messages.

    Messages go to the ``schemasync.schema.build`` logger and are kept in
    ``messages`` so callers can show what a run decided. Nothing the
    reconciler does depends on this sink.
    """

    def __init__(self, name: str = BUILD_LOGGER_NAME, level: int = logging.INFO):
        self._logger = logging.getLogger(name)
        self.level = level
        self.messages: List[str] = []

    def log_schema_build(self, message: str) -> None:
        self.messages.append(message)
        self._logger.log(self.level, message)

    def clear(self) -> None:
        self.messages.clear()
