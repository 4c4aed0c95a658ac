"""Logging setup for the MCP server.

stdout carries the MCP stdio transport, so log records go to stderr and to a
size-rotated file under the configured log directory.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "ms365-mcp.log"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3


def setup_logging(level: str = "INFO", log_dir: Path | None = None) -> None:
    """Configure the ``ms365_mcp`` logger hierarchy.

    Safe to call more than once: existing handlers on the package logger are
    replaced rather than duplicated.
    """
    logger = logging.getLogger("ms365_mcp")
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / LOG_FILE_NAME,
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Could not open log file in %s: %s", log_dir, exc)
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    # Records are fully handled here; don't duplicate them via the root logger.
    logger.propagate = False
