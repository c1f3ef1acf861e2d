from __future__ import annotations

import logging
import sys

from .config import get_settings

ROOT_LOGGER = "devshell_mcp"


def ensure_logging_configured() -> None:
    # stdout carries the MCP stdio protocol, so logs go to stderr only.
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return
    h = logging.StreamHandler(sys.stderr)
    h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(h)
    logger.propagate = False
    logger.setLevel(get_settings().log_level)
