"""
Logging setup shared by every agent module.
"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_root_configured = False


def configure_logging(level: str = None) -> None:
    """
    Configure the root agent logger once.

    Args:
        level: Level name (DEBUG, INFO, ...). Falls back to LOG_LEVEL env or INFO.
    """
    global _root_configured

    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger("src")
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not _root_configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _root_configured = True


def setup_logger(name: str) -> logging.Logger:
    """Return a module logger under the shared agent hierarchy."""
    if not _root_configured:
        configure_logging()
    return logging.getLogger(name)
