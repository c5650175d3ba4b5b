"""Module for logging utilities"""

import logging

BASE_LOGGER = "wsserver"
LOG_FORMAT = "[%(asctime)s %(name)s %(levelname)s] %(message)s"

def _resolve_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level

def setup_logging(level: str | int = "INFO") -> None:
    """Attach a stream handler to the package logger."""
    logger = logging.getLogger(BASE_LOGGER)
    logger.propagate = False
    level = _resolve_level(level)
    logger.setLevel(level)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.handlers.clear()
    logger.addHandler(handler)

def get_logger(child: str | None = None) -> logging.Logger:
    """
    Get the package logger, optionally a child of it.

    Module names are accepted as-is: "wsserver.utils.protocol" and
    "utils.protocol" both end up under the "wsserver" logger.
    """
    logger = logging.getLogger(BASE_LOGGER)
    if not child:
        return logger
    if child == BASE_LOGGER:
        return logger
    if child.startswith(BASE_LOGGER + "."):
        child = child[len(BASE_LOGGER) + 1:]
    return logger.getChild(child)


def set_logger_level(level: str | int, name: str = BASE_LOGGER) -> None:
    """Set the logging level for the specified logger and its handlers."""
    logger = logging.getLogger(name)
    level = _resolve_level(level)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
