from __future__ import annotations

import logging

ROOT_LOGGER_NAME = "estimate_engine"


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach a console handler to the package logger (idempotent)."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%H:%M:%S")
        )
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger
