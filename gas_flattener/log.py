"""Logging helpers shared by the build stages."""

import logging

SUCCESS: int = 25

logging.addLevelName(SUCCESS, "SUCCESS")

LOGGER_NAME: str = "gas_flattener"


def get_logger(logger: logging.Logger | None = None) -> logging.Logger:
    """Return ``logger`` or the package logger."""

    if logger is not None:
        return logger
    return logging.getLogger(LOGGER_NAME)


def success(logger: logging.Logger, message: str) -> None:
    """Log ``message`` at the ``SUCCESS`` tier (between INFO and WARNING)."""

    logger.log(SUCCESS, message)
