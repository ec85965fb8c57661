"""Shared helpers for the budgeter package."""

import logging
from datetime import date, datetime

import colorlog

from budgeter.config import LOG_LEVEL


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized console format."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(LOG_LEVEL)
    logger.propagate = False
    return logger


def as_date(value: date | datetime) -> date:
    """Calendar date of a date or datetime, dropping any time of day."""
    if isinstance(value, datetime):
        return value.date()
    return value
