"""
Logging setup for the recommendation pipeline.

Modules log through ``logging.getLogger(__name__)``; the application entry
point calls ``configure_logging`` once.

Never log API keys, full prompts or raw generations. High-level events
(stage transitions, retries, degradations) and sanitized error messages are
fine.
"""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int | str | None = None) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Logging level as int or name (defaults to INFO)

    Returns:
        The ``rag_recommender`` logger
    """
    logger = logging.getLogger("rag_recommender")

    if level is None:
        level = logging.INFO
    elif isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger.setLevel(level)

    # Avoid duplicate handlers when called more than once
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(handler)

    return logger
