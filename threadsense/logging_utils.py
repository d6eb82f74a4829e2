"""Logging configuration helpers."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO", *, quiet_loggers: tuple[str, ...] = ()) -> None:
    """Configure root logging for CLI runs.

    ``quiet_loggers`` are pinned to WARNING so per-node crawl chatter can be
    silenced without lowering the global level.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
