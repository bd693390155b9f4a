"""Logging bootstrap shared by the API, the Celery workers and scripts."""

from __future__ import annotations

import logging
import sys

from disputeflow.config import settings

ROOT_LOGGER = "disputeflow"

_configured = False


def setup_logging(level: str | None = None, *, force: bool = False) -> None:
    """Configure the ``disputeflow`` logger tree. Safe to call repeatedly."""
    global _configured

    if _configured and not force:
        return

    lvl = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )

    root = logging.getLogger(ROOT_LOGGER)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(lvl)

    for name in ("httpx", "httpcore", "celery", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(max(lvl, logging.WARNING))

    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
