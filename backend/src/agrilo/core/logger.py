"""
Logger centralisé pour Agrilo.

Usage:
    from agrilo.core.logger import get_logger
    logger = get_logger(__name__)
"""

import logging
import sys
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from agrilo.core.settings import settings

_configured = False

_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "uvicorn.access", "apscheduler")


def _init_sentry_if_needed(level: int = logging.INFO) -> Optional[object]:
    """Initialise Sentry SDK si `SENTRY_DSN` est présent dans les settings."""
    if not settings.SENTRY_DSN:
        return None

    try:
        sentry_logging = LoggingIntegration(
            level=level,                # breadcrumbs
            event_level=logging.ERROR,  # events
        )
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[sentry_logging],
            environment=settings.SENTRY_ENVIRONMENT,
            release=f"{settings.APP_NAME}@{settings.APP_VERSION}",
        )
        logging.getLogger("Agrilo").info("Sentry initialized")
        return sentry_sdk
    except Exception as e:
        logging.getLogger("Agrilo").warning("Sentry failed to init: %s", e)
        return None


def setup_logging(level: Optional[int] = None) -> None:
    """Configure le logging une seule fois, appelé au startup."""
    global _configured
    if _configured:
        return

    if level is None:
        level = logging.DEBUG if settings.DEBUG else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _init_sentry_if_needed(level=level)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Retourne un logger standard Python, nommé par module."""
    return logging.getLogger(name)


__all__ = ["setup_logging", "get_logger"]
