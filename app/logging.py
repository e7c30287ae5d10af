"""Process-wide logging setup shared by the API and the Celery worker."""

from __future__ import annotations

import logging

from app.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured
    if _configured:
        return
    resolved = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=LOG_FORMAT)
    # boto3 is chatty at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    _configured = True
