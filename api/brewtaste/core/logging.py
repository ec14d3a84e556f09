"""Process-wide logging setup shared by the API and the RQ worker."""

from __future__ import annotations

import logging

from brewtaste.core.config import settings

LOG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=level or settings.log_level, format=LOG_FORMAT, force=True)
