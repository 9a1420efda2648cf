from __future__ import annotations

import logging

from drledger.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Configure root logging once for scripts; library code only uses module loggers.
    resolved = (level or get_settings().log_level or "INFO").upper()
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    logging.getLogger().setLevel(resolved)
    # SQL echo stays off unless explicitly requested at DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if resolved == "DEBUG" else logging.WARNING
    )
