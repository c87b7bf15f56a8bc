from __future__ import annotations

import logging

from recordkit.core.config import Settings, get_settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    # Scripts call this once at startup; library modules only own named loggers.
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT, force=True)
    if settings.db_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
