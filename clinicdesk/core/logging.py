from __future__ import annotations

import logging

from clinicdesk.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    root = logging.getLogger()
    lvl = (level or settings.LOG_LEVEL or "INFO").upper()

    if not root.handlers:
        logging.basicConfig(level=lvl, format=LOG_FORMAT)
    else:
        root.setLevel(lvl)

    # SQL echo goes through the engine logger, keep it quiet unless asked
    if not settings.SQL_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
