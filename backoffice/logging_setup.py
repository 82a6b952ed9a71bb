from __future__ import annotations

import logging

from backoffice.config import settings

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=LOG_FORMAT)
    # Driver chatter is only useful when debugging the pool itself.
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
