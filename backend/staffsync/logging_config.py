from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from staffsync.config import Settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    if not settings.debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
