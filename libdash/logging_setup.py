import logging
from typing import Optional

from libdash.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API and the CLI."""
    name = (level or settings.log_level or "INFO").upper()
    if settings.debug:
        name = "DEBUG"
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
