"""
Logging Setup
One place to configure the root logger for the API and the worker processes.
"""

import logging
from typing import Optional

from modelsnap.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; repeated calls are no-ops."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    # httpx logs every request at INFO, which drowns out the poll loop
    logging.getLogger("httpx").setLevel(logging.WARNING)
