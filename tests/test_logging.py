import logging
from typing import Optional, get_type_hints

from modelsnap.core.logging import configure_logging


def test_level_defaults_to_settings():
    assert get_type_hints(configure_logging)["level"] == Optional[str]

    configure_logging()
    configure_logging("debug")

    assert logging.getLogger("httpx").level == logging.WARNING
