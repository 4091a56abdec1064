"""Process-wide logging setup.

``setup_logging`` configures the root logger exactly once; repeated calls are
no-ops so the API module and tests can both call it safely.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Transport loggers log every request at INFO.
_SUPPRESSED_LOGGERS = ("httpx", "httpcore")

_configured = False


def setup_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        return
    _configured = True

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    for name in _SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
