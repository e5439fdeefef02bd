from __future__ import annotations

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> int:
    """
    Configure root logging for processes that embed the engine (workers, migration CLI).

    Level comes from the argument, else LOG_LEVEL, else INFO. Returns the numeric level applied.
    """
    name = (level or os.getenv("LOG_LEVEL") or "info").strip().upper()
    numeric = getattr(logging, name, logging.INFO)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger("intelchat").setLevel(numeric)
    return numeric
