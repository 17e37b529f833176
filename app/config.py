from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional


DATA_DIR = Path(os.getenv("STAFFING_DATA_DIR") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)

DATABASE_URL = os.getenv("STAFFING_DATABASE_URL") or f"sqlite:///{(DATA_DIR / 'staffing.db').as_posix()}"
STAFF_DATABASE_URL = os.getenv("STAFFING_STAFF_DATABASE_URL") or f"sqlite:///{(DATA_DIR / 'staff.db').as_posix()}"

MATCHING_SERVICE_URL: Optional[str] = os.getenv("STAFFING_MATCHING_URL") or None
NOTIFICATION_SERVICE_URL: Optional[str] = os.getenv("STAFFING_NOTIFICATION_URL") or None
COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("STAFFING_COLLABORATOR_TIMEOUT", "5"))

# Base hours used when an event has no end time to derive a shift length from.
DEFAULT_SHIFT_HOURS = int(os.getenv("STAFFING_DEFAULT_SHIFT_HOURS", "8"))

LOG_LEVEL = os.getenv("STAFFING_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())
    if any(getattr(handler, "_staffing_handler", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._staffing_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
