from __future__ import annotations

import logging
import os
from datetime import datetime, date, timezone

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ENV_LOG_LEVEL = "MAGAZINE_LOG_LEVEL"


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def parse_iso_date(value) -> date:
    """Accepts a date, a datetime or an ISO string and returns a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    level_name = (level or os.getenv(ENV_LOG_LEVEL, "INFO")).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Streamlit re-executes the script on every interaction; only attach once.
    if any(getattr(h, "_magazine", False) for h in root.handlers):
        return

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    console_handler._magazine = True
    root.addHandler(console_handler)
