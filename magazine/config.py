from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import streamlit as st

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "settings.json"
ENV_DATA_DIR = "MAGAZINE_DATA_DIR"
ENV_ADMIN_EMAILS = "MAGAZINE_ADMIN_EMAILS"
ENV_CURRENCY = "MAGAZINE_CURRENCY"
SESSION_DATA_DIR = "magazine_data_dir"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path
    currency: str = "USD"
    admin_emails: tuple[str, ...] = ()
    audit_limit: int = 100
    low_stock_threshold: int = 10
    expiry_window_days: int = 7


def _default_data_dir() -> Path:
    return Path.home() / ".magazine_pro"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable %s", cfg)
            return {}
    return {}


def _parse_emails(raw: str) -> tuple[str, ...]:
    return tuple(e.strip().lower() for e in str(raw or "").split(",") if e.strip())


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    # The pointer lives in the default folder so the next start can find it.
    default_dir = _default_data_dir()
    default_dir.mkdir(parents=True, exist_ok=True)
    cfg = default_dir / CONFIG_FILE_NAME
    payload = _load_persisted_settings(default_dir)
    payload["data_dir"] = str(data_dir)
    cfg.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # Update session for immediate effect
    st.session_state[SESSION_DATA_DIR] = str(data_dir)


def load_settings(
    *,
    session: Optional[Mapping] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    # Priority order:
    # 1) Session state (set via Admin page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    env = os.environ if environ is None else environ
    if session is None:
        session = {}
    default_dir = _default_data_dir()
    persisted = _load_persisted_settings(default_dir)

    if SESSION_DATA_DIR in session:
        data_dir = Path(session[SESSION_DATA_DIR]).expanduser().resolve()
    elif env.get(ENV_DATA_DIR):
        data_dir = Path(env[ENV_DATA_DIR]).expanduser().resolve()
    else:
        data_dir = Path(persisted.get("data_dir", default_dir)).expanduser().resolve()

    data_dir.mkdir(parents=True, exist_ok=True)
    admin_emails = _parse_emails(env.get(ENV_ADMIN_EMAILS, "")) or _parse_emails(
        ",".join(persisted.get("admin_emails", []))
    )
    return Settings(
        data_dir=data_dir,
        db_path=data_dir / "magazine.db",
        currency=env.get(ENV_CURRENCY) or persisted.get("currency", "USD"),
        admin_emails=admin_emails,
    )


@st.cache_resource
def get_settings() -> Settings:
    return load_settings(session=st.session_state)
