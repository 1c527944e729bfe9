from __future__ import annotations

from typing import Optional

import streamlit as st

from magazine.auth import Principal
from magazine.config import Settings, get_settings
from magazine.db import get_conn
from magazine.services.ledger import StockLedger
from magazine.store import Store
from magazine.utils import configure_logging

PRINCIPAL_KEY = "magazine_principal"
LEDGER_KEY = "magazine_ledger"


@st.cache_resource
def get_store(db_path) -> Store:
    # One store per database so change notifications reach every session.
    return Store(get_conn(db_path))


def bootstrap() -> tuple[Settings, Store]:
    configure_logging()
    settings = get_settings()
    return settings, get_store(settings.db_path)


def current_principal() -> Optional[Principal]:
    return st.session_state.get(PRINCIPAL_KEY)


def set_principal(principal: Optional[Principal]) -> None:
    old = st.session_state.pop(LEDGER_KEY, None)
    if old is not None:
        old.close()
    if principal is None:
        st.session_state.pop(PRINCIPAL_KEY, None)
    else:
        st.session_state[PRINCIPAL_KEY] = principal


def get_ledger() -> StockLedger:
    settings, store = bootstrap()
    ledger = st.session_state.get(LEDGER_KEY)
    if ledger is None or ledger.store is not store:
        if ledger is not None:
            ledger.close()
        ledger = StockLedger(
            store,
            current_principal(),
            audit_limit=settings.audit_limit,
            default_reorder_point=settings.low_stock_threshold,
        )
        st.session_state[LEDGER_KEY] = ledger
    return ledger


def require_login() -> Principal:
    principal = current_principal()
    if principal is None:
        st.warning("Sign in on the Login page to continue.", icon="🔒")
        st.stop()
    return principal
