from __future__ import annotations

import streamlit as st
import pandas as pd

from magazine.services.batches import expiring_batches
from magazine.services.reports import audit_frame, dashboard_stats
from magazine.session import bootstrap, current_principal, get_ledger

st.set_page_config(page_title="Magazine Pro", page_icon="📦", layout="wide")

st.title("📦 Magazine Pro")
st.caption("Product catalog, scan-in/scan-out stock movements, lot expiry tracking and an audit trail.")

settings, store = bootstrap()
ledger = get_ledger()
principal = current_principal()

with st.sidebar:
    st.subheader("Session")
    if principal:
        st.write(f"Signed in as **{principal.email}** ({principal.role})")
    else:
        st.write("Not signed in.")
    st.write(f"**Database:** `{settings.db_path.name}`")
    if st.button("Refresh data"):
        ledger.refresh()
        st.rerun()

stats = dashboard_stats(ledger, expiry_days=settings.expiry_window_days)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Products", f"{stats['products']}")
c2.metric("Units in stock", f"{stats['units']}")
c3.metric("Stock value", f"{settings.currency} {stats['total_value']:,.2f}")
c4.metric("Low stock", f"{stats['low_stock']}")

left, right = st.columns([1, 1], gap="large")

with left:
    st.subheader("Low stock")
    low = ledger.low_stock_products()
    if low:
        st.dataframe(
            pd.DataFrame(
                [
                    {"Product": p["name"], "SKU": p["sku"], "Quantity": p["quantity"], "Reorder at": ledger.reorder_point(p)}
                    for p in low
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("Everything is above its reorder point.")

    st.subheader(f"Expiring within {settings.expiry_window_days} days")
    soon = expiring_batches(store, days=settings.expiry_window_days)
    if soon:
        st.dataframe(
            pd.DataFrame(soon)[["batch_code", "product_name", "sku", "quantity", "expiry_date"]],
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No lots expiring soon.")

with right:
    st.subheader("Recent activity")
    recent = ledger.audit_logs[:10]
    if recent:
        st.dataframe(audit_frame(recent), use_container_width=True, hide_index=True)
    else:
        st.caption("No activity yet.")
