from __future__ import annotations

import streamlit as st

from magazine.utils import configure_logging

configure_logging()

st.set_page_config(page_title="Magazine Pro", page_icon="📦", layout="wide")

pages = [
    st.Page("home.py", title="Dashboard", icon="🏠", default=True),
    st.Page("pages/1_🔐_Login.py", title="Login", icon="🔐"),
    st.Page("pages/2_📦_Products.py", title="Products", icon="📦"),
    st.Page("pages/3_📷_Scanner.py", title="Scanner", icon="📷"),
    st.Page("pages/4_🗓️_Batches.py", title="Batches", icon="🗓️"),
    st.Page("pages/5_🛡️_Admin.py", title="Admin", icon="🛡️"),
]

st.navigation(pages).run()
