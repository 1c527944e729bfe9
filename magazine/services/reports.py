from __future__ import annotations

from datetime import date
from typing import Optional

import pandas as pd

from magazine.services.audit import describe
from magazine.services.batches import expiring_batches
from magazine.services.ledger import StockLedger

INVENTORY_COLUMNS = ["Product", "SKU", "Category", "Price", "Quantity", "Value", "Low Stock"]


def total_stock_value(products: list[dict]) -> float:
    return round(sum(float(p.get("price") or 0) * int(p.get("quantity") or 0) for p in products), 2)


def inventory_frame(ledger: StockLedger) -> pd.DataFrame:
    products = ledger.products
    if not products:
        return pd.DataFrame(columns=INVENTORY_COLUMNS)

    df = pd.DataFrame(
        [
            {
                "Product": p["name"],
                "SKU": p["sku"],
                "Category": p.get("category") or "",
                "Price": float(p.get("price") or 0),
                "Quantity": int(p.get("quantity") or 0),
                "Low Stock": ledger.is_low_stock(p),
            }
            for p in products
        ]
    )
    df["Value"] = (df["Price"] * df["Quantity"]).round(2)
    return df[INVENTORY_COLUMNS]


def audit_frame(entries: list[dict]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Time": e["created_at"],
                "User": e.get("user_email") or "",
                "Action": e["action"],
                "Details": describe(e),
            }
            for e in entries
        ],
        columns=["Time", "User", "Action", "Details"],
    )


def dashboard_stats(ledger: StockLedger, *, expiry_days: int = 7, today: Optional[date] = None) -> dict:
    products = ledger.products
    return {
        "products": len(products),
        "units": sum(int(p.get("quantity") or 0) for p in products),
        "total_value": total_stock_value(products),
        "low_stock": len(ledger.low_stock_products()),
        "expiring_batches": len(expiring_batches(ledger.store, days=expiry_days, today=today)),
        "recent_actions": len(ledger.audit_logs),
    }
