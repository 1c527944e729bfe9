from __future__ import annotations

import random
from datetime import date, timedelta

from magazine.auth import require_admin
from magazine.services.ledger import StockLedger

DEMO_PRODUCTS = [
    # (sku, name, category, price, cost)
    ("MLK-1L", "Milk 1L", "Dairy", 1.20, 0.80),
    ("YGT-500", "Yogurt 500g", "Dairy", 2.10, 1.30),
    ("BRD-WHT", "White Bread", "Bakery", 1.50, 0.70),
    ("EGG-12", "Eggs (12)", "Fresh", 3.40, 2.20),
    ("RCE-5KG", "Rice 5kg", "Dry goods", 8.90, 6.10),
    ("OIL-1L", "Sunflower Oil 1L", "Dry goods", 3.75, 2.60),
]


def load_demo_data(ledger: StockLedger, *, seed: int = 7) -> int:
    """Adds the demo catalog (skipping SKUs that exist) with some stock movements. Returns products added."""
    require_admin(ledger.principal)
    random.seed(seed)
    existing = {p["sku"] for p in ledger.products}

    added = 0
    for sku, name, category, price, cost in DEMO_PRODUCTS:
        if sku in existing:
            continue
        p = ledger.add_product(name=name, sku=sku, category=category, price=price, cost=cost, supplier="Demo Supplier")
        added += 1

        # Receive one or two lots, then sell some
        for _ in range(random.randint(1, 2)):
            expiry = date.today() + timedelta(days=random.randint(2, 60))
            ledger.scan_in(p["id"], random.randint(10, 40), expiry_date=expiry.isoformat())
        ledger.scan_out(p["id"], random.randint(1, 8))

    return added
