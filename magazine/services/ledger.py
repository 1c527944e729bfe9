from __future__ import annotations

import logging
from typing import Any, Optional

from magazine.auth import Principal, require_admin
from magazine.errors import InsufficientStockError, ProductNotFoundError, ValidationError
from magazine.services import audit
from magazine.services.batches import create_batch
from magazine.store import ChangeEvent, Store

logger = logging.getLogger(__name__)

DEFAULT_REORDER_POINT = 10

STALE = "stale"
REFRESHING = "refreshing"
FRESH = "fresh"

PRODUCT_FIELDS = (
    "name", "sku", "price", "quantity",
    "category", "supplier", "cost", "reorder_point", "image_url", "barcodes",
)
MIRRORED_TABLES = ("products", "batches", "audit_logs")


def _whole_number(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number.")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number.")
    if isinstance(value, float) and n != value:
        raise ValidationError(f"{label} must be a whole number.")
    return n


def _positive_quantity(value: Any) -> int:
    n = _whole_number(value, "Quantity")
    if n <= 0:
        raise ValidationError("Quantity must be greater than zero.")
    return n


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _non_negative_number(value: Any, label: str) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number.")
    if n != n or n < 0:
        raise ValidationError(f"{label} must be >= 0.")
    return n


def _clean_barcodes(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(b).strip() for b in value if str(b).strip()]


def clean_product_fields(fields: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    """Validates product input. With partial=False, name, sku and price are required."""
    unknown = set(fields) - set(PRODUCT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown product field(s): {', '.join(sorted(unknown))}")

    out: dict[str, Any] = {}
    for key in ("name", "sku"):
        if key in fields or not partial:
            v = _optional_text(fields.get(key))
            if not v:
                raise ValidationError(f"Product {key} is required.")
            out[key] = v

    if "price" in fields or not partial:
        if fields.get("price") in (None, ""):
            raise ValidationError("Product price is required.")
        out["price"] = _non_negative_number(fields["price"], "Price")

    if "quantity" in fields:
        qty = _whole_number(fields["quantity"], "Quantity")
        if qty < 0:
            raise ValidationError("Quantity must be >= 0.")
        out["quantity"] = qty

    for key in ("category", "supplier", "image_url"):
        if key in fields:
            out[key] = _optional_text(fields[key])

    if "cost" in fields:
        out["cost"] = None if fields["cost"] in (None, "") else _non_negative_number(fields["cost"], "Cost")

    if "reorder_point" in fields:
        if fields["reorder_point"] in (None, ""):
            out["reorder_point"] = None
        else:
            rp = _whole_number(fields["reorder_point"], "Reorder point")
            if rp < 0:
                raise ValidationError("Reorder point must be >= 0.")
            out["reorder_point"] = rp

    if "barcodes" in fields:
        out["barcodes"] = _clean_barcodes(fields["barcodes"])
    return out


class StockLedger:
    """
    Session-local mirror of the catalog plus the stock-mutating operations.

    Each mutation runs in one store transaction together with its audit
    entry. Quantity changes use the store's conditional increment, so two
    sessions scanning the same product never overwrite each other's delta.
    The mirror is refreshed from the store whenever a change notification
    arrives.
    """

    def __init__(
        self,
        store: Store,
        principal: Optional[Principal] = None,
        *,
        audit_limit: int = audit.DEFAULT_LIMIT,
        default_reorder_point: int = DEFAULT_REORDER_POINT,
    ):
        self.store = store
        self.principal = principal
        self.audit_limit = int(audit_limit)
        self.default_reorder_point = int(default_reorder_point)

        self.state = STALE
        self._products: list[dict] = []
        self._audit_logs: list[dict] = []
        self._subscriptions = [store.subscribe(t, self._on_change) for t in MIRRORED_TABLES]

    # ---- mirror ----

    def _on_change(self, event: ChangeEvent) -> None:
        self.state = STALE

    def refresh(self) -> None:
        self.state = REFRESHING
        try:
            products = self.store.select("products", order_by="name")
            logs = audit.list_entries(self.store, self.audit_limit)
        except Exception:
            self.state = STALE
            raise
        self._products = products
        self._audit_logs = logs
        self.state = FRESH

    def close(self) -> None:
        for sub in self._subscriptions:
            self.store.unsubscribe(sub)
        self._subscriptions = []

    @property
    def products(self) -> list[dict]:
        if self.state != FRESH:
            self.refresh()
        return self._products

    @property
    def audit_logs(self) -> list[dict]:
        if self.state != FRESH:
            self.refresh()
        return self._audit_logs

    @property
    def _user_email(self) -> Optional[str]:
        return self.principal.email if self.principal else None

    # ---- lookups ----

    def get_product(self, product_id: int) -> Optional[dict]:
        for p in self.products:
            if p["id"] == product_id:
                return p
        return None

    def _require_product(self, product_id: int) -> dict:
        product = self.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def get_product_by_barcode(self, code: str) -> Optional[dict]:
        code = str(code or "").strip()
        if not code:
            return None
        for p in self.products:
            if p["sku"] == code or code in (p.get("barcodes") or []):
                return p
        return None

    def search_products(self, term: str) -> list[dict]:
        term = str(term or "").strip().lower()
        if not term:
            return []
        out = []
        for p in self.products:
            haystack = [p["name"], p["sku"], *(p.get("barcodes") or [])]
            if any(term in str(h).lower() for h in haystack):
                out.append(p)
        return out

    def get_total_stock(self, product_id: int) -> int:
        product = self.get_product(product_id)
        return int(product["quantity"] or 0) if product else 0

    def reorder_point(self, product: dict) -> int:
        rp = product.get("reorder_point")
        return self.default_reorder_point if rp is None else int(rp)

    def is_low_stock(self, product: dict) -> bool:
        return int(product.get("quantity") or 0) <= self.reorder_point(product)

    def low_stock_products(self) -> list[dict]:
        return [p for p in self.products if self.is_low_stock(p)]

    # ---- stock mutations ----

    def scan_in(
        self,
        product_id: int,
        quantity: int,
        *,
        batch_code: Optional[str] = None,
        expiry_date=None,
    ) -> int:
        qty = _positive_quantity(quantity)
        if batch_code and not expiry_date:
            raise ValidationError("A lot code needs an expiry date.")
        product = self._require_product(product_id)

        with self.store.transaction():
            new_total = self.store.increment("products", product["id"], "quantity", qty)
            if new_total is None:
                raise ProductNotFoundError(product_id)

            details = {
                "product_id": product["id"],
                "product_name": product["name"],
                "sku": product["sku"],
                "added": qty,
                "new_total": new_total,
            }
            if expiry_date:
                batch = create_batch(
                    self.store,
                    product_id=product["id"],
                    quantity=qty,
                    expiry_date=expiry_date,
                    batch_code=batch_code,
                )
                details["batch_id"] = batch["id"]
                details["batch_code"] = batch["batch_code"]
            audit.append(self.store, audit.SCAN_IN, details, user_email=self._user_email)

        logger.info("Scan in %s x%s -> %s", product["sku"], qty, new_total)
        return new_total

    def scan_out(self, product_id: int, quantity: int) -> int:
        qty = _positive_quantity(quantity)
        product = self._require_product(product_id)

        with self.store.transaction():
            new_total = self.store.increment("products", product["id"], "quantity", -qty, floor=0)
            if new_total is None:
                current = self.store.get("products", product["id"])
                if current is None:
                    raise ProductNotFoundError(product_id)
                logger.warning(
                    "Scan out refused for %s: %s requested, %s available",
                    product["sku"], qty, current["quantity"],
                )
                raise InsufficientStockError(
                    available=current["quantity"], requested=qty, product_name=product["name"]
                )

            audit.append(
                self.store,
                audit.SCAN_OUT,
                {
                    "product_id": product["id"],
                    "product_name": product["name"],
                    "sku": product["sku"],
                    "removed": qty,
                    "new_total": new_total,
                },
                user_email=self._user_email,
            )

        logger.info("Scan out %s x%s -> %s", product["sku"], qty, new_total)
        return new_total

    def adjust_stock(self, product_id: int, new_quantity: int, reason: str = "") -> int:
        new_qty = _whole_number(new_quantity, "New quantity")
        if new_qty < 0:
            raise ValidationError("New quantity must be >= 0.")
        product = self._require_product(product_id)

        with self.store.transaction():
            current = self.store.get("products", product["id"])
            if current is None:
                raise ProductNotFoundError(product_id)
            old_qty = int(current["quantity"])
            self.store.update("products", product["id"], {"quantity": new_qty})
            audit.append(
                self.store,
                audit.ADJUST,
                {
                    "product_id": product["id"],
                    "product_name": product["name"],
                    "sku": product["sku"],
                    "old": old_qty,
                    "new": new_qty,
                    "reason": str(reason or "").strip(),
                },
                user_email=self._user_email,
            )

        logger.info("Adjust %s %s -> %s (%s)", product["sku"], old_qty, new_qty, reason or "no reason")
        return new_qty

    # ---- catalog CRUD ----

    def add_product(self, **fields) -> dict:
        values = clean_product_fields(fields, partial=False)
        values.setdefault("quantity", 0)

        with self.store.transaction():
            product = self.store.insert("products", values)
            audit.append(
                self.store,
                audit.CREATE,
                {
                    "product_id": product["id"],
                    "name": product["name"],
                    "sku": product["sku"],
                    "quantity": product["quantity"],
                },
                user_email=self._user_email,
            )

        logger.info("Created product %s (%s)", product["sku"], product["name"])
        return product

    def update_product(self, product_id: int, updates: dict[str, Any]) -> dict:
        if "quantity" in updates:
            raise ValidationError("Use scan in, scan out or adjust stock to change quantity.")
        values = clean_product_fields(dict(updates), partial=True)
        product = self._require_product(product_id)

        with self.store.transaction():
            updated = self.store.update("products", product["id"], values)
            if updated is None:
                raise ProductNotFoundError(product_id)
            audit.append(
                self.store,
                audit.UPDATE,
                {"product_id": product["id"], "name": updated["name"], "updates": values},
                user_email=self._user_email,
            )

        logger.info("Updated product %s: %s", updated["sku"], ", ".join(sorted(values)) or "no changes")
        return updated

    def delete_product(self, product_id: int) -> None:
        product = self._require_product(product_id)

        with self.store.transaction():
            # Lots go with the product (ON DELETE CASCADE).
            if not self.store.delete("products", product["id"]):
                raise ProductNotFoundError(product_id)
            audit.append(
                self.store,
                audit.DELETE,
                {"product_id": product["id"], "name": product["name"], "sku": product["sku"]},
                user_email=self._user_email,
            )

        logger.info("Deleted product %s", product["sku"])

    # ---- administration ----

    def clear_all_data(self) -> dict[str, int]:
        require_admin(self.principal)

        with self.store.transaction():
            # Logs first so no entry outlives the rows its details point at.
            logs = audit.clear(self.store)
            batches = self.store.delete_all("batches")
            products = self.store.delete_all("products")

        logger.warning(
            "All data cleared by %s: %s products, %s batches, %s audit entries",
            self._user_email, products, batches, logs,
        )
        return {"products": products, "batches": batches, "audit_logs": logs}
