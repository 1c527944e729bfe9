from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from io import BytesIO
from typing import Any, Optional

import pandas as pd

from magazine.auth import require_admin
from magazine.errors import ValidationError
from magazine.services import audit
from magazine.services.batches import create_batch
from magazine.services.ledger import StockLedger

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MIME = "text/csv"

EXPORT_COLUMNS = ["Product", "SKU", "Price", "Total Qty", "Value"]

# Accepted header spellings, first match wins.
HEADER_ALIASES = {
    "sku": ("sku",),
    "name": ("name", "product name"),
    "price": ("price",),
    "quantity": ("quantity", "qty"),
    "expiry": ("expiry", "date"),
}


@dataclass
class ImportRow:
    sku: str
    name: str
    price: float = 0.0
    quantity: Optional[int] = None  # None: sheet gave no quantity, stock is left alone
    expiry: Optional[str] = None


@dataclass
class ImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    batches: int = 0


@dataclass(frozen=True)
class ExportFile:
    filename: str
    data: bytes
    mime: str


def read_table(data: bytes, filename: str) -> pd.DataFrame:
    name = str(filename or "").lower()
    try:
        if name.endswith(".xlsx"):
            return pd.read_excel(BytesIO(data), sheet_name=0, engine="openpyxl")
        if name.endswith(".csv"):
            return pd.read_csv(BytesIO(data))
    except (ValueError, OSError) as e:
        raise ValidationError(f"Could not read {filename}: {e}") from e
    raise ValidationError("Unsupported file type. Upload an .xlsx or .csv file.")


def _is_blank(v: Any) -> bool:
    if v is None:
        return True
    if isinstance(v, str):
        return not v.strip()
    try:
        return bool(pd.isna(v))
    except (TypeError, ValueError):
        return False


def _cell_text(v: Any) -> Optional[str]:
    if _is_blank(v):
        return None
    # Numeric SKUs come back from Excel as floats (1001.0).
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v).strip()


def _resolve_headers(columns) -> dict[str, str]:
    lookup = {str(c).strip().lower(): c for c in columns}
    out: dict[str, str] = {}
    for field, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in lookup:
                out[field] = lookup[alias]
                break
    return out


def parse_import_rows(frame: pd.DataFrame) -> tuple[list[ImportRow], int]:
    """
    Maps spreadsheet rows to ImportRow, matching headers case-insensitively.
    Rows without sku or name are skipped. A sku seen twice keeps the values of
    its last row. Returns (rows, skipped_count).
    """
    headers = _resolve_headers(frame.columns)
    if "sku" not in headers or "name" not in headers:
        raise ValidationError("The sheet needs at least 'sku' and 'name' columns.")

    by_sku: dict[str, ImportRow] = {}
    skipped = 0
    for i, raw in enumerate(frame.to_dict(orient="records"), start=2):  # row 1 is the header
        def cell(field: str):
            col = headers.get(field)
            return raw.get(col) if col is not None else None

        sku = _cell_text(cell("sku"))
        name = _cell_text(cell("name"))
        if not sku or not name:
            skipped += 1
            continue

        price = 0.0
        if not _is_blank(cell("price")):
            try:
                price = float(cell("price"))
            except (TypeError, ValueError):
                raise ValidationError(f"Row {i}: price '{cell('price')}' is not a number.")
            if price < 0:
                raise ValidationError(f"Row {i}: price must be >= 0.")

        quantity = None
        if not _is_blank(cell("quantity")):
            try:
                qf = float(cell("quantity"))
            except (TypeError, ValueError):
                raise ValidationError(f"Row {i}: quantity '{cell('quantity')}' is not a number.")
            if qf < 0 or not qf.is_integer():
                raise ValidationError(f"Row {i}: quantity must be a whole number >= 0.")
            quantity = int(qf)

        expiry = None
        if not _is_blank(cell("expiry")):
            try:
                expiry = pd.to_datetime(cell("expiry")).date().isoformat()
            except (TypeError, ValueError):
                raise ValidationError(f"Row {i}: expiry '{cell('expiry')}' is not a date.")

        by_sku[sku] = ImportRow(sku=sku, name=name, price=price, quantity=quantity, expiry=expiry)

    return list(by_sku.values()), skipped


def import_products(ledger: StockLedger, rows: list[ImportRow], *, skipped: int = 0) -> ImportResult:
    """
    Upserts products on sku in one transaction. Each row writes exactly one
    audit entry: CREATE for a new sku, UPDATE for an existing one. A row
    without a quantity leaves the stock of an existing product untouched;
    old and new quantity are recorded only when the quantity changed.
    """
    require_admin(ledger.principal)
    store = ledger.store
    user_email = ledger.principal.email
    result = ImportResult(skipped=int(skipped))

    with store.transaction():
        for row in rows:
            existing = store.select("products", where={"sku": row.sku})
            values = {"sku": row.sku, "name": row.name, "price": row.price}
            if row.quantity is not None:
                values["quantity"] = row.quantity
            product = store.upsert("products", [values], on_conflict="sku")[0]

            if existing:
                old_quantity = int(existing[0]["quantity"])
                details = {
                    "product_id": product["id"],
                    "name": product["name"],
                    "sku": product["sku"],
                    "source": "import",
                    "updates": {k: v for k, v in values.items() if k != "sku"},
                }
                if row.quantity is not None and row.quantity != old_quantity:
                    details["old_quantity"] = old_quantity
                    details["new_quantity"] = row.quantity
                audit.append(store, audit.UPDATE, details, user_email=user_email)
                result.updated += 1
            else:
                audit.append(
                    store,
                    audit.CREATE,
                    {
                        "product_id": product["id"],
                        "name": product["name"],
                        "sku": product["sku"],
                        "source": "import",
                        "quantity": int(product["quantity"]),
                    },
                    user_email=user_email,
                )
                result.created += 1

            if row.quantity and row.expiry:
                create_batch(store, product_id=product["id"], quantity=row.quantity, expiry_date=row.expiry)
                result.batches += 1

    logger.info(
        "Import by %s: %s created, %s updated, %s skipped, %s lots",
        user_email, result.created, result.updated, result.skipped, result.batches,
    )
    return result


def export_frame(products: list[dict]) -> pd.DataFrame:
    df = pd.DataFrame(
        [
            {
                "Product": p["name"],
                "SKU": p["sku"],
                "Price": float(p.get("price") or 0),
                "Total Qty": int(p.get("quantity") or 0),
            }
            for p in products
        ],
        columns=["Product", "SKU", "Price", "Total Qty"],
    )
    df["Value"] = (df["Price"] * df["Total Qty"]).round(2)
    return df[EXPORT_COLUMNS]


def export_products(ledger: StockLedger, *, fmt: str = "xlsx", today: Optional[date] = None) -> ExportFile:
    require_admin(ledger.principal)
    fmt = str(fmt).lower().lstrip(".")
    df = export_frame(ledger.products)
    stamp = (today or date.today()).isoformat()

    if fmt == "csv":
        data = df.to_csv(index=False).encode("utf-8")
        return ExportFile(f"inventory-report-{stamp}.csv", data, CSV_MIME)
    if fmt == "xlsx":
        output = BytesIO()
        with pd.ExcelWriter(output, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="Inventory")
        return ExportFile(f"inventory-report-{stamp}.xlsx", output.getvalue(), XLSX_MIME)
    raise ValidationError("Export format must be 'xlsx' or 'csv'.")
