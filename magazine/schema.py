SCHEMA_SQL = r"""
-- Catalog (quantity is the authoritative stock count)
CREATE TABLE IF NOT EXISTS products (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at TEXT NOT NULL,              -- ISO datetime (UTC)
  updated_at TEXT NOT NULL,
  name TEXT NOT NULL CHECK (length(trim(name)) > 0),
  sku TEXT NOT NULL UNIQUE CHECK (length(trim(sku)) > 0),
  price REAL NOT NULL DEFAULT 0 CHECK (price >= 0),
  quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),

  category TEXT,
  supplier TEXT,
  cost REAL,
  reorder_point INTEGER,                 -- low-stock threshold, app default when NULL
  image_url TEXT,
  barcodes TEXT NOT NULL DEFAULT '[]'    -- JSON array of extra barcodes
);

-- Lots (expiry tracking only, never summed into quantity)
CREATE TABLE IF NOT EXISTS batches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  product_id INTEGER NOT NULL,
  quantity INTEGER NOT NULL CHECK (quantity >= 0),
  expiry_date TEXT NOT NULL,             -- ISO date
  batch_code TEXT NOT NULL UNIQUE,
  FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_batches_expiry ON batches(expiry_date);

-- Append-only audit trail
CREATE TABLE IF NOT EXISTS audit_logs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at TEXT NOT NULL,
  user_email TEXT,
  action TEXT NOT NULL CHECK (action IN ('SCAN_IN', 'SCAN_OUT', 'ADJUST', 'CREATE', 'UPDATE', 'DELETE')),
  details TEXT NOT NULL DEFAULT '{}'     -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_audit_logs_created ON audit_logs(created_at DESC, id DESC);

-- Principals
CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at TEXT NOT NULL,
  email TEXT NOT NULL UNIQUE,
  password_hash TEXT NOT NULL,
  role TEXT NOT NULL DEFAULT 'staff' CHECK (role IN ('admin', 'staff'))
);
"""

# Tables that carry an updated_at column maintained by the store.
TIMESTAMPED_TABLES = frozenset({"products", "batches"})

TABLES = ("products", "batches", "audit_logs", "users")

# Columns stored as JSON text and decoded on read.
JSON_COLUMNS = {
    "products": frozenset({"barcodes"}),
    "audit_logs": frozenset({"details"}),
}
