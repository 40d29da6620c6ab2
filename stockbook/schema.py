SCHEMA_SQL = r"""
-- Items (one row = one stock lot or one completed sale)
CREATE TABLE IF NOT EXISTS items (
  id TEXT PRIMARY KEY,
  created_at TEXT NOT NULL,
  date TEXT,                             -- acquisition date (ISO)
  product_name TEXT NOT NULL,
  purchase_price REAL NOT NULL DEFAULT 0,
  sale_price REAL,
  quantity INTEGER NOT NULL DEFAULT 1,
  sale_date TEXT,                        -- set iff status = 'sold'
  status TEXT NOT NULL DEFAULT 'in_stock',   -- in_stock / sold
  item_condition TEXT NOT NULL DEFAULT 'new', -- new / lightly_used / used
  batch_ref TEXT
);

-- Batches (one bulk order = one batch summary)
CREATE TABLE IF NOT EXISTS batches (
  id TEXT PRIMARY KEY,
  batch_code TEXT NOT NULL,
  batch_type TEXT NOT NULL,              -- all_sell / mixed / all_retained
  created_at TEXT NOT NULL,
  total_paid REAL NOT NULL DEFAULT 0,
  total_sell_revenue REAL NOT NULL DEFAULT 0,
  cash_profit REAL NOT NULL DEFAULT 0,
  retained_value REAL NOT NULL DEFAULT 0,
  items_count INTEGER NOT NULL DEFAULT 0
);

-- Line snapshots of a batch (may be empty for legacy batches)
CREATE TABLE IF NOT EXISTS batch_lines (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_id TEXT NOT NULL,
  position INTEGER NOT NULL,
  product_name TEXT NOT NULL,
  quantity INTEGER NOT NULL,
  listed_unit_price REAL NOT NULL,
  unit_sale_price REAL NOT NULL DEFAULT 0,
  item_condition TEXT NOT NULL DEFAULT 'new',
  disposition TEXT NOT NULL DEFAULT 'sell',  -- sell / keep
  FOREIGN KEY (batch_id) REFERENCES batches(id) ON DELETE CASCADE
);
"""
