import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

def get_conn(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # autocommit; Store issues explicit BEGIN/COMMIT
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA busy_timeout=5000;")
    return conn

DDL = [
    # Positions (one OPEN row per symbol; CLOSED rows are kept for audit)
    """
CREATE TABLE IF NOT EXISTS holdings (
  id TEXT PRIMARY KEY,
  symbol TEXT NOT NULL,
  display_name TEXT NOT NULL DEFAULT '',
  local_name TEXT NOT NULL DEFAULT '',
  sector TEXT NOT NULL DEFAULT '',
  notes TEXT NOT NULL DEFAULT '',
  shares INTEGER NOT NULL CHECK (shares >= 0),
  avg_cost REAL NOT NULL CHECK (avg_cost >= 0),
  current_price REAL NOT NULL DEFAULT 0 CHECK (current_price >= 0),
  target_percentage REAL,
  fair_value REAL,
  eps REAL,
  growth_rate REAL,
  pe_ratio REAL,
  status TEXT NOT NULL DEFAULT 'OPEN',   -- 'OPEN'|'CLOSED'
  created_at_utc TEXT NOT NULL,
  updated_at_utc TEXT NOT NULL,
  closed_at_utc TEXT,
  role TEXT NOT NULL DEFAULT 'CORE'  -- CORE|INCOME|GROWTH|SWING|SPECULATIVE
);
""",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_holdings_open_symbol ON holdings(symbol) WHERE status='OPEN';",

    # Transactions (append-only)
    """
CREATE TABLE IF NOT EXISTS transactions (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  holding_id TEXT NOT NULL,
  symbol TEXT NOT NULL,
  type TEXT NOT NULL,          -- 'BUY'|'SELL'|'DIVIDEND'
  shares INTEGER NOT NULL,
  price REAL NOT NULL,
  total REAL NOT NULL,
  notes TEXT NOT NULL DEFAULT '',
  timestamp_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_transactions_holding_time ON transactions(holding_id, timestamp_utc, seq);",

    # Cost-basis audit log (append-only, replayable)
    """
CREATE TABLE IF NOT EXISTS cost_history (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  holding_id TEXT NOT NULL,
  symbol TEXT NOT NULL,
  previous_avg_cost REAL NOT NULL,
  new_avg_cost REAL NOT NULL,
  previous_shares INTEGER NOT NULL,
  new_shares INTEGER NOT NULL,
  change_type TEXT NOT NULL,   -- 'BUY'|'SELL'|'ADJUSTMENT'
  transaction_price REAL NOT NULL,
  transaction_shares INTEGER NOT NULL,
  notes TEXT NOT NULL DEFAULT '',
  timestamp_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_cost_history_holding_time ON cost_history(holding_id, timestamp_utc, seq);",

    """
CREATE TABLE IF NOT EXISTS dividends (
  id TEXT PRIMARY KEY,
  holding_id TEXT NOT NULL,
  symbol TEXT NOT NULL,
  amount_per_share REAL NOT NULL,
  shares INTEGER NOT NULL,
  total_amount REAL NOT NULL,
  ex_dividend_date TEXT,
  payment_date_utc TEXT NOT NULL,
  notes TEXT NOT NULL DEFAULT '',
  created_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_dividends_holding ON dividends(holding_id);",
    "CREATE INDEX IF NOT EXISTS ix_dividends_payment ON dividends(payment_date_utc);",

    # Immutable portfolio snapshots
    """
CREATE TABLE IF NOT EXISTS portfolio_snapshots (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  total_value REAL NOT NULL,
  total_cost REAL NOT NULL,
  profit_loss REAL NOT NULL,
  profit_loss_pct REAL NOT NULL,
  total_dividends REAL NOT NULL,
  holdings_count INTEGER NOT NULL,
  timestamp_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_snapshots_time ON portfolio_snapshots(timestamp_utc, seq);",
    """
CREATE TRIGGER IF NOT EXISTS tr_snapshots_immutable
BEFORE UPDATE ON portfolio_snapshots
BEGIN
  SELECT RAISE(ABORT, 'portfolio_snapshots is append-only');
END;
""",

    """
CREATE TABLE IF NOT EXISTS realized_gains (
  id TEXT PRIMARY KEY,
  holding_id TEXT NOT NULL,
  symbol TEXT NOT NULL,
  shares_sold INTEGER NOT NULL,
  sell_price REAL NOT NULL,
  avg_cost REAL NOT NULL,
  profit_loss REAL NOT NULL,
  profit_loss_pct REAL NOT NULL,
  closed_position INTEGER NOT NULL,
  sold_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_realized_gains_time ON realized_gains(sold_at_utc);",

    """
CREATE TABLE IF NOT EXISTS certificates (
  id TEXT PRIMARY KEY,
  bank_name TEXT NOT NULL,
  certificate_number TEXT NOT NULL DEFAULT '',
  principal REAL NOT NULL CHECK (principal >= 0),
  duration_years INTEGER NOT NULL,
  annual_rate REAL NOT NULL,
  purchase_date TEXT NOT NULL,
  frequency TEXT NOT NULL,     -- 'MONTHLY'|'QUARTERLY'|'ANNUALLY'|'AT_MATURITY'
  status TEXT NOT NULL DEFAULT 'ACTIVE',
  notes TEXT NOT NULL DEFAULT '',
  created_at_utc TEXT NOT NULL,
  updated_at_utc TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_certificates_status ON certificates(status);",

    # Price refresh runs
    """
CREATE TABLE IF NOT EXISTS refresh_runs (
  run_id TEXT PRIMARY KEY,
  started_at_utc TEXT NOT NULL,
  finished_at_utc TEXT,
  status TEXT NOT NULL,   -- 'running'|'succeeded'|'failed'|'skipped'
  updated_count INTEGER,
  failed_symbols TEXT,
  snapshot_id TEXT,
  error_message TEXT
);
""",
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    cols = {row[1] for row in cur.execute("PRAGMA table_info(holdings)").fetchall()}
    if cols:
        for col, ddl in [
            ("target_percentage", "ALTER TABLE holdings ADD COLUMN target_percentage REAL"),
            ("fair_value", "ALTER TABLE holdings ADD COLUMN fair_value REAL"),
            ("eps", "ALTER TABLE holdings ADD COLUMN eps REAL"),
            ("growth_rate", "ALTER TABLE holdings ADD COLUMN growth_rate REAL"),
            ("pe_ratio", "ALTER TABLE holdings ADD COLUMN pe_ratio REAL"),
            ("closed_at_utc", "ALTER TABLE holdings ADD COLUMN closed_at_utc TEXT"),
            ("role", "ALTER TABLE holdings ADD COLUMN role TEXT NOT NULL DEFAULT 'CORE'"),
        ]:
            if col not in cols:
                cur.execute(ddl)
    cert_cols = {row[1] for row in cur.execute("PRAGMA table_info(certificates)").fetchall()}
    if cert_cols and "certificate_number" not in cert_cols:
        cur.execute("ALTER TABLE certificates ADD COLUMN certificate_number TEXT NOT NULL DEFAULT ''")


class Store:
    """One sqlite connection plus the lock that makes it safe to share.

    ``transaction()`` wraps a read-modify-append unit in BEGIN IMMEDIATE so a
    failure anywhere rolls back every row written inside it. ``read()`` gives
    a consistent view for multi-statement reads.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.RLock()
        self._depth = 0

    @classmethod
    def open(cls, db_path: str) -> "Store":
        conn = get_conn(db_path)
        migrate(conn)
        return cls(conn)

    @contextmanager
    def transaction(self):
        with self._lock:
            if self._depth:
                # nested unit joins the outer transaction
                self._depth += 1
                try:
                    yield self.conn.cursor()
                finally:
                    self._depth -= 1
                return
            self.conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self.conn.cursor()
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")
            finally:
                self._depth = 0

    @contextmanager
    def read(self):
        with self.transaction() as cur:
            yield cur

    def close(self):
        with self._lock:
            self.conn.close()
