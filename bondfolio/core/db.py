"""DuckDB initialization, schema management and the store base class."""
import logging
import threading
from contextlib import contextmanager
from pathlib import Path

import duckdb

from bondfolio.core.errors import PersistenceError

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

DEFAULT_SETTINGS = {
    "base_currency": "EUR",
    "tax_rate": "0.25",
}


def get_db_path(custom_path: str | None = None) -> Path:
    """Get the database file path."""
    if custom_path:
        return Path(custom_path)
    return Path(__file__).parent.parent.parent / "data" / "bondfolio.duckdb"


def init_db(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    """Initialize database and create schema if needed."""
    if db_path == MEMORY_DB:
        conn = duckdb.connect(MEMORY_DB)
    else:
        path = get_db_path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(path))

    _create_schema(conn)
    return conn


def _create_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create all tables if they don't exist."""

    # Settings table
    conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key VARCHAR PRIMARY KEY,
            value VARCHAR NOT NULL
        )
    """)

    # Initialize default settings
    for key, value in DEFAULT_SETTINGS.items():
        conn.execute("""
            INSERT INTO settings (key, value)
            VALUES (?, ?)
            ON CONFLICT DO NOTHING
        """, [key, value])

    # Bonds table
    conn.execute("""
        CREATE TABLE IF NOT EXISTS bonds (
            id VARCHAR PRIMARY KEY,
            name VARCHAR NOT NULL,
            issuer VARCHAR NOT NULL DEFAULT '',
            isin VARCHAR NOT NULL DEFAULT '',
            wkn VARCHAR NOT NULL DEFAULT '',
            par_value DECIMAL(18, 4) NOT NULL,
            coupon_rate DECIMAL(9, 4) NOT NULL,
            initial_price DECIMAL(18, 4) NOT NULL,
            maturity_date DATE NOT NULL,
            acquisition_date DATE NOT NULL,
            custodian VARCHAR NOT NULL DEFAULT '',
            yield_to_maturity DOUBLE NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Cash-flow events; rows are owned by a bond and replaced as a set,
    # so no key or foreign key constraints here
    conn.execute("""
        CREATE TABLE IF NOT EXISTS cash_flows (
            bond_id VARCHAR NOT NULL,
            seq INTEGER NOT NULL,
            date DATE NOT NULL,
            amount DECIMAL(18, 4) NOT NULL,
            nature VARCHAR NOT NULL CHECK (nature IN ('interest', 'principal', 'capitalGain', 'capitalLoss', 'expectedProfit'))
        )
    """)

    # ETFs with their lots and price history
    conn.execute("""
        CREATE TABLE IF NOT EXISTS etfs (
            id VARCHAR PRIMARY KEY,
            name VARCHAR NOT NULL,
            isin VARCHAR NOT NULL DEFAULT '',
            wkn VARCHAR NOT NULL DEFAULT '',
            issuer VARCHAR NOT NULL DEFAULT '',
            last_price DECIMAL(18, 4) NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS etf_lots (
            id VARCHAR NOT NULL,
            etf_id VARCHAR NOT NULL,
            acquisition_date DATE NOT NULL,
            acquisition_price DECIMAL(18, 4) NOT NULL,
            shares INTEGER NOT NULL CHECK (shares > 0)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS etf_prices (
            etf_id VARCHAR NOT NULL,
            ts TIMESTAMP NOT NULL,
            price DECIMAL(18, 4) NOT NULL
        )
    """)

    # Point-in-time valuations, one row per custodian for bonds and one for ETFs
    conn.execute("""
        CREATE TABLE IF NOT EXISTS historical_valuations (
            id VARCHAR NOT NULL,
            taken_at TIMESTAMP NOT NULL,
            asset_type VARCHAR NOT NULL CHECK (asset_type IN ('Bond', 'ETF')),
            custodian VARCHAR,
            invested_capital DECIMAL(18, 4) NOT NULL,
            interest_received DECIMAL(18, 4),
            capital_gains DECIMAL(18, 4) NOT NULL
        )
    """)

    conn.commit()


def get_setting(conn: duckdb.DuckDBPyConnection, key: str) -> str | None:
    """Get a setting value by key."""
    with conn.cursor() as cur:
        result = cur.execute("SELECT value FROM settings WHERE key = ?", [key]).fetchone()
    return result[0] if result else None


def set_setting(conn: duckdb.DuckDBPyConnection, key: str, value: str) -> None:
    """Set a setting value. Runs on its own cursor in auto-commit mode."""
    with conn.cursor() as cur:
        cur.execute("""
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
        """, [key, value])


class Repository:
    """
    Base class for the stores.

    Every read and every transaction runs on a fresh cursor of the shared
    connection. DuckDB keeps transaction state per cursor, so a write on one
    Gradio worker thread is neither committed nor seen early by another.
    Writes of one store are serialised by its lock.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn
        self._lock = threading.RLock()

    def _fetchall(self, query: str, params=None):
        with self.conn.cursor() as cur:
            return cur.execute(query, params or []).fetchall()

    def _fetchone(self, query: str, params=None):
        with self.conn.cursor() as cur:
            return cur.execute(query, params or []).fetchone()

    @contextmanager
    def _transaction(self, record_id: str | None = None):
        with self._lock:
            cur = self.conn.cursor()
            try:
                cur.begin()
                try:
                    yield cur
                    cur.commit()
                except duckdb.Error as e:
                    _rollback(cur)
                    logger.error("Store write failed for %s, rolled back: %s", record_id, e)
                    raise PersistenceError(f"Store write failed: {e}", record_id) from e
                except Exception:
                    _rollback(cur)
                    raise
            finally:
                cur.close()


def _rollback(cur: duckdb.DuckDBPyConnection) -> None:
    try:
        cur.rollback()
    except duckdb.TransactionException as e:
        # A failed COMMIT has already aborted the transaction
        logger.debug("Rollback skipped: %s", e)
