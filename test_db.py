"""Tests for database setup, settings and display formatting."""
from decimal import Decimal

from bondfolio.core.db import MEMORY_DB, get_setting, init_db, set_setting
from bondfolio.core.formatting import format_currency, format_flow, format_percent


def test_default_settings(conn):
    assert get_setting(conn, "base_currency") == "EUR"
    assert get_setting(conn, "tax_rate") == "0.25"
    assert get_setting(conn, "missing") is None


def test_set_setting_overwrites(conn):
    set_setting(conn, "tax_rate", "0.2637")
    assert get_setting(conn, "tax_rate") == "0.2637"


def test_init_is_repeatable(tmp_path):
    path = str(tmp_path / "repeat.duckdb")
    conn = init_db(path)
    set_setting(conn, "base_currency", "USD")
    conn.close()

    conn = init_db(path)
    assert get_setting(conn, "base_currency") == "USD"
    conn.close()


def test_in_memory_database():
    conn = init_db(MEMORY_DB)
    tables = {row[0] for row in conn.execute("SELECT table_name FROM information_schema.tables").fetchall()}
    assert {"settings", "bonds", "cash_flows", "etfs", "etf_lots", "etf_prices", "historical_valuations"} <= tables
    conn.close()


def test_formatting():
    assert format_currency(Decimal("1234.4")) == "€1,234"
    assert format_currency(Decimal("-1234.5"), "USD", 2) == "-$1,234.50"
    assert format_flow(Decimal("0")) == "-"
    assert format_flow(Decimal("35"), "GBP") == "£35"
    assert format_percent(0.03526) == "3.53%"
