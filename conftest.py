"""Shared fixtures: throwaway DuckDB stores and bond and ETF factories."""
from datetime import date
from decimal import Decimal

import pytest

from bondfolio.core.db import init_db
from bondfolio.core.etfs import ETFStore
from bondfolio.core.models import ETF, BondTerms
from bondfolio.core.store import CashFlowStore
from bondfolio.core.valuations import ValuationStore


@pytest.fixture
def conn(tmp_path):
    conn = init_db(str(tmp_path / "test_bondfolio.duckdb"))
    yield conn
    conn.close()


@pytest.fixture
def store(conn):
    return CashFlowStore(conn)


@pytest.fixture
def etf_store(conn):
    return ETFStore(conn)


@pytest.fixture
def valuation_store(conn):
    return ValuationStore(conn)


@pytest.fixture
def make_bond():
    """Build BondTerms with sensible defaults; override any field by keyword."""

    def _make(**overrides):
        fields = {
            "name": "Bund 2030",
            "issuer": "Bundesrepublik Deutschland",
            "isin": "DE0001102580",
            "wkn": "110258",
            "par_value": Decimal("1000"),
            "coupon_rate": Decimal("3.5"),
            "initial_price": Decimal("950"),
            "maturity_date": date(2030, 6, 15),
            "acquisition_date": date(2025, 1, 10),
            "custodian": "ING",
        }
        fields.update(overrides)
        return BondTerms(**fields)

    return _make


@pytest.fixture
def make_etf():
    def _make(**overrides):
        fields = {
            "name": "iShares Core MSCI World",
            "isin": "IE00B4L5Y983",
            "wkn": "A0RPWH",
            "issuer": "BlackRock",
            "last_price": Decimal("100"),
        }
        fields.update(overrides)
        return ETF(**fields)

    return _make
