"""Tests for ETF holdings, FIFO sales and price history."""
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from bondfolio.core.errors import BondDataError, ETFNotFoundError, InvalidHoldingError
from bondfolio.core.etfs import build_position, fifo_plan, lot_annual_yield, refresh_prices
from bondfolio.core.models import ETFLot


def _lot(etf_id, day, price, shares):
    return ETFLot(etf_id=etf_id, acquisition_date=day, acquisition_price=Decimal(price), shares=shares)


def test_add_and_list_etfs(etf_store, make_etf):
    world = make_etf()
    em = make_etf(name="Emerging Markets", isin="IE00BKM4GZ66")
    etf_store.add_etf(world)
    etf_store.add_etf(em)

    assert [e.name for e in etf_store.list_etfs()] == ["Emerging Markets", "iShares Core MSCI World"]
    assert etf_store.get_etf(world.id) == world
    with pytest.raises(ETFNotFoundError):
        etf_store.get_etf("missing")


def test_add_etf_rejects_blank_name(etf_store, make_etf):
    with pytest.raises(InvalidHoldingError):
        etf_store.add_etf(make_etf(name=" "))
    assert etf_store.list_etfs() == []


def test_add_lot_requires_known_etf(etf_store):
    with pytest.raises(ETFNotFoundError):
        etf_store.add_lot(_lot("missing", date(2025, 1, 1), "90", 5))


@pytest.mark.parametrize("shares", [0, -3, 2.5])
def test_add_lot_rejects_bad_share_counts(etf_store, make_etf, shares):
    etf = etf_store.add_etf(make_etf())
    with pytest.raises(InvalidHoldingError):
        etf_store.add_lot(_lot(etf.id, date(2025, 1, 1), "90", shares))


def test_fifo_plan_takes_oldest_first():
    old = _lot("e", date(2024, 1, 1), "80", 5)
    new = _lot("e", date(2025, 1, 1), "95", 10)

    assert fifo_plan([new, old], 7) == [(old, 5), (new, 2)]
    assert fifo_plan([new, old], 3) == [(old, 3)]
    with pytest.raises(InvalidHoldingError):
        fifo_plan([new, old], 16)
    with pytest.raises(InvalidHoldingError):
        fifo_plan([new, old], 0)


def test_sell_shares_consumes_lots_fifo(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf(last_price=Decimal("110")))
    old = etf_store.add_lot(_lot(etf.id, date(2024, 1, 1), "80", 5))
    new = etf_store.add_lot(_lot(etf.id, date(2025, 1, 1), "95", 10))

    sale = etf_store.sell_shares(etf.id, 7, sale_date=date(2025, 6, 1))

    assert sale.proceeds == Decimal("770")
    assert sale.cost_basis == Decimal("590")
    assert sale.gain == Decimal("180")
    remaining = etf_store.lots(etf.id)
    assert [(lot.id, lot.shares) for lot in remaining] == [(new.id, 8)]
    assert old.id not in {lot.id for lot in remaining}


def test_sell_at_explicit_price(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf())
    etf_store.add_lot(_lot(etf.id, date(2024, 1, 1), "80", 5))

    sale = etf_store.sell_shares(etf.id, 5, price="70")

    assert sale.gain == Decimal("-50")
    assert etf_store.lots(etf.id) == []


def test_oversell_leaves_lots_untouched(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf())
    lot = etf_store.add_lot(_lot(etf.id, date(2024, 1, 1), "80", 5))

    with pytest.raises(InvalidHoldingError):
        etf_store.sell_shares(etf.id, 6)
    with pytest.raises(InvalidHoldingError):
        etf_store.sell_shares(etf.id, 1, price="-1")

    assert etf_store.lots(etf.id) == [lot]


def test_record_price_updates_last_price_and_history(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf())
    etf_store.record_price(etf.id, Decimal("101.5"), datetime(2025, 3, 1, 9, 0))
    etf_store.record_price(etf.id, "102.25", datetime(2025, 3, 2, 9, 0))

    assert etf_store.get_etf(etf.id).last_price == Decimal("102.25")
    assert [p.price for p in etf_store.price_history(etf.id)] == [Decimal("101.5"), Decimal("102.25")]
    with pytest.raises(ETFNotFoundError):
        etf_store.record_price("missing", 1)
    with pytest.raises(InvalidHoldingError):
        etf_store.record_price(etf.id, "not a price")


def test_positions(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf(last_price=Decimal("120")))
    etf_store.add_lot(_lot(etf.id, date(2024, 1, 1), "80", 5))
    etf_store.add_lot(_lot(etf.id, date(2025, 1, 1), "100", 10))
    empty = etf_store.add_etf(make_etf(name="Unused"))

    by_name = {p.etf.name: p for p in etf_store.positions()}

    position = by_name[etf.name]
    assert position.shares == 15
    assert position.cost == Decimal("1400")
    assert position.market_value == Decimal("1800")
    assert position.profit == Decimal("400")
    assert by_name[empty.name].shares == 0
    assert by_name[empty.name].pct_gain == 0


def test_build_position_without_lots(make_etf):
    position = build_position(make_etf(), [])
    assert position.shares == 0
    assert position.cost == 0


def test_lot_annual_yield():
    lot = _lot("e", date(2024, 1, 1), "100", 1)
    assert float(lot_annual_yield(lot, Decimal("110"), today=date(2024, 12, 31))) == pytest.approx(10)
    # Bought today counts as one day held
    assert lot_annual_yield(lot, Decimal("101"), today=date(2024, 1, 1)) == Decimal("365")


def test_delete_etf_removes_lots_and_prices(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf())
    other = etf_store.add_etf(make_etf(name="Other"))
    etf_store.add_lot(_lot(etf.id, date(2024, 1, 1), "80", 5))
    etf_store.record_price(etf.id, 90)
    etf_store.record_price(other.id, 50)

    etf_store.delete_etf(etf.id)

    assert [e.id for e in etf_store.list_etfs()] == [other.id]
    assert etf_store.lots() == []
    assert {p.etf_id for p in etf_store.price_history()} == {other.id}
    with pytest.raises(ETFNotFoundError):
        etf_store.delete_etf(etf.id)


def test_refresh_prices_collects_failures(etf_store, make_etf):
    good = etf_store.add_etf(make_etf(isin="GOOD"))
    bad = etf_store.add_etf(make_etf(name="Bad", isin="BAD"))

    def fetch_price(isin):
        if isin == "BAD":
            raise BondDataError("no quote")
        return Decimal("123.45")

    failures = refresh_prices(etf_store, fetch_price, datetime(2025, 5, 1, 12, 0))

    assert list(failures) == [bad.id]
    assert isinstance(failures[bad.id], BondDataError)
    assert etf_store.get_etf(good.id).last_price == Decimal("123.45")
    assert etf_store.get_etf(bad.id).last_price == Decimal("100")
    assert [p.etf_id for p in etf_store.price_history()] == [good.id]


def test_upsert_etfs_replaces_lots_and_prices(etf_store, make_etf):
    etf = etf_store.add_etf(make_etf())
    etf_store.add_lot(_lot(etf.id, date(2024, 1, 1), "80", 5))
    etf_store.record_price(etf.id, 90)

    renamed = replace(etf, name="Renamed", last_price=Decimal("95"))
    new_lot = _lot(etf.id, date(2025, 2, 1), "92", 3)

    assert etf_store.upsert_etfs([(renamed, [new_lot], [])]) == 1

    assert etf_store.get_etf(etf.id).name == "Renamed"
    assert etf_store.lots(etf.id) == [new_lot]
    assert etf_store.price_history(etf.id) == []
