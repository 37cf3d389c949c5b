"""Tests for JSON export, import and validation."""
import json
from datetime import date, datetime
from decimal import Decimal

import pytest

from bondfolio.core.errors import InvalidBondError, InvalidHoldingError
from bondfolio.core.exchange import (
    BONDS_FILE,
    ETFS_FILE,
    bond_from_dict,
    etf_from_dict,
    export_bonds,
    export_etfs,
    import_bonds,
    import_etfs,
    validate_export,
)
from bondfolio.core.models import CashFlowNature, ETFLot


def test_export_then_validate(store, make_bond, tmp_path):
    store.add_bond(make_bond())
    store.add_bond(make_bond(name="Second", initial_price=Decimal("1010")))

    path = export_bonds(store, tmp_path / "export")
    assert path.name == BONDS_FILE

    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data) == 2
    assert {"depotBank", "parValue", "yieldToMaturity", "cashFlows"} <= set(data[0])

    report = validate_export(store, tmp_path / "export")
    assert report.is_valid, report.issues


def test_validate_reports_discrepancies(store, make_bond, tmp_path):
    bond = make_bond()
    store.add_bond(bond)
    export_bonds(store, tmp_path)

    store.add_bond(make_bond(name="Added later"))
    path = tmp_path / BONDS_FILE
    data = json.loads(path.read_text(encoding="utf-8"))
    data[0]["name"] = "Edited by hand"
    data[0]["cashFlows"] = data[0]["cashFlows"][:1]
    path.write_text(json.dumps(data), encoding="utf-8")

    issues = validate_export(store, tmp_path).issues
    assert any("missing from JSON" in issue for issue in issues)
    assert any("name" in issue for issue in issues)
    assert any("cash-flow count" in issue for issue in issues)


def test_validate_missing_file(store, tmp_path):
    report = validate_export(store, tmp_path)
    assert not report.is_valid


def test_import_into_empty_store(store, make_bond, tmp_path):
    bond = make_bond()
    store.add_bond(bond)
    events = store.cash_flows(bond.id)
    export_bonds(store, tmp_path)
    store.delete_bond(bond.id)

    assert import_bonds(store, tmp_path) == 1
    assert store.get_bond(bond.id) == bond
    assert store.cash_flows(bond.id) == events


def test_import_overwrites_existing(store, make_bond, tmp_path):
    bond = make_bond()
    store.add_bond(bond)
    export_bonds(store, tmp_path)

    path = tmp_path / BONDS_FILE
    data = json.loads(path.read_text(encoding="utf-8"))
    data[0]["depotBank"] = "Comdirect"
    path.write_text(json.dumps(data), encoding="utf-8")

    import_bonds(store, tmp_path)
    assert store.get_bond(bond.id).custodian == "Comdirect"
    assert len(store.list_bonds()) == 1


def test_bond_from_dict_accepts_legacy_fields():
    bond, events, ytm = bond_from_dict({
        "id": "legacy-1",
        "name": "Old Export",
        "acquisitionDate": "2021-03-01T00:00:00Z",
        "maturityDate": "2026-03-01T00:00:00Z",
        "couponRate": 1.5,
        "parValue": 1000,
        "initialPrice": 980,
        "cashFlows": [
            {"date": "2026-03-01T00:00:00Z", "amount": 20, "nature": "capitalGains"},
        ],
    })

    assert bond.acquisition_date == date(2021, 3, 1)
    assert bond.custodian == ""
    assert bond.coupon_rate == Decimal("1.5")
    assert events[0].nature == CashFlowNature.CAPITAL_GAIN
    assert ytm is None


@pytest.mark.parametrize("broken", [
    {"name": "No id"},
    {"id": "x", "name": "Bad date", "acquisitionDate": "yesterday", "maturityDate": "2030-01-01",
     "couponRate": 1, "parValue": 1, "initialPrice": 1},
    {"id": "x", "name": "Bad nature", "acquisitionDate": "2020-01-01", "maturityDate": "2030-01-01",
     "couponRate": 1, "parValue": 1, "initialPrice": 1,
     "cashFlows": [{"date": "2030-01-01", "amount": 1, "nature": "dividend"}]},
])
def test_bond_from_dict_rejects_broken_records(broken):
    with pytest.raises(InvalidBondError):
        bond_from_dict(broken)


def test_etf_export_then_import(etf_store, make_etf, tmp_path):
    etf = etf_store.add_etf(make_etf())
    lot = etf_store.add_lot(ETFLot(etf_id=etf.id, acquisition_date=date(2025, 2, 3),
                                   acquisition_price=Decimal("88.5"), shares=12))
    etf_store.record_price(etf.id, "101.25", datetime(2025, 3, 1, 17, 30))

    path = export_etfs(etf_store, tmp_path)
    assert path.name == ETFS_FILE
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data[0]["etfName"] == etf.name
    assert data[0]["holdings"][0]["numberOfShares"] == 12
    assert data[0]["priceHistory"][0]["etfId"] == etf.id

    etf_store.delete_etf(etf.id)
    assert import_etfs(etf_store, tmp_path) == 1

    assert etf_store.get_etf(etf.id).last_price == Decimal("101.25")
    assert etf_store.lots(etf.id) == [lot]
    assert [(p.ts, p.price) for p in etf_store.price_history(etf.id)] == [
        (datetime(2025, 3, 1, 17, 30), Decimal("101.25")),
    ]


def test_etf_from_dict_converts_utc_timestamps():
    etf, lots, prices = etf_from_dict({
        "id": "etf-1",
        "etfName": "World",
        "holdings": [{"id": "lot-1", "acquisitionDate": "2025-01-02T00:00:00Z",
                      "acquisitionPrice": 90, "numberOfShares": 4.0}],
        "priceHistory": [{"datePrice": "2025-05-01T12:00:00+02:00", "price": 95.5}],
    })

    assert etf.last_price == 0
    assert lots[0].shares == 4
    assert lots[0].acquisition_date == date(2025, 1, 2)
    assert prices[0].ts == datetime(2025, 5, 1, 10, 0)


@pytest.mark.parametrize("broken", [
    {"id": "e"},
    {"id": "e", "etfName": "World", "holdings": [{"id": "l", "acquisitionDate": "2025-01-01",
                                                  "acquisitionPrice": 1, "numberOfShares": 1.5}]},
    {"id": "e", "etfName": "World", "priceHistory": [{"datePrice": "yesterday", "price": 1}]},
])
def test_etf_from_dict_rejects_broken_records(broken):
    with pytest.raises(InvalidHoldingError):
        etf_from_dict(broken)
