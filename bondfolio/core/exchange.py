"""JSON export, import and validation of bonds and ETFs."""
import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Tuple

from bondfolio.core.errors import InvalidBondError, InvalidHoldingError
from bondfolio.core.etfs import ETFStore
from bondfolio.core.models import (
    ETF,
    BondTerms,
    CashFlowEvent,
    CashFlowNature,
    ETFLot,
    ETFPricePoint,
    ValidationReport,
)
from bondfolio.core.store import CashFlowStore

logger = logging.getLogger(__name__)

BONDS_FILE = "bonds.json"
ETFS_FILE = "etfs.json"

BondRecord = Tuple[BondTerms, List[CashFlowEvent], float | None]
ETFRecord = Tuple[ETF, List[ETFLot], List[ETFPricePoint]]


def bond_to_dict(bond: BondTerms, ytm: float, events: List[CashFlowEvent]) -> Dict:
    return {
        "id": bond.id,
        "name": bond.name,
        "isin": bond.isin,
        "wkn": bond.wkn,
        "issuer": bond.issuer,
        "depotBank": bond.custodian,
        "acquisitionDate": bond.acquisition_date.isoformat(),
        "maturityDate": bond.maturity_date.isoformat(),
        "couponRate": float(bond.coupon_rate),
        "parValue": float(bond.par_value),
        "initialPrice": float(bond.initial_price),
        "yieldToMaturity": ytm,
        "cashFlows": [
            {
                "date": event.date.isoformat(),
                "amount": float(event.amount),
                "nature": event.nature.value,
            }
            for event in events
        ],
    }


def _parse_date(value, field: str, error=InvalidBondError) -> date:
    # Older exports carried a time component: 2025-05-01T00:00:00Z
    try:
        return date.fromisoformat(str(value).split("T")[0])
    except ValueError:
        raise error(f"Invalid date for {field}: {value!r}") from None


def _parse_decimal(value, field: str, error=InvalidBondError) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise error(f"Invalid number for {field}: {value!r}") from None


def _parse_shares(value) -> int:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidHoldingError(f"Invalid number of shares: {value!r}")
    return int(value)


def _parse_nature(value) -> CashFlowNature:
    try:
        return CashFlowNature(value)
    except ValueError:
        raise InvalidBondError(f"Unknown cash-flow nature: {value!r}") from None


def bond_from_dict(data: Dict) -> BondRecord:
    """
    Decode one exported bond.

    Raises:
        InvalidBondError: a field is missing or malformed
    """
    try:
        bond = BondTerms(
            id=str(data["id"]),
            name=data["name"],
            isin=data.get("isin", ""),
            wkn=data.get("wkn", ""),
            issuer=data.get("issuer", ""),
            custodian=data.get("depotBank", ""),
            acquisition_date=_parse_date(data["acquisitionDate"], "acquisitionDate"),
            maturity_date=_parse_date(data["maturityDate"], "maturityDate"),
            coupon_rate=_parse_decimal(data["couponRate"], "couponRate"),
            par_value=_parse_decimal(data["parValue"], "parValue"),
            initial_price=_parse_decimal(data["initialPrice"], "initialPrice"),
        )
        events = [
            CashFlowEvent(
                bond_id=bond.id,
                date=_parse_date(flow["date"], "cashFlows.date"),
                amount=_parse_decimal(flow["amount"], "cashFlows.amount"),
                nature=_parse_nature(flow["nature"]),
            )
            for flow in data.get("cashFlows", [])
        ]
    except KeyError as e:
        raise InvalidBondError(f"Missing field {e.args[0]!r} in bond {data.get('id')}") from None

    ytm = data.get("yieldToMaturity")
    return bond, events, float(ytm) if ytm is not None else None


def export_bonds(store: CashFlowStore, folder: str | Path) -> Path:
    """Write every bond with its YTM and cash flows to <folder>/bonds.json."""
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)

    records = [
        bond_to_dict(bond, store.stored_ytm(bond.id), store.cash_flows(bond.id))
        for bond in store.list_bonds()
    ]

    path = folder / BONDS_FILE
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(json.dumps(records, indent=2), encoding="utf-8")
    tmp_path.replace(path)

    logger.info("Exported %d bonds to %s", len(records), path)
    return path


def load_bonds_file(path: str | Path) -> List[BondRecord]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise InvalidBondError(f"{path}: expected a list of bonds")
    return [bond_from_dict(item) for item in data]


def import_bonds(store: CashFlowStore, folder: str | Path) -> int:
    """
    Read <folder>/bonds.json and merge it into the store.

    Existing bonds (same id) are overwritten and their cash flows replaced by
    the file's. The whole file is decoded before anything is written.
    """
    path = Path(folder) / BONDS_FILE
    records = load_bonds_file(path)
    count = store.upsert_bonds(records)
    logger.info("Imported %d bonds from %s", count, path)
    return count


def validate_export(store: CashFlowStore, folder: str | Path) -> ValidationReport:
    """Compare an exported bonds.json with the store and list every discrepancy."""
    report = ValidationReport()
    path = Path(folder) / BONDS_FILE

    try:
        records = load_bonds_file(path)
    except (OSError, ValueError) as e:
        report.issues.append(f"Error validating {BONDS_FILE}: {e}")
        return report

    stored = {bond.id: bond for bond in store.list_bonds()}
    exported = {bond.id: (bond, events) for bond, events, _ in records}

    for bond_id, bond in stored.items():
        if bond_id not in exported:
            report.issues.append(f"Bond {bond.name} ({bond_id}) missing from JSON")
    for bond_id, (bond, _) in exported.items():
        if bond_id not in stored:
            report.issues.append(f"JSON contains unknown bond {bond.name} ({bond_id})")

    for bond_id, (json_bond, json_events) in exported.items():
        db_bond = stored.get(bond_id)
        if db_bond is None:
            continue
        for field in ("name", "isin", "issuer", "custodian", "par_value", "coupon_rate",
                      "initial_price", "acquisition_date", "maturity_date"):
            db_value = getattr(db_bond, field)
            json_value = getattr(json_bond, field)
            if db_value != json_value:
                report.issues.append(f"Bond[{bond_id}] {field}: store={db_value} JSON={json_value}")
        if len(store.cash_flows(bond_id)) != len(json_events):
            report.issues.append(f"Bond[{bond_id}] cash-flow count differs")

    return report


def etf_to_dict(etf: ETF, lots: List[ETFLot], prices: List[ETFPricePoint]) -> Dict:
    return {
        "id": etf.id,
        "etfName": etf.name,
        "isin": etf.isin,
        "wkn": etf.wkn,
        "issuer": etf.issuer,
        "lastPrice": float(etf.last_price),
        "priceHistory": [
            {
                "datePrice": point.ts.isoformat(),
                "price": float(point.price),
                "etfId": etf.id,
            }
            for point in prices
        ],
        "holdings": [
            {
                "id": lot.id,
                "etfId": etf.id,
                "acquisitionDate": lot.acquisition_date.isoformat(),
                "acquisitionPrice": float(lot.acquisition_price),
                "numberOfShares": lot.shares,
            }
            for lot in lots
        ],
    }


def _parse_timestamp(value, field: str) -> datetime:
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidHoldingError(f"Invalid timestamp for {field}: {value!r}") from None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def etf_from_dict(data: Dict) -> ETFRecord:
    """
    Decode one exported ETF with its holdings and price history.

    Raises:
        InvalidHoldingError: a field is missing or malformed
    """
    try:
        etf = ETF(
            id=str(data["id"]),
            name=data["etfName"],
            isin=data.get("isin", ""),
            wkn=data.get("wkn", ""),
            issuer=data.get("issuer", ""),
            last_price=_parse_decimal(data.get("lastPrice", 0), "lastPrice", InvalidHoldingError),
        )
        lots = [
            ETFLot(
                id=str(holding["id"]),
                etf_id=etf.id,
                acquisition_date=_parse_date(holding["acquisitionDate"], "holdings.acquisitionDate",
                                             InvalidHoldingError),
                acquisition_price=_parse_decimal(holding["acquisitionPrice"], "holdings.acquisitionPrice",
                                                 InvalidHoldingError),
                shares=_parse_shares(holding["numberOfShares"]),
            )
            for holding in data.get("holdings", [])
        ]
        prices = [
            ETFPricePoint(
                etf_id=etf.id,
                ts=_parse_timestamp(point["datePrice"], "priceHistory.datePrice"),
                price=_parse_decimal(point["price"], "priceHistory.price", InvalidHoldingError),
            )
            for point in data.get("priceHistory", [])
        ]
    except KeyError as e:
        raise InvalidHoldingError(f"Missing field {e.args[0]!r} in ETF {data.get('id')}") from None

    return etf, lots, prices


def export_etfs(store: ETFStore, folder: str | Path) -> Path:
    """Write every ETF with its holdings and price history to <folder>/etfs.json."""
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)

    records = [
        etf_to_dict(etf, store.lots(etf.id), store.price_history(etf.id))
        for etf in store.list_etfs()
    ]

    path = folder / ETFS_FILE
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_text(json.dumps(records, indent=2), encoding="utf-8")
    tmp_path.replace(path)

    logger.info("Exported %d ETFs to %s", len(records), path)
    return path


def import_etfs(store: ETFStore, folder: str | Path) -> int:
    """
    Read <folder>/etfs.json and merge it into the store.

    Existing ETFs are overwritten, their lots and prices replaced by the file's.
    """
    path = Path(folder) / ETFS_FILE
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise InvalidHoldingError(f"{path}: expected a list of ETFs")

    records = [etf_from_dict(item) for item in data]
    count = store.upsert_etfs(records)
    logger.info("Imported %d ETFs from %s", count, path)
    return count
