"""Point-in-time valuation snapshots of the bond and ETF holdings."""
import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List

from bondfolio.core.db import Repository
from bondfolio.core.models import (
    AssetType,
    BondTerms,
    CashFlowEvent,
    CashFlowNature,
    ETFPosition,
    HistoricalValuation,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def snapshot_portfolio(
    bonds: Iterable[BondTerms],
    events: Iterable[CashFlowEvent],
    positions: Iterable[ETFPosition],
    taken_at: datetime,
) -> List[HistoricalValuation]:
    """
    Value the holdings as of `taken_at`.

    Bonds give one row per custodian over the bonds not yet matured:
    invested capital is their par value, interest received the sum of their
    interest events up to the snapshot day. Capital gains stay 0 until
    maturity. ETFs give a single row (no custodian, no interest) with their
    cost as invested capital and the unrealised profit as capital gains,
    and only when any shares are held.
    """
    day = taken_at.date()
    held = [bond for bond in bonds if bond.maturity_date >= day]
    ids = {bond.id for bond in held}

    interest: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for event in events:
        if event.bond_id in ids and event.nature == CashFlowNature.INTEREST and event.date <= day:
            interest[event.bond_id] += event.amount

    by_custodian: Dict[str, List[BondTerms]] = defaultdict(list)
    for bond in held:
        by_custodian[bond.custodian].append(bond)

    valuations = []
    for custodian in sorted(by_custodian, key=str.casefold):
        group = by_custodian[custodian]
        valuations.append(HistoricalValuation(
            taken_at=taken_at,
            asset_type=AssetType.BOND,
            custodian=custodian,
            invested_capital=sum((bond.par_value for bond in group), ZERO),
            interest_received=sum((interest[bond.id] for bond in group), ZERO),
            capital_gains=ZERO,
        ))

    positions = [position for position in positions if position.shares > 0]
    if positions:
        valuations.append(HistoricalValuation(
            taken_at=taken_at,
            asset_type=AssetType.ETF,
            custodian=None,
            invested_capital=sum((position.cost for position in positions), ZERO),
            interest_received=None,
            capital_gains=sum((position.profit for position in positions), ZERO),
        ))

    return valuations


def _row_to_valuation(row) -> HistoricalValuation:
    valuation_id, taken_at, asset_type, custodian, invested, interest, gains = row
    return HistoricalValuation(
        id=valuation_id,
        taken_at=taken_at,
        asset_type=AssetType(asset_type),
        custodian=custodian,
        invested_capital=Decimal(str(invested)),
        interest_received=Decimal(str(interest)) if interest is not None else None,
        capital_gains=Decimal(str(gains)),
    )


class ValuationStore(Repository):
    """Append-only history of valuation snapshots."""

    def save(self, valuations: List[HistoricalValuation]) -> int:
        if not valuations:
            return 0
        with self._transaction() as conn:
            conn.executemany("""
                INSERT INTO historical_valuations
                    (id, taken_at, asset_type, custodian, invested_capital, interest_received, capital_gains)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                [v.id, v.taken_at, v.asset_type.value, v.custodian,
                 v.invested_capital, v.interest_received, v.capital_gains]
                for v in valuations
            ])
        logger.info("Saved %d valuation rows taken at %s", len(valuations), valuations[0].taken_at)
        return len(valuations)

    def history(self, asset_type: AssetType | None = None) -> List[HistoricalValuation]:
        """All snapshots, oldest first."""
        query = """
            SELECT id, taken_at, asset_type, custodian, invested_capital, interest_received, capital_gains
            FROM historical_valuations
        """
        params = []
        if asset_type is not None:
            query += " WHERE asset_type = ?"
            params.append(asset_type.value)
        query += " ORDER BY taken_at, asset_type, custodian"
        return [_row_to_valuation(row) for row in self._fetchall(query, params)]

    def latest(self) -> List[HistoricalValuation]:
        """Rows of the most recent snapshot."""
        history = self.history()
        if not history:
            return []
        last = history[-1].taken_at
        return [v for v in history if v.taken_at == last]


def take_snapshot(bond_store, etf_store, valuation_store: ValuationStore,
                  taken_at: datetime | None = None) -> List[HistoricalValuation]:
    """Snapshot the current holdings of both stores and persist the rows."""
    if taken_at is None:
        taken_at = datetime.now().replace(microsecond=0)

    valuations = snapshot_portfolio(
        bond_store.list_bonds(),
        bond_store.cash_flows(),
        etf_store.positions(),
        taken_at,
    )
    valuation_store.save(valuations)
    return valuations
