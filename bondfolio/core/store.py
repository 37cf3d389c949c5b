"""Bond and cash-flow persistence on top of DuckDB."""
import logging
from decimal import Decimal
from typing import Iterable, List, Tuple

from bondfolio.core.cashflows import build_schedule
from bondfolio.core.db import Repository
from bondfolio.core.errors import BondNotFoundError, validate_bond
from bondfolio.core.models import BondTerms, CashFlowEvent, CashFlowNature, RegenerationFailures

logger = logging.getLogger(__name__)

BOND_COLUMNS = """
    id, name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
    maturity_date, acquisition_date, custodian
"""


def _row_to_bond(row) -> BondTerms:
    (bond_id, name, issuer, isin, wkn, par_value, coupon_rate, initial_price,
     maturity_date, acquisition_date, custodian) = row
    return BondTerms(
        id=bond_id,
        name=name,
        issuer=issuer,
        isin=isin,
        wkn=wkn,
        par_value=Decimal(str(par_value)),
        coupon_rate=Decimal(str(coupon_rate)),
        initial_price=Decimal(str(initial_price)),
        maturity_date=maturity_date,
        acquisition_date=acquisition_date,
        custodian=custodian,
    )


class CashFlowStore(Repository):
    """
    Owns bonds and their cash-flow events.

    Every write runs inside one DuckDB transaction on its own cursor, under
    the store lock. A bond's event set is either fully replaced or left as
    it was, and reading terms, building a schedule and writing it happen as
    one step with respect to other writers.
    """

    # Bonds

    def list_bonds(self) -> List[BondTerms]:
        rows = self._fetchall(f"""
            SELECT {BOND_COLUMNS}
            FROM bonds
            ORDER BY maturity_date, name
        """)
        return [_row_to_bond(row) for row in rows]

    def get_bond(self, bond_id: str) -> BondTerms:
        row = self._fetchone(f"""
            SELECT {BOND_COLUMNS}
            FROM bonds
            WHERE id = ?
        """, [bond_id])
        if row is None:
            raise BondNotFoundError(bond_id)
        return _row_to_bond(row)

    def has_bond(self, bond_id: str) -> bool:
        return self._fetchone("SELECT 1 FROM bonds WHERE id = ?", [bond_id]) is not None

    def stored_ytm(self, bond_id: str) -> float:
        row = self._fetchone("SELECT yield_to_maturity FROM bonds WHERE id = ?", [bond_id])
        if row is None:
            raise BondNotFoundError(bond_id)
        return row[0]

    def add_bond(self, bond: BondTerms) -> List[CashFlowEvent]:
        """Insert a new bond together with its generated schedule."""
        validate_bond(bond)
        events = build_schedule(bond)
        with self._transaction(bond.id) as conn:
            self._insert_bond(conn, bond, bond.yield_at_acquisition)
            self._insert_events(conn, bond.id, events)
        logger.info("Added bond %s (%s) with %d cash flows", bond.name, bond.id, len(events))
        return events

    def update_bond(self, bond: BondTerms) -> List[CashFlowEvent]:
        """Replace a bond's terms and regenerate its schedule in one transaction."""
        validate_bond(bond)
        events = build_schedule(bond)
        with self._transaction(bond.id) as conn:
            if conn.execute("SELECT 1 FROM bonds WHERE id = ?", [bond.id]).fetchone() is None:
                raise BondNotFoundError(bond.id)
            self._update_bond(conn, bond, bond.yield_at_acquisition)
            self._delete_events(conn, bond.id)
            self._insert_events(conn, bond.id, events)
        logger.info("Updated bond %s (%s)", bond.name, bond.id)
        return events

    def delete_bonds(self, bond_ids: Iterable[str]) -> int:
        """Delete bonds and every event they own. Returns the number of bonds removed."""
        bond_ids = list(bond_ids)
        if not bond_ids:
            return 0
        with self._transaction() as conn:
            removed = 0
            for bond_id in bond_ids:
                if conn.execute("SELECT 1 FROM bonds WHERE id = ?", [bond_id]).fetchone() is None:
                    continue
                self._delete_events(conn, bond_id)
                conn.execute("DELETE FROM bonds WHERE id = ?", [bond_id])
                removed += 1
        logger.info("Deleted %d bonds", removed)
        return removed

    def delete_bond(self, bond_id: str) -> None:
        if not self.delete_bonds([bond_id]):
            raise BondNotFoundError(bond_id)

    def upsert_bonds(self, records: List[Tuple[BondTerms, List[CashFlowEvent], float | None]]) -> int:
        """
        Insert or overwrite bonds together with externally supplied event sets.

        All records are written in a single transaction: either the whole
        batch lands or nothing changes. A missing YTM is recomputed.
        """
        for bond, _, _ in records:
            validate_bond(bond)

        with self._transaction() as conn:
            for bond, events, ytm in records:
                if ytm is None:
                    ytm = bond.yield_at_acquisition
                if conn.execute("SELECT 1 FROM bonds WHERE id = ?", [bond.id]).fetchone() is None:
                    self._insert_bond(conn, bond, ytm)
                else:
                    self._update_bond(conn, bond, ytm)
                self._delete_events(conn, bond.id)
                self._insert_events(conn, bond.id, events)
        logger.info("Upserted %d bonds", len(records))
        return len(records)

    # Cash flows

    def cash_flows(self, bond_id: str | None = None) -> List[CashFlowEvent]:
        """Persisted events, for one bond or all, ordered by date."""
        query = "SELECT bond_id, date, amount, nature FROM cash_flows"
        params = []
        if bond_id is not None:
            query += " WHERE bond_id = ?"
            params.append(bond_id)
        query += " ORDER BY date, bond_id, seq"

        return [
            CashFlowEvent(
                bond_id=row[0],
                date=row[1],
                amount=Decimal(str(row[2])),
                nature=CashFlowNature(row[3]),
            )
            for row in self._fetchall(query, params)
        ]

    def replace_cash_flows(self, bond_id: str, events: List[CashFlowEvent]) -> None:
        """
        Atomically replace all events of a bond.

        Raises:
            PersistenceError: the write failed; the previous events are still in place
        """
        with self._transaction(bond_id) as conn:
            self._delete_events(conn, bond_id)
            self._insert_events(conn, bond_id, events)
        logger.debug("Replaced cash flows for bond %s (%d events)", bond_id, len(events))

    def regenerate(self, bond_id: str) -> List[CashFlowEvent]:
        """Rebuild one bond's schedule from its stored terms."""
        # update_bond must not land between the read and the write
        with self._lock:
            bond = self.get_bond(bond_id)
            events = build_schedule(bond)
            self.replace_cash_flows(bond.id, events)
        return events

    def regenerate_all(self) -> RegenerationFailures:
        """
        Rebuild every bond's schedule.

        Each bond is handled on its own; a failure is logged and collected
        instead of stopping the batch.

        Returns:
            Dict of {bond_id: error} for the bonds that could not be regenerated
        """
        failures: RegenerationFailures = {}
        bonds = self.list_bonds()

        for bond in bonds:
            try:
                self.regenerate(bond.id)
            except Exception as e:
                logger.error("Cash-flow regeneration failed for %s (%s): %s", bond.name, bond.id, e)
                failures[bond.id] = e

        logger.info("Regenerated cash flows for %d of %d bonds", len(bonds) - len(failures), len(bonds))
        return failures

    # Internals

    def _insert_bond(self, conn, bond: BondTerms, ytm: float) -> None:
        conn.execute(f"""
            INSERT INTO bonds ({BOND_COLUMNS}, yield_to_maturity)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            bond.id, bond.name, bond.issuer, bond.isin, bond.wkn,
            bond.par_value, bond.coupon_rate, bond.initial_price,
            bond.maturity_date, bond.acquisition_date, bond.custodian, ytm,
        ])

    def _update_bond(self, conn, bond: BondTerms, ytm: float) -> None:
        # The id is the key and never changes
        conn.execute("""
            UPDATE bonds SET
                name = ?, issuer = ?, isin = ?, wkn = ?,
                par_value = ?, coupon_rate = ?, initial_price = ?,
                maturity_date = ?, acquisition_date = ?, custodian = ?,
                yield_to_maturity = ?
            WHERE id = ?
        """, [
            bond.name, bond.issuer, bond.isin, bond.wkn,
            bond.par_value, bond.coupon_rate, bond.initial_price,
            bond.maturity_date, bond.acquisition_date, bond.custodian,
            ytm, bond.id,
        ])

    def _delete_events(self, conn, bond_id: str) -> None:
        conn.execute("DELETE FROM cash_flows WHERE bond_id = ?", [bond_id])

    def _insert_events(self, conn, bond_id: str, events: List[CashFlowEvent]) -> None:
        if not events:
            return
        conn.executemany("""
            INSERT INTO cash_flows (bond_id, seq, date, amount, nature)
            VALUES (?, ?, ?, ?, ?)
        """, [
            [bond_id, seq, event.date, event.amount, event.nature.value]
            for seq, event in enumerate(events)
        ])
