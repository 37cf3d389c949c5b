"""ETF holdings: lots, price history, FIFO sales and positions."""
import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Tuple

from bondfolio.core.db import Repository
from bondfolio.core.errors import ETFNotFoundError, InvalidHoldingError, validate_etf, validate_lot
from bondfolio.core.models import (
    AMOUNT_QUANTUM,
    ETF,
    ETFLot,
    ETFPosition,
    ETFPricePoint,
    ETFSale,
    RefreshFailures,
)

logger = logging.getLogger(__name__)

ETF_COLUMNS = "id, name, isin, wkn, issuer, last_price"
LOT_COLUMNS = "id, etf_id, acquisition_date, acquisition_price, shares"

ZERO = Decimal("0")


def _row_to_etf(row) -> ETF:
    etf_id, name, isin, wkn, issuer, last_price = row
    return ETF(
        id=etf_id,
        name=name,
        isin=isin,
        wkn=wkn,
        issuer=issuer,
        last_price=Decimal(str(last_price)),
    )


def _row_to_lot(row) -> ETFLot:
    lot_id, etf_id, acquisition_date, acquisition_price, shares = row
    return ETFLot(
        id=lot_id,
        etf_id=etf_id,
        acquisition_date=acquisition_date,
        acquisition_price=Decimal(str(acquisition_price)),
        shares=shares,
    )


def build_position(etf: ETF, lots: Iterable[ETFLot]) -> ETFPosition:
    """Value all lots of an ETF at its last price."""
    lots = list(lots)
    shares = sum(lot.shares for lot in lots)
    return ETFPosition(
        etf=etf,
        lots=lots,
        shares=shares,
        cost=sum((lot.cost for lot in lots), ZERO),
        market_value=etf.last_price * shares,
    )


def lot_annual_yield(lot: ETFLot, last_price: Decimal, today: date | None = None) -> Decimal:
    """
    Price gain per share, annualised linearly: (last - acquisition) / days held * 365.

    A lot bought today counts as held for one day.
    """
    if today is None:
        today = date.today()
    days_held = max((today - lot.acquisition_date).days, 1)
    return (last_price - lot.acquisition_price) / days_held * 365


def fifo_plan(lots: Iterable[ETFLot], shares: int) -> List[Tuple[ETFLot, int]]:
    """
    Pick the shares to sell, oldest lots first.

    Returns:
        List of (lot, shares taken from it)

    Raises:
        InvalidHoldingError: shares is not positive or exceeds the holding
    """
    lots = sorted(lots, key=lambda lot: (lot.acquisition_date, lot.id))
    available = sum(lot.shares for lot in lots)
    if shares <= 0 or shares > available:
        raise InvalidHoldingError(f"Enter a number of shares between 1 and {available}, got {shares}")

    plan = []
    remaining = shares
    for lot in lots:
        if remaining == 0:
            break
        taken = min(lot.shares, remaining)
        plan.append((lot, taken))
        remaining -= taken
    return plan


def _to_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except ArithmeticError:
        raise InvalidHoldingError(f"Invalid price: {value!r}") from None
    if not price.is_finite() or price < 0:
        raise InvalidHoldingError(f"Invalid price: {value!r}")
    return price.quantize(AMOUNT_QUANTUM)


class ETFStore(Repository):
    """Owns ETFs, their lots and their price history."""

    # ETFs

    def list_etfs(self) -> List[ETF]:
        rows = self._fetchall(f"SELECT {ETF_COLUMNS} FROM etfs ORDER BY name, id")
        return [_row_to_etf(row) for row in rows]

    def get_etf(self, etf_id: str) -> ETF:
        row = self._fetchone(f"SELECT {ETF_COLUMNS} FROM etfs WHERE id = ?", [etf_id])
        if row is None:
            raise ETFNotFoundError(etf_id)
        return _row_to_etf(row)

    def add_etf(self, etf: ETF) -> ETF:
        validate_etf(etf)
        with self._transaction(etf.id) as conn:
            self._insert_etf(conn, etf)
        logger.info("Added ETF %s (%s)", etf.name, etf.id)
        return etf

    def delete_etf(self, etf_id: str) -> None:
        """Delete an ETF with all its lots and prices."""
        with self._transaction(etf_id) as conn:
            if conn.execute("SELECT 1 FROM etfs WHERE id = ?", [etf_id]).fetchone() is None:
                raise ETFNotFoundError(etf_id)
            conn.execute("DELETE FROM etf_lots WHERE etf_id = ?", [etf_id])
            conn.execute("DELETE FROM etf_prices WHERE etf_id = ?", [etf_id])
            conn.execute("DELETE FROM etfs WHERE id = ?", [etf_id])
        logger.info("Deleted ETF %s", etf_id)

    # Lots

    def lots(self, etf_id: str | None = None) -> List[ETFLot]:
        query = f"SELECT {LOT_COLUMNS} FROM etf_lots"
        params = []
        if etf_id is not None:
            query += " WHERE etf_id = ?"
            params.append(etf_id)
        query += " ORDER BY acquisition_date, id"
        return [_row_to_lot(row) for row in self._fetchall(query, params)]

    def add_lot(self, lot: ETFLot) -> ETFLot:
        validate_lot(lot)
        with self._transaction(lot.etf_id) as conn:
            if conn.execute("SELECT 1 FROM etfs WHERE id = ?", [lot.etf_id]).fetchone() is None:
                raise ETFNotFoundError(lot.etf_id)
            self._insert_lots(conn, [lot])
        logger.info("Added %d shares of %s bought %s", lot.shares, lot.etf_id, lot.acquisition_date)
        return lot

    def sell_shares(
        self,
        etf_id: str,
        shares: int,
        sale_date: date | None = None,
        price: Decimal | None = None,
    ) -> ETFSale:
        """
        Sell shares of an ETF, consuming the oldest lots first.

        Lots sold completely are deleted, a partly sold lot keeps the rest.
        Without a price the ETF's last price is used for the proceeds.
        """
        if sale_date is None:
            sale_date = date.today()
        if price is not None:
            price = _to_price(price)

        with self._transaction(etf_id) as conn:
            row = conn.execute(f"SELECT {ETF_COLUMNS} FROM etfs WHERE id = ?", [etf_id]).fetchone()
            if row is None:
                raise ETFNotFoundError(etf_id)
            etf = _row_to_etf(row)
            lots = [
                _row_to_lot(r)
                for r in conn.execute(f"SELECT {LOT_COLUMNS} FROM etf_lots WHERE etf_id = ?", [etf_id]).fetchall()
            ]

            plan = fifo_plan(lots, shares)
            for lot, taken in plan:
                if taken == lot.shares:
                    conn.execute("DELETE FROM etf_lots WHERE id = ?", [lot.id])
                else:
                    conn.execute("UPDATE etf_lots SET shares = ? WHERE id = ?", [lot.shares - taken, lot.id])

        sale_price = etf.last_price if price is None else price
        sale = ETFSale(
            etf_id=etf_id,
            date=sale_date,
            shares=shares,
            proceeds=sale_price * shares,
            cost_basis=sum((lot.acquisition_price * taken for lot, taken in plan), ZERO),
        )
        logger.info("Sold %d shares of %s, gain %s", shares, etf.name, sale.gain)
        return sale

    # Prices

    def record_price(self, etf_id: str, price, ts: datetime | None = None) -> ETFPricePoint:
        """Append a quote to the price history and make it the ETF's last price."""
        price = _to_price(price)
        if ts is None:
            ts = datetime.now().replace(microsecond=0)

        with self._transaction(etf_id) as conn:
            if conn.execute("SELECT 1 FROM etfs WHERE id = ?", [etf_id]).fetchone() is None:
                raise ETFNotFoundError(etf_id)
            conn.execute("INSERT INTO etf_prices (etf_id, ts, price) VALUES (?, ?, ?)", [etf_id, ts, price])
            conn.execute("UPDATE etfs SET last_price = ? WHERE id = ?", [price, etf_id])
        return ETFPricePoint(etf_id=etf_id, ts=ts, price=price)

    def price_history(self, etf_id: str | None = None) -> List[ETFPricePoint]:
        query = "SELECT etf_id, ts, price FROM etf_prices"
        params = []
        if etf_id is not None:
            query += " WHERE etf_id = ?"
            params.append(etf_id)
        query += " ORDER BY ts, etf_id"
        return [
            ETFPricePoint(etf_id=row[0], ts=row[1], price=Decimal(str(row[2])))
            for row in self._fetchall(query, params)
        ]

    # Positions

    def positions(self) -> List[ETFPosition]:
        by_etf: Dict[str, List[ETFLot]] = defaultdict(list)
        for lot in self.lots():
            by_etf[lot.etf_id].append(lot)
        return [build_position(etf, by_etf.get(etf.id, [])) for etf in self.list_etfs()]

    # Import

    def upsert_etfs(self, records: List[Tuple[ETF, List[ETFLot], List[ETFPricePoint]]]) -> int:
        """Insert or overwrite ETFs, replacing their lots and prices, in one transaction."""
        for etf, lots, _ in records:
            validate_etf(etf)
            for lot in lots:
                validate_lot(lot)

        with self._transaction() as conn:
            for etf, lots, prices in records:
                if conn.execute("SELECT 1 FROM etfs WHERE id = ?", [etf.id]).fetchone() is None:
                    self._insert_etf(conn, etf)
                else:
                    conn.execute(
                        "UPDATE etfs SET name = ?, isin = ?, wkn = ?, issuer = ?, last_price = ? WHERE id = ?",
                        [etf.name, etf.isin, etf.wkn, etf.issuer, etf.last_price, etf.id],
                    )
                conn.execute("DELETE FROM etf_lots WHERE etf_id = ?", [etf.id])
                conn.execute("DELETE FROM etf_prices WHERE etf_id = ?", [etf.id])
                self._insert_lots(conn, lots)
                if prices:
                    conn.executemany(
                        "INSERT INTO etf_prices (etf_id, ts, price) VALUES (?, ?, ?)",
                        [[etf.id, point.ts, point.price] for point in prices],
                    )
        logger.info("Upserted %d ETFs", len(records))
        return len(records)

    # Internals

    def _insert_etf(self, conn, etf: ETF) -> None:
        conn.execute(f"""
            INSERT INTO etfs ({ETF_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?)
        """, [etf.id, etf.name, etf.isin, etf.wkn, etf.issuer, etf.last_price])

    def _insert_lots(self, conn, lots: List[ETFLot]) -> None:
        if not lots:
            return
        conn.executemany(f"""
            INSERT INTO etf_lots ({LOT_COLUMNS})
            VALUES (?, ?, ?, ?, ?)
        """, [
            [lot.id, lot.etf_id, lot.acquisition_date, lot.acquisition_price, lot.shares]
            for lot in lots
        ])


def refresh_prices(
    store: ETFStore,
    fetch_price: Callable[[str], Decimal],
    ts: datetime | None = None,
) -> RefreshFailures:
    """
    Fetch a quote for every ETF and record it.

    Each ETF is handled on its own; a failure is logged and collected.

    Args:
        store: ETF store to update
        fetch_price: Callable taking an ISIN and returning the current price

    Returns:
        Dict of {etf_id: error} for the ETFs whose price could not be refreshed
    """
    failures: RefreshFailures = {}
    etfs = store.list_etfs()

    for etf in etfs:
        try:
            store.record_price(etf.id, fetch_price(etf.isin), ts)
        except Exception as e:
            logger.error("Price refresh failed for %s (%s): %s", etf.name, etf.isin, e)
            failures[etf.id] = e

    logger.info("Refreshed prices for %d of %d ETFs", len(etfs) - len(failures), len(etfs))
    return failures
