"""What happened to the portfolio since the last launch."""
import logging
from datetime import date, timedelta
from typing import Iterable, List

import duckdb

from bondfolio.core.cashflows import anniversary
from bondfolio.core.db import get_setting, set_setting
from bondfolio.core.formatting import format_currency, format_date
from bondfolio.core.models import BondTerms, LaunchEvent

logger = logging.getLogger(__name__)

LAST_LAUNCH_KEY = "last_launch_date"
DEFAULT_LOOKBACK_DAYS = 7

MATURED = "Matured"
COUPON = "Coupon"


def launch_events(bonds: Iterable[BondTerms], last_launch: date, today: date) -> List[LaunchEvent]:
    """
    Maturities and coupons between the last launch and today.

    A maturity counts when last_launch <= maturity < today; a coupon when
    last_launch < coupon date <= today and the coupon date is not after
    maturity.
    """
    events = []
    for bond in bonds:
        if last_launch <= bond.maturity_date < today:
            events.append(LaunchEvent(
                name=bond.name,
                custodian=bond.custodian,
                kind=MATURED,
                date=bond.maturity_date,
                amount=bond.par_value,
            ))

        for year in range(last_launch.year, today.year + 1):
            coupon_date = anniversary(year, bond.maturity_date.month, bond.maturity_date.day)
            if last_launch < coupon_date <= today and coupon_date <= bond.maturity_date:
                events.append(LaunchEvent(
                    name=bond.name,
                    custodian=bond.custodian,
                    kind=COUPON,
                    date=coupon_date,
                    amount=bond.annual_coupon,
                ))

    return sorted(events, key=lambda e: (e.date, e.name, e.kind))


def format_launch_message(events: List[LaunchEvent], currency: str = "EUR") -> str | None:
    """
    Render events as an alert text, grouping consecutive events of the same
    bond and custodian. Returns None when there is nothing to report.
    """
    if not events:
        return None

    lines = ["Since your last visit:"]
    previous = None
    for event in events:
        key = (event.name, event.custodian)
        if key != previous:
            if previous is not None:
                lines.append("")
            lines.append(f"{event.name} at {event.custodian}:")
            previous = key
        lines.append(f"- {format_date(event.date)}, {event.kind}: {format_currency(event.amount, currency, 2)}")

    return "\n".join(lines)


def check_since_last_launch(
    conn: duckdb.DuckDBPyConnection,
    bonds: Iterable[BondTerms],
    today: date | None = None,
) -> str | None:
    """
    Build the launch message and record today as the new last launch date.

    Without a stored date the lookback starts one week ago.
    """
    if today is None:
        today = date.today()

    saved = get_setting(conn, LAST_LAUNCH_KEY)
    if saved:
        last_launch = date.fromisoformat(saved)
    else:
        last_launch = today - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    logger.info("Last launch date: %s", last_launch)

    currency = get_setting(conn, "base_currency") or "EUR"
    message = format_launch_message(launch_events(bonds, last_launch, today), currency)

    set_setting(conn, LAST_LAUNCH_KEY, today.isoformat())
    return message
