"""Cash-flow schedule generation for a single bond."""
import calendar
from datetime import date
from decimal import Decimal
from typing import Iterator, List

from bondfolio.core.models import BondTerms, CashFlowEvent, CashFlowNature


def anniversary(year: int, month: int, day: int) -> date:
    """Build (year, month, day), clamping 29 February to the 28th in non-leap years."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def coupon_dates(bond: BondTerms) -> Iterator[date]:
    """
    Yield the yearly coupon dates of a bond.

    Coupons fall on the (month, day) of the maturity date. The first one is
    the first anniversary strictly after the acquisition date, the last one
    is the maturity date itself.
    """
    maturity = bond.maturity_date
    year = bond.acquisition_date.year
    candidate = anniversary(year, maturity.month, maturity.day)
    # A bond bought on a coupon date does not receive that coupon
    if candidate <= bond.acquisition_date:
        year += 1
        candidate = anniversary(year, maturity.month, maturity.day)

    while candidate <= maturity:
        yield candidate
        year += 1
        candidate = anniversary(year, maturity.month, maturity.day)


def build_schedule(bond: BondTerms) -> List[CashFlowEvent]:
    """
    Generate the full set of cash-flow events for a bond.

    Produces, in order:
      - one interest event per coupon date (skipped for zero-coupon bonds)
      - a principal event at maturity for the par value
      - a capitalGain or capitalLoss event at maturity for par - price (none if equal)
      - an expectedProfit event at maturity: total interest + par - price

    The result is deterministic for identical terms. Persisting it is the
    store's job (see CashFlowStore.replace_cash_flows).
    """
    maturity = bond.maturity_date
    coupon = bond.annual_coupon

    events: List[CashFlowEvent] = []
    sum_interest = Decimal("0")

    for pay_date in coupon_dates(bond):
        sum_interest += coupon
        if coupon != 0:
            events.append(CashFlowEvent(bond.id, pay_date, coupon, CashFlowNature.INTEREST))

    events.append(CashFlowEvent(bond.id, maturity, bond.par_value, CashFlowNature.PRINCIPAL))

    delta = bond.par_value - bond.initial_price
    if delta > 0:
        events.append(CashFlowEvent(bond.id, maturity, delta, CashFlowNature.CAPITAL_GAIN))
    elif delta < 0:
        events.append(CashFlowEvent(bond.id, maturity, delta, CashFlowNature.CAPITAL_LOSS))

    events.append(CashFlowEvent(bond.id, maturity, sum_interest + delta, CashFlowNature.EXPECTED_PROFIT))

    return events
