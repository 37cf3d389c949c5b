"""Portfolio-wide par-weighted YTM over time."""
import calendar
from datetime import date
from typing import Iterable, List

from bondfolio.core.models import BondTerms, YTMPoint


def month_end(day: date) -> date:
    return date(day.year, day.month, calendar.monthrange(day.year, day.month)[1])


def weighted_ytm(bonds: Iterable[BondTerms]) -> float:
    """Par-weighted average yield at acquisition; 0 when there is no par value."""
    total_par = 0.0
    weighted = 0.0
    for bond in bonds:
        par = float(bond.par_value)
        total_par += par
        weighted += bond.yield_at_acquisition * par
    return weighted / total_par if total_par > 0 else 0.0


def build_series(bonds: Iterable[BondTerms]) -> List[YTMPoint]:
    """
    One point per month in which a bond was acquired, dated at that month's end.

    Each point averages every bond held as of the month end (acquired on or
    before it), not only the bonds bought that month.
    """
    bonds = list(bonds)
    month_ends = sorted({month_end(bond.acquisition_date) for bond in bonds})

    return [
        YTMPoint(
            date=end,
            ytm=weighted_ytm(b for b in bonds if b.acquisition_date <= end),
        )
        for end in month_ends
    ]
