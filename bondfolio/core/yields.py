"""Yield-to-maturity at acquisition."""
from datetime import date
from decimal import Decimal

# Same-day or inverted dates would divide by zero
MIN_YEARS = 0.000_001


def compute_ytm(
    par_value: Decimal | float,
    coupon_rate: Decimal | float,
    initial_price: Decimal | float,
    acquisition_date: date,
    maturity_date: date,
) -> float:
    """
    Approximate yield-to-maturity at the time of acquisition.

        YTM = (C + (F - P) / n) / ((F + P) / 2)

    C is the annual coupon, F the par value, P the acquisition price and
    n the fractional number of years to maturity (days / 365).

    Returns:
        YTM as a ratio (0.035 means 3.5%)
    """
    days = (maturity_date - acquisition_date).days
    years = max(days / 365.0, MIN_YEARS)

    face = float(par_value)
    price = float(initial_price)
    coupon = float(coupon_rate) / 100.0 * face

    denominator = (face + price) / 2.0
    if denominator == 0:
        return 0.0

    return (coupon + (face - price) / years) / denominator
