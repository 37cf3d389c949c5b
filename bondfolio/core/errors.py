"""Error types and input validation for bond and ETF records."""
import math
from datetime import date
from decimal import Decimal

# Matches the scale of the DECIMAL(_, 4) columns
MAX_DECIMAL_PLACES = 4


class BondfolioError(Exception):
    """Base class for all application errors."""


class InvalidBondError(BondfolioError, ValueError):
    """Bond terms or imported data that the engine must not process."""


class InvalidHoldingError(BondfolioError, ValueError):
    """ETF master data, lots or sales that cannot be stored."""


class BondNotFoundError(BondfolioError, KeyError):
    def __init__(self, bond_id: str):
        super().__init__(bond_id)
        self.bond_id = bond_id

    def __str__(self) -> str:
        return f"Bond not found: {self.bond_id}"


class ETFNotFoundError(BondfolioError, KeyError):
    def __init__(self, etf_id: str):
        super().__init__(etf_id)
        self.etf_id = etf_id

    def __str__(self) -> str:
        return f"ETF not found: {self.etf_id}"


class PersistenceError(BondfolioError):
    """A store write failed and was rolled back."""

    def __init__(self, message: str, record_id: str | None = None):
        super().__init__(message)
        self.record_id = record_id

    @property
    def bond_id(self) -> str | None:
        return self.record_id


class BondDataError(BondfolioError):
    """The external bond or ETF data provider could not answer."""


def _is_finite(value) -> bool:
    if isinstance(value, Decimal):
        return value.is_finite()
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _decimal_places(value) -> int:
    exponent = Decimal(str(value)).normalize().as_tuple().exponent
    return max(0, -exponent)


def _check_amount(owner: str, label: str, value, error=InvalidBondError) -> None:
    if not _is_finite(value):
        raise error(f"{owner}: {label} must be a finite number, got {value!r}")
    if value < 0:
        raise error(f"{owner}: {label} must not be negative, got {value}")
    if _decimal_places(value) > MAX_DECIMAL_PLACES:
        raise error(f"{owner}: {label} has more than {MAX_DECIMAL_PLACES} decimal places: {value}")


def validate_bond(bond) -> None:
    """
    Reject bond terms that would produce meaningless metrics.

    Amounts are limited to four decimal places so that what is stored is
    exactly what the schedule was built from.

    Raises:
        InvalidBondError: on the first problem found
    """
    if not bond.name or not bond.name.strip():
        raise InvalidBondError("Bond name is required")

    for label, value in (
        ("par value", bond.par_value),
        ("coupon rate", bond.coupon_rate),
        ("initial price", bond.initial_price),
    ):
        _check_amount(bond.name, label, value)

    if not isinstance(bond.maturity_date, date) or not isinstance(bond.acquisition_date, date):
        raise InvalidBondError(f"{bond.name}: acquisition and maturity dates are required")

    if bond.maturity_date <= bond.acquisition_date:
        raise InvalidBondError(
            f"{bond.name}: maturity date {bond.maturity_date} must be after "
            f"acquisition date {bond.acquisition_date}"
        )


def validate_etf(etf) -> None:
    if not etf.name or not etf.name.strip():
        raise InvalidHoldingError("ETF name is required")
    _check_amount(etf.name, "last price", etf.last_price, InvalidHoldingError)


def validate_lot(lot) -> None:
    if not isinstance(lot.shares, int) or lot.shares <= 0:
        raise InvalidHoldingError(f"Number of shares must be a positive whole number, got {lot.shares!r}")
    _check_amount("ETF lot", "acquisition price", lot.acquisition_price, InvalidHoldingError)
    if not isinstance(lot.acquisition_date, date):
        raise InvalidHoldingError("ETF lot: acquisition date is required")
