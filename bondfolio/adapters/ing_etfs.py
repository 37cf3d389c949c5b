"""ING component API adapter for ETF quotes."""
import logging
from decimal import Decimal
from typing import Dict

from bondfolio.adapters.ing_bonds import ING_BASE_URL, get_json
from bondfolio.core.errors import BondDataError

logger = logging.getLogger(__name__)


def _optional_decimal(value) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        logger.warning("Ignoring non-numeric quote field %r", value)
        return None


def fetch_instrument_header(isin: str) -> Dict:
    """
    Fetch name, WKN and quote data for an ETF.

    Args:
        isin: ETF ISIN (e.g., "IE00B4L5Y983")

    Returns:
        Dict with isin, name, wkn, price and, when the provider sends them,
        close, change_percent, change_absolute, instrument_type, currency
    """
    isin = isin.strip().upper()
    data = get_json(f"{ING_BASE_URL}/components/instrumentheader/{isin}")

    try:
        header = {
            "isin": isin,
            "name": data["name"],
            "wkn": data["wkn"],
            "price": Decimal(str(data["price"])),
        }
    except KeyError as e:
        raise BondDataError(f"Instrument header for {isin} has no {e.args[0]}") from e
    except ArithmeticError as e:
        raise BondDataError(f"Invalid price for {isin}: {data.get('price')!r}") from e

    optional = {
        "close": _optional_decimal(data.get("close")),
        "change_percent": _optional_decimal(data.get("changePercent")),
        "change_absolute": _optional_decimal(data.get("changeAbsolute")),
        "instrument_type": data.get("instrumentTypeDisplayName"),
        "currency": data.get("currency"),
    }
    header.update({key: value for key, value in optional.items() if value is not None})
    return header


def fetch_price(isin: str) -> Decimal:
    """Fetch the current quote of an ETF."""
    price = fetch_instrument_header(isin)["price"]
    logger.debug("Fetched price %s for %s", price, isin)
    return price
