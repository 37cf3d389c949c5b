"""ING component API adapter for bond master data."""
import logging
import requests
from datetime import date
from decimal import Decimal
from typing import Dict, Tuple

from bondfolio.core.errors import BondDataError

logger = logging.getLogger(__name__)

ING_BASE_URL = "https://component-api.wertpapiere.ing.de/api/v1"


def get_json(url: str) -> Dict:
    """GET an ING component API URL and decode the JSON body, raising BondDataError on any failure."""
    try:
        resp = requests.get(url, timeout=10)
        resp.raise_for_status()
        return resp.json()
    except requests.HTTPError as e:
        raise BondDataError(f"Server responded with HTTP {e.response.status_code} for {url}") from e
    except requests.RequestException as e:
        raise BondDataError(f"Request failed for {url}: {e}") from e
    except ValueError as e:
        raise BondDataError(f"Failed to parse server response from {url}: {e}") from e


def _parse_day(value: str) -> date:
    return date.fromisoformat(value.split("T")[0])


def fetch_name_and_wkn(isin: str) -> Tuple[str, str]:
    """
    Fetch the instrument name and WKN.

    Args:
        isin: Bond ISIN (e.g., "DE0001102580")

    Returns:
        (name, wkn)
    """
    data = get_json(f"{ING_BASE_URL}/components/instrumentheader/{isin}?assetClass=Bond")
    try:
        return data["name"], data["wkn"]
    except KeyError as e:
        raise BondDataError(f"Instrument header for {isin} has no {e.args[0]}") from e


def fetch_issuer(isin: str) -> str:
    data = get_json(f"{ING_BASE_URL}/bond/masterdata/{isin}?assetClass=Bond")
    try:
        return data["issuerCompanyName"]["value"]
    except (KeyError, TypeError) as e:
        raise BondDataError(f"Master data for {isin} has no issuer") from e


def fetch_dates(isin: str) -> Tuple[date, date]:
    """
    Fetch issue and maturity dates.

    Returns:
        (issue_date, maturity_date)
    """
    data = get_json(f"{ING_BASE_URL}/bond/dates/{isin}")
    try:
        return _parse_day(data["issueDate"]["value"]), _parse_day(data["maturityDate"]["value"])
    except (KeyError, TypeError, ValueError) as e:
        raise BondDataError(f"Date parsing error for {isin}: {e}") from e


def fetch_coupon_rate(isin: str) -> Decimal:
    """Fetch the annual coupon rate in percent."""
    data = get_json(f"{ING_BASE_URL}/bond/interestrates/{isin}")

    for element in data.get("data", []):
        if element.get("id") != "InterestRate":
            continue
        value = (element.get("fieldValue") or {}).get("value")
        # The API sends the rate either as a number or as a string
        try:
            return Decimal(str(value))
        except ArithmeticError:
            break

    raise BondDataError(f"InterestRate missing for {isin}")


def fetch_bond_details(isin: str) -> Dict:
    """
    Collect everything the add-bond form can prefill for an ISIN.

    The name/WKN lookup must succeed; the remaining lookups are optional and
    left out of the result when the provider does not answer.

    Returns:
        Dict with isin, name, wkn and, when available, issuer, maturity_date, coupon_rate
    """
    isin = isin.strip().upper()
    name, wkn = fetch_name_and_wkn(isin)
    details = {"isin": isin, "name": name, "wkn": wkn}

    try:
        details["issuer"] = fetch_issuer(isin)
    except BondDataError as e:
        logger.warning("Issuer lookup failed for %s: %s", isin, e)

    try:
        _, details["maturity_date"] = fetch_dates(isin)
    except BondDataError as e:
        logger.warning("Date lookup failed for %s: %s", isin, e)

    try:
        details["coupon_rate"] = fetch_coupon_rate(isin)
    except BondDataError as e:
        logger.warning("Coupon lookup failed for %s: %s", isin, e)

    return details
