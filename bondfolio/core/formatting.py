"""Stateless display formatters."""
from datetime import date
from decimal import Decimal

CURRENCY_SYMBOLS = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "CHF": "CHF ",
    "PLN": "zł ",
}


def currency_symbol(currency: str) -> str:
    return CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")


def format_currency(value: Decimal | float, currency: str = "EUR", decimals: int = 0) -> str:
    """Format an amount with thousands separators, e.g. -€1,234."""
    amount = float(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}{currency_symbol(currency)}{abs(amount):,.{decimals}f}"


def format_flow(value: Decimal | float, currency: str = "EUR") -> str:
    """Cell text for flow tables: a dash for empty cells."""
    if value == 0:
        return "-"
    return format_currency(value, currency)


def format_month(day: date) -> str:
    return day.strftime("%m/%y")


def format_date(day: date) -> str:
    return day.strftime("%d %b %Y")


def format_percent(ratio: float, decimals: int = 2) -> str:
    return f"{ratio * 100:.{decimals}f}%"
