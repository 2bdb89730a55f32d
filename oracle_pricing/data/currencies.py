"""Fiat currencies supported as quote currencies."""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class FiatCurrency:
    code: str
    symbol: str
    name: str


FIAT_CURRENCIES: Dict[str, FiatCurrency] = {
    c.code: c for c in [
        FiatCurrency("USD", "$", "US Dollar"),
        FiatCurrency("EUR", "€", "Euro"),
        FiatCurrency("GBP", "£", "British Pound"),
        FiatCurrency("JPY", "¥", "Japanese Yen"),
        FiatCurrency("CAD", "C$", "Canadian Dollar"),
        FiatCurrency("AUD", "A$", "Australian Dollar"),
        FiatCurrency("CHF", "CHF", "Swiss Franc"),
        FiatCurrency("CNY", "¥", "Chinese Yuan"),
        FiatCurrency("SEK", "kr", "Swedish Krona"),
        FiatCurrency("NZD", "NZ$", "New Zealand Dollar"),
        FiatCurrency("NOK", "kr", "Norwegian Krone"),
        FiatCurrency("DKK", "kr", "Danish Krone"),
        FiatCurrency("PLN", "zł", "Polish Zloty"),
        FiatCurrency("CZK", "Kč", "Czech Koruna"),
        FiatCurrency("HUF", "Ft", "Hungarian Forint"),
        FiatCurrency("RUB", "₽", "Russian Ruble"),
        FiatCurrency("BRL", "R$", "Brazilian Real"),
        FiatCurrency("MXN", "MX$", "Mexican Peso"),
        FiatCurrency("INR", "₹", "Indian Rupee"),
        FiatCurrency("KRW", "₩", "South Korean Won"),
        FiatCurrency("SGD", "S$", "Singapore Dollar"),
        FiatCurrency("HKD", "HK$", "Hong Kong Dollar"),
        FiatCurrency("TWD", "NT$", "Taiwan Dollar"),
        FiatCurrency("THB", "฿", "Thai Baht"),
        FiatCurrency("MYR", "RM", "Malaysian Ringgit"),
        FiatCurrency("IDR", "Rp", "Indonesian Rupiah"),
        FiatCurrency("PHP", "₱", "Philippine Peso"),
        FiatCurrency("VND", "₫", "Vietnamese Dong"),
        FiatCurrency("ZAR", "R", "South African Rand"),
    ]
}

# Currencies conventionally shown without minor units
_NO_DECIMALS = {"JPY", "KRW", "VND", "IDR", "HUF"}


def is_fiat(code: str) -> bool:
    return code.upper() in FIAT_CURRENCIES


def get_currency(code: str) -> Optional[FiatCurrency]:
    return FIAT_CURRENCIES.get(code.upper())


def format_fiat_amount(amount: Optional[float], code: str = "USD") -> str:
    """Format an amount for display, e.g. ``$1,234.56``.

    Unresolved amounts (None or 0) render as ``N/A``. Amounts below one
    cent get extra precision so small token values stay visible.
    """
    if not amount:
        return "N/A"

    code = code.upper()
    currency = FIAT_CURRENCIES.get(code)
    symbol = currency.symbol if currency else f"{code} "

    sign = "-" if amount < 0 else ""
    value = abs(amount)

    if code in _NO_DECIMALS:
        digits = 0 if value >= 1 else 4
    elif value < 0.01:
        digits = 6
    else:
        digits = 2

    return f"{sign}{symbol}{value:,.{digits}f}"
