"""Currencies offered to invoice and rate forms."""

from __future__ import annotations

from typing import NamedTuple


class SupportedCurrency(NamedTuple):
    code: str
    name: str
    symbol: str


SUPPORTED_CURRENCIES: tuple[SupportedCurrency, ...] = (
    SupportedCurrency("CNY", "人民币", "¥"),
    SupportedCurrency("USD", "美元", "$"),
    SupportedCurrency("EUR", "欧元", "€"),
    SupportedCurrency("JPY", "日元", "¥"),
    SupportedCurrency("GBP", "英镑", "£"),
    SupportedCurrency("HKD", "港币", "HK$"),
    SupportedCurrency("AUD", "澳元", "A$"),
    SupportedCurrency("CAD", "加元", "C$"),
    SupportedCurrency("CHF", "瑞士法郎", "CHF"),
    SupportedCurrency("SGD", "新加坡元", "S$"),
    SupportedCurrency("NZD", "新西兰元", "NZ$"),
    SupportedCurrency("KRW", "韩元", "₩"),
    SupportedCurrency("THB", "泰国铢", "฿"),
    SupportedCurrency("MYR", "马来西亚林吉特", "RM"),
)


def is_supported_currency(code: str) -> bool:
    """Return True when ``code`` can be used on invoices and manual rates."""

    return code.strip().upper() in {currency.code for currency in SUPPORTED_CURRENCIES}


def require_supported_currency(code: str) -> str:
    """Return the upper-cased ``code`` or raise ``ValueError`` for unknown currencies."""

    if not isinstance(code, str) or not is_supported_currency(code):
        raise ValueError(f"Unsupported currency: {code!r}")
    return code.strip().upper()


__all__ = [
    "SUPPORTED_CURRENCIES",
    "SupportedCurrency",
    "is_supported_currency",
    "require_supported_currency",
]
