"""Turn bank quotes into a directed graph of exchange-rate edges."""

from __future__ import annotations

from datetime import date
from typing import Iterable, Sequence

from fx_ledger.ingestion.boc_html import BOC_QUOTE_CURRENCY
from fx_ledger.ingestion.models import CurrencyQuote, ExchangeRateEdge, RateSource
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)

DEFAULT_MAJOR_PAIRS: tuple[tuple[str, str], ...] = (
    ("EUR", "USD"),
    ("EUR", "GBP"),
    ("USD", "HKD"),
)


def parse_major_pairs(value: str | Iterable[str | Sequence[str]]) -> tuple[tuple[str, str], ...]:
    """Accept ``"EUR/USD,EUR/GBP"`` or an iterable of pairs and return upper-cased tuples."""

    items: Iterable[str | Sequence[str]]
    if isinstance(value, str):
        items = [chunk for chunk in value.split(",") if chunk.strip()]
    else:
        items = value
    pairs: list[tuple[str, str]] = []
    for item in items:
        parts = item.replace("-", "/").split("/") if isinstance(item, str) else list(item)
        if len(parts) != 2 or not all(str(part).strip() for part in parts):
            raise ValueError(f"Invalid currency pair: {item!r}")
        first, second = (str(part).strip().upper() for part in parts)
        if first == second:
            raise ValueError(f"Currency pair must contain two different currencies: {item!r}")
        pairs.append((first, second))
    return tuple(pairs)


def normalize_quotes(
    quotes: Iterable[CurrencyQuote],
    *,
    quote_currency: str = BOC_QUOTE_CURRENCY,
    major_pairs: Iterable[tuple[str, str]] = DEFAULT_MAJOR_PAIRS,
    rate_date: date | None = None,
) -> list[ExchangeRateEdge]:
    """Build direct, inverse and cross-rate edges from ``quotes``.

    The selling rate is the price at which the bank sells foreign currency, so
    it is the settlement rate for invoices in that currency. Cross pairs are
    triangulated through ``quote_currency``, the currency the source prices
    every quote in. Quotes for the quote currency itself are ignored and
    pairs whose currencies are missing from ``quotes`` are skipped.
    """

    pivot = quote_currency.upper()
    quote_list = list(quotes)
    if not quote_list:
        return []
    resolved_date = rate_date or quote_list[0].publish_date

    selling: dict[str, float] = {}
    for quote in quote_list:
        code = quote.currency.upper()
        if code == pivot:
            continue
        if not quote.is_usable:
            LOGGER.debug("Skipping %s quote without a selling rate", code)
            continue
        selling[code] = quote.selling_rate

    edges: list[ExchangeRateEdge] = []
    for code, rate in selling.items():
        edges.append(ExchangeRateEdge(resolved_date, code, pivot, rate, RateSource.DIRECT_BANK))
        edges.append(
            ExchangeRateEdge(resolved_date, pivot, code, 1 / rate, RateSource.DERIVED_INVERSE)
        )

    for first, second in major_pairs:
        first, second = first.upper(), second.upper()
        if first not in selling or second not in selling:
            LOGGER.debug("Cross pair %s/%s not available in this batch", first, second)
            continue
        edges.append(
            ExchangeRateEdge(
                resolved_date,
                first,
                second,
                selling[first] / selling[second],
                RateSource.DERIVED_CROSS,
            )
        )
        edges.append(
            ExchangeRateEdge(
                resolved_date,
                second,
                first,
                selling[second] / selling[first],
                RateSource.DERIVED_CROSS,
            )
        )

    LOGGER.info("Normalised %s quotes into %s edges for %s", len(selling), len(edges), resolved_date)
    return edges


__all__ = [
    "DEFAULT_MAJOR_PAIRS",
    "normalize_quotes",
    "parse_major_pairs",
]
