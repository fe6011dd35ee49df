"""Abstractions for pluggable rate sources."""

from __future__ import annotations

from typing import Protocol

from fx_ledger.ingestion.models import CurrencyQuote


class RateSourceAdapter(Protocol):
    """Contract for fetching raw bank quotes.

    ``quote_currency`` is the currency every returned rate is priced in. It is
    a property of the source and independent of the ledger's base currency.
    Implementations issue the network call and return parsed quotes, raising
    ``SourceUnavailable`` or ``ParseFailure`` when the source cannot be used.
    """

    quote_currency: str

    def fetch_rates(self) -> list[CurrencyQuote]:
        ...  # pragma: no cover - protocol definition


__all__ = ["RateSourceAdapter"]
