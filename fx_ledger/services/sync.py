"""End-to-end rate synchronisation: fetch, normalise, store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from fx_ledger.db.base_backend import BackendStrategy
from fx_ledger.exceptions import ParseFailure, PersistenceError, SourceUnavailable
from fx_ledger.ingestion.models import CurrencyQuote
from fx_ledger.ingestion.normalizer import DEFAULT_MAJOR_PAIRS, normalize_quotes
from fx_ledger.ingestion.strategy import RateSourceAdapter
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(slots=True)
class SyncResult:
    """Structured outcome returned instead of raising past the sync boundary."""

    success: bool
    count: int
    quotes: list[CurrencyQuote] = field(default_factory=list)
    message: str = ""
    skipped: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "count": self.count,
            "skipped": self.skipped,
            "message": self.message,
            "quotes": [quote.as_dict() for quote in self.quotes],
        }


def preview_rates(adapter: RateSourceAdapter) -> list[CurrencyQuote]:
    """Fetch and parse quotes without persisting anything."""

    return adapter.fetch_rates()


def sync_rates(
    adapter: RateSourceAdapter,
    backend: BackendStrategy,
    *,
    major_pairs: Iterable[tuple[str, str]] = DEFAULT_MAJOR_PAIRS,
) -> SyncResult:
    """Fetch BOC quotes and upsert the derived edges.

    Edges are priced against ``adapter.quote_currency``; the ledger base
    currency plays no part here.

    Source, parse and persistence failures are turned into
    ``SyncResult(success=False)``; nothing is retried here.
    """

    LOGGER.info("Starting BOC rate sync")
    try:
        quotes = adapter.fetch_rates()
    except SourceUnavailable as exc:
        LOGGER.warning("Rate sync aborted, source unavailable: %s", exc)
        return SyncResult(success=False, count=0, message=str(exc))
    except ParseFailure as exc:
        LOGGER.error("Rate sync aborted, BOC page structure not recognised: %s", exc)
        return SyncResult(success=False, count=0, message=str(exc))

    if not quotes:
        LOGGER.warning("BOC returned no usable quotes")
        return SyncResult(success=False, count=0, message="No rates fetched from BOC")

    edges = normalize_quotes(
        quotes, quote_currency=adapter.quote_currency, major_pairs=major_pairs
    )
    LOGGER.info("Fetched %s quotes, converted to %s edges", len(quotes), len(edges))

    try:
        backend.ensure_schema()
        result = backend.upsert_rates(edges)
    except PersistenceError as exc:
        partial = exc.result
        LOGGER.error("Rate sync failed while storing edges: %s", exc)
        return SyncResult(
            success=False,
            count=partial.upserted if partial is not None else 0,
            quotes=quotes,
            message=f"Database error: {exc}",
            skipped=partial.skipped if partial is not None else 0,
        )

    message = f"Successfully synced {result.upserted} exchange rates"
    if result.skipped:
        message += f" ({result.skipped} manual rates kept)"
    return SyncResult(
        success=True,
        count=result.upserted,
        quotes=quotes,
        message=message,
        skipped=result.skipped,
    )


__all__ = ["SyncResult", "preview_rates", "sync_rates"]
