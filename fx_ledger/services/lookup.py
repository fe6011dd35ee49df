"""Answer "how many units of B is one unit of A worth on day D"."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from fx_ledger.db.base_backend import BackendStrategy
from fx_ledger.ingestion.models import RateSource
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RateResolution:
    """A resolved rate plus where it came from.

    ``exact`` is False when the rate was taken from an earlier date.
    ``source`` is None for the same-currency shortcut.
    """

    rate: float
    rate_date: date
    source: RateSource | None
    exact: bool


class RateLookupService:
    """Exact-date lookup with a most-recent-earlier fallback."""

    def __init__(self, backend: BackendStrategy) -> None:
        self.backend = backend

    def resolve(
        self, from_currency: str, to_currency: str, on: date | None = None
    ) -> RateResolution | None:
        target = on or date.today()
        source_code = from_currency.upper()
        target_code = to_currency.upper()
        if source_code == target_code:
            return RateResolution(rate=1.0, rate_date=target, source=None, exact=True)

        edge = self.backend.find_exact(source_code, target_code, target)
        if edge is not None:
            return RateResolution(edge.rate, edge.rate_date, edge.source, exact=True)

        edge = self.backend.find_latest_on_or_before(source_code, target_code, target)
        if edge is not None:
            LOGGER.info(
                "No %s->%s rate for %s; falling back to %s",
                source_code,
                target_code,
                target,
                edge.rate_date,
            )
            return RateResolution(edge.rate, edge.rate_date, edge.source, exact=False)

        LOGGER.info("No %s->%s rate on or before %s", source_code, target_code, target)
        return None

    def rate_for(
        self, from_currency: str, to_currency: str, on: date | None = None
    ) -> float | None:
        """Return the conversion rate or ``None`` when the pair has no history."""

        resolution = self.resolve(from_currency, to_currency, on)
        return resolution.rate if resolution is not None else None


__all__ = ["RateLookupService", "RateResolution"]
