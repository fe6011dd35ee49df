"""Backend strategy interfaces for the rate store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from fx_ledger.ingestion.models import ExchangeRateEdge


@dataclass(slots=True)
class PersistenceResult:
    """Outcome of an edge upsert batch.

    ``skipped`` counts automated edges that collided with a manual entry and
    were left untouched; ``failed`` lists the keys whose statement errored.
    """

    upserted: int = 0
    skipped: int = 0
    failed: list[tuple[date, str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Return the number of edges written to storage."""

        return self.upserted


class BackendStrategy(ABC):
    """Common interface implemented by every rate store backend."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create required tables/collections (with the unique key) and verify connectivity."""

    @abstractmethod
    def upsert_rates(self, edges: Sequence[ExchangeRateEdge]) -> PersistenceResult:
        """Insert or overwrite edges keyed by ``(rate_date, from, to)``.

        Every edge is written by a single atomic statement; a failing edge does
        not undo the others and surfaces as ``PersistenceError`` once the batch
        has been attempted.
        """

    @abstractmethod
    def find_exact(self, from_currency: str, to_currency: str, on: date) -> ExchangeRateEdge | None:
        """Return the edge stored for exactly ``on``."""

    @abstractmethod
    def find_latest_on_or_before(
        self, from_currency: str, to_currency: str, on: date
    ) -> ExchangeRateEdge | None:
        """Return the most recent edge dated on or before ``on``."""

    @abstractmethod
    def fetch_range(
        self,
        start: date | None = None,
        end: date | None = None,
        *,
        from_currency: str | None = None,
        to_currency: str | None = None,
    ) -> list[ExchangeRateEdge]:
        """Return edges constrained by the provided filters, newest first."""

    @abstractmethod
    def delete_rate(self, from_currency: str, to_currency: str, on: date) -> bool:
        """Remove a single edge; return True when something was deleted."""

    def close(self) -> None:  # pragma: no cover - optional cleanup hook
        """Backends may override to release connections/resources."""


__all__ = ["BackendStrategy", "PersistenceResult"]
