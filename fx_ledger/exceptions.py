"""Exception hierarchy raised by the rate acquisition pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - type checker helper
    from fx_ledger.db.base_backend import PersistenceResult


class FxLedgerError(Exception):
    """Base class for every error raised by fx_ledger."""


class SourceUnavailable(FxLedgerError):
    """The rate source could not be reached or answered with a non-2xx status."""


class ParseFailure(FxLedgerError):
    """The rate source page no longer has the structure the parser expects."""


class PersistenceError(FxLedgerError):
    """One or more edges could not be written to the rate store.

    ``result`` reports what was written before/around the failure; edges that
    were stored successfully are not rolled back.
    """

    def __init__(self, message: str, *, result: "PersistenceResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


__all__ = ["FxLedgerError", "SourceUnavailable", "ParseFailure", "PersistenceError"]
