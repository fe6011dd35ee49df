"""Attach a settlement exchange rate and base-currency amount to invoices.

Binding runs synchronously whenever an invoice is created or one of the fields
that drive the conversion (currency, amount, issue date) changes. The binder
never talks to the rate source; it only reads through
:class:`~fx_ledger.services.lookup.RateLookupService`. Missing rates are not an
error: the invoice is stored as ``UNRESOLVED`` and can be reconciled once a
sync has run.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Iterable, Mapping

from fx_ledger.services.lookup import RateLookupService
from fx_ledger.utils.currencies import require_supported_currency
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)

# Ledger currency that invoices settle in. Independent of the rate source.
DEFAULT_BASE_CURRENCY = "CNY"


class SettlementProvenance(str, Enum):
    """Provenance tags that only exist on invoices.

    Exact-date bindings carry the stored edge's own source instead.
    """

    SAME_CURRENCY = "SAME_CURRENCY"
    MANUAL = "MANUAL"
    FALLBACK = "BANK_OF_CHINA_FALLBACK"
    UNRESOLVED = "UNRESOLVED"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


@dataclass(slots=True)
class Invoice:
    """Invoice fields the binder reads, plus the settlement fields it writes."""

    invoice_number: str
    amount: float
    currency: str
    issue_date: date
    company_id: str | None = None
    client_name: str | None = None
    due_date: date | None = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    notes: str | None = None
    exchange_rate: float | None = None
    exchange_rate_date: date | None = None
    exchange_rate_source: str | None = None
    base_currency: str = DEFAULT_BASE_CURRENCY
    base_amount: float | None = None

    @property
    def is_rate_pending(self) -> bool:
        """True while a foreign-currency invoice still waits for an exchange rate."""

        return self.exchange_rate_source == SettlementProvenance.UNRESOLVED.value

    def settlement_fields(self) -> dict[str, Any]:
        return {
            "exchange_rate": self.exchange_rate,
            "exchange_rate_date": self.exchange_rate_date,
            "exchange_rate_source": self.exchange_rate_source,
            "base_currency": self.base_currency,
            "base_amount": self.base_amount,
        }


SETTLEMENT_FIELDS = frozenset(
    {"exchange_rate", "exchange_rate_date", "exchange_rate_source", "base_currency", "base_amount"}
)
# Changing any of these invalidates the bound rate.
REBIND_TRIGGERS = frozenset({"currency", "amount", "issue_date"})


def _base_amount(amount: float, rate: float) -> float:
    return round(amount * rate, 2)


def bind_settlement_rate(
    invoice: Invoice,
    base_currency: str = DEFAULT_BASE_CURRENCY,
    *,
    lookup: RateLookupService,
    manual_rate: float | None = None,
) -> Invoice:
    """Return a copy of ``invoice`` with its five settlement fields populated.

    Rules are evaluated in order: same currency, caller-supplied manual rate,
    exact-date stored rate, most recent earlier stored rate, unresolved.
    """

    if manual_rate is not None and not manual_rate > 0:
        raise ValueError("manual exchange rate must be positive")

    currency = require_supported_currency(invoice.currency)
    base = require_supported_currency(base_currency)
    bound = replace(
        invoice,
        currency=currency,
        base_currency=base,
        exchange_rate_date=invoice.issue_date,
    )

    if currency == base:
        bound.exchange_rate = 1.0
        bound.exchange_rate_source = SettlementProvenance.SAME_CURRENCY.value
        bound.base_amount = round(invoice.amount, 2)
        return bound

    if manual_rate is not None:
        bound.exchange_rate = float(manual_rate)
        bound.exchange_rate_source = SettlementProvenance.MANUAL.value
        bound.base_amount = _base_amount(invoice.amount, bound.exchange_rate)
        return bound

    resolution = lookup.resolve(currency, base, invoice.issue_date)
    if resolution is None:
        LOGGER.warning(
            "Invoice %s: no %s->%s rate available, pending exchange rate",
            invoice.invoice_number,
            currency,
            base,
        )
        bound.exchange_rate = None
        bound.exchange_rate_source = SettlementProvenance.UNRESOLVED.value
        bound.base_amount = None
        return bound

    bound.exchange_rate = resolution.rate
    bound.base_amount = _base_amount(invoice.amount, resolution.rate)
    if resolution.exact and resolution.source is not None:
        bound.exchange_rate_source = resolution.source.value
        LOGGER.info(
            "Invoice %s: 1 %s = %s %s",
            invoice.invoice_number,
            currency,
            resolution.rate,
            base,
        )
    else:
        bound.exchange_rate_source = SettlementProvenance.FALLBACK.value
        LOGGER.info(
            "Invoice %s: using %s rate %s from %s",
            invoice.invoice_number,
            currency,
            resolution.rate,
            resolution.rate_date,
        )
    return bound


def apply_invoice_update(
    existing: Invoice,
    changes: Mapping[str, Any],
    *,
    lookup: RateLookupService,
    base_currency: str | None = None,
    manual_rate: float | None = None,
) -> Invoice:
    """Apply a partial update and re-bind when the conversion inputs changed.

    ``None`` values in ``changes`` mean "keep the existing value". Settlement
    fields cannot be set directly; pass ``manual_rate`` instead.
    """

    editable = {f.name for f in fields(Invoice)} - SETTLEMENT_FIELDS
    unknown = set(changes) - editable
    if unknown:
        raise ValueError(f"Cannot update invoice fields: {', '.join(sorted(unknown))}")

    provided = {name: value for name, value in changes.items() if value is not None}
    updated = replace(existing, **provided)
    needs_rebind = manual_rate is not None or any(
        getattr(updated, name) != getattr(existing, name) for name in REBIND_TRIGGERS
    )
    if not needs_rebind:
        return updated
    return bind_settlement_rate(
        updated,
        base_currency or existing.base_currency,
        lookup=lookup,
        manual_rate=manual_rate,
    )


def reconcile_pending(invoices: Iterable[Invoice], *, lookup: RateLookupService) -> list[Invoice]:
    """Re-bind ``UNRESOLVED`` invoices; return the ones that now have a rate."""

    reconciled: list[Invoice] = []
    for invoice in invoices:
        if not invoice.is_rate_pending:
            continue
        rebound = bind_settlement_rate(invoice, invoice.base_currency, lookup=lookup)
        if not rebound.is_rate_pending:
            reconciled.append(rebound)
    if reconciled:
        LOGGER.info("Reconciled %s invoices pending an exchange rate", len(reconciled))
    return reconciled


__all__ = [
    "DEFAULT_BASE_CURRENCY",
    "Invoice",
    "InvoiceStatus",
    "SettlementProvenance",
    "apply_invoice_update",
    "bind_settlement_rate",
    "reconcile_pending",
]
