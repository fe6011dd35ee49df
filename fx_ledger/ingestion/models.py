"""Data models shared across ingestion, storage and lookup modules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum


class RateSource(str, Enum):
    """Provenance tag stored alongside every exchange-rate edge."""

    DIRECT_BANK = "BANK_OF_CHINA"
    DERIVED_INVERSE = "BANK_OF_CHINA_INVERSE"
    DERIVED_CROSS = "BANK_OF_CHINA_CALCULATED"
    MANUAL = "MANUAL"

    @classmethod
    def parse(cls, value: "str | RateSource") -> "RateSource":
        if isinstance(value, RateSource):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as exc:
            raise ValueError(f"Unknown rate source: {value}") from exc


@dataclass(slots=True)
class CurrencyQuote:
    """One BOC quotation row, already converted to per-unit rates."""

    currency: str
    currency_name: str
    buying_rate: float
    cash_buying_rate: float
    selling_rate: float
    cash_selling_rate: float
    middle_rate: float
    publish_date: date
    publish_time: time

    @property
    def is_usable(self) -> bool:
        """Quotes without a selling rate cannot be used for settlement."""

        return self.selling_rate > 0

    def as_dict(self) -> dict[str, object]:
        return {
            "currency": self.currency,
            "currency_name": self.currency_name,
            "buying_rate": self.buying_rate,
            "cash_buying_rate": self.cash_buying_rate,
            "selling_rate": self.selling_rate,
            "cash_selling_rate": self.cash_selling_rate,
            "middle_rate": self.middle_rate,
            "date": self.publish_date.isoformat(),
            "time": self.publish_time.strftime("%H:%M:%S"),
        }


@dataclass(slots=True)
class ExchangeRateEdge:
    """Directed conversion: 1 unit of ``from_currency`` equals ``rate`` ``to_currency``."""

    rate_date: date
    from_currency: str
    to_currency: str
    rate: float
    source: RateSource = RateSource.DIRECT_BANK
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.from_currency = self.from_currency.upper()
        self.to_currency = self.to_currency.upper()
        self.source = RateSource.parse(self.source)
        if not self.rate > 0:
            raise ValueError(
                f"Exchange rate {self.from_currency}->{self.to_currency} must be positive"
            )

    @property
    def key(self) -> tuple[date, str, str]:
        """Idempotency key used by every rate store."""

        return (self.rate_date, self.from_currency, self.to_currency)


__all__ = ["RateSource", "CurrencyQuote", "ExchangeRateEdge"]
