"""Runtime settings for the rate pipeline, read from ``FX_LEDGER_*`` variables."""

from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from fx_ledger.ingestion.boc_html import BOC_RATE_URL
from fx_ledger.ingestion.normalizer import DEFAULT_MAJOR_PAIRS, parse_major_pairs
from fx_ledger.services.invoice_binder import DEFAULT_BASE_CURRENCY
from fx_ledger.utils.currencies import require_supported_currency

ENV_PREFIX = "FX_LEDGER_"
DEFAULT_HTTP_TIMEOUT = 20.0


class FxLedgerSettings(BaseSettings):
    """Values the facade needs besides an explicit ``db_config``.

    Keyword arguments override the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        frozen=True,
        extra="ignore",
    )

    # Currency invoices settle in. BOC quotes are always priced in CNY.
    base_currency: str = DEFAULT_BASE_CURRENCY
    # "EUR/USD,EUR/GBP" in the environment
    major_pairs: Annotated[tuple[tuple[str, str], ...], NoDecode] = DEFAULT_MAJOR_PAIRS
    source_url: str = BOC_RATE_URL
    http_timeout: float = Field(DEFAULT_HTTP_TIMEOUT, gt=0)
    db_url: str | None = None

    @field_validator("base_currency")
    @classmethod
    def validate_base_currency(cls, v: str) -> str:
        return require_supported_currency(v)

    @field_validator("major_pairs", mode="before")
    @classmethod
    def validate_major_pairs(cls, v: Any) -> tuple[tuple[str, str], ...]:
        return parse_major_pairs(v)


__all__ = ["DEFAULT_HTTP_TIMEOUT", "ENV_PREFIX", "FxLedgerSettings"]
