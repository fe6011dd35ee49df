"""Scrape the Bank of China foreign exchange quotation page into ``CurrencyQuote`` rows."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable

import requests
from bs4 import BeautifulSoup

from fx_ledger.exceptions import ParseFailure, SourceUnavailable
from fx_ledger.ingestion.models import CurrencyQuote
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)

BOC_RATE_URL = "https://www.boc.cn/sourcedb/whpj/index.html"

# Every BOC quote prices foreign currency in renminbi.
BOC_QUOTE_CURRENCY = "CNY"

# BOC publishes every quote per 100 units of foreign currency.
BOC_QUOTE_UNIT = 100

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
}

CURRENCY_NAME_MAP: dict[str, str] = {
    "欧元": "EUR",
    "美元": "USD",
    "英镑": "GBP",
    "港币": "HKD",
    "日元": "JPY",
    "澳大利亚元": "AUD",
    "加拿大元": "CAD",
    "瑞士法郎": "CHF",
    "新加坡元": "SGD",
    "新西兰元": "NZD",
    "韩国元": "KRW",
    "泰国铢": "THB",
    "马来西亚林吉特": "MYR",
    "俄罗斯卢布": "RUB",
    "南非兰特": "ZAR",
}

CURRENCY_NAME_HEADER = "货币名称"
CASH_BUYING_HEADER = "现钞买入价"

# Header label -> CurrencyQuote field, in the order BOC renders the columns.
_RATE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("现汇买入价", "buying_rate"),
    ("现钞买入价", "cash_buying_rate"),
    ("现汇卖出价", "selling_rate"),
    ("现钞卖出价", "cash_selling_rate"),
    ("中行折算价", "middle_rate"),
)


class _UnparseableCell(ValueError):
    pass


def _cell_text(cell) -> str:
    return " ".join(cell.stripped_strings).strip()


def _parse_rate(value: str) -> float:
    cleaned = re.sub(r"[\s,]", "", value)
    if not cleaned or cleaned in {"-", "--"}:
        return 0.0
    try:
        parsed = float(cleaned)
    except ValueError as exc:
        raise _UnparseableCell(value) from exc
    if parsed < 0:
        raise _UnparseableCell(value)
    return parsed


def _find_rate_table(soup: BeautifulSoup):
    for table in soup.find_all("table"):
        for tr in table.find_all("tr"):
            labels = [_cell_text(cell) for cell in tr.find_all(["th", "td"])]
            if CURRENCY_NAME_HEADER in labels and CASH_BUYING_HEADER in labels:
                return table, labels
    return None, []


def _column_positions(header: list[str]) -> dict[str, int]:
    positions: dict[str, int] = {}
    for fallback_index, (label, field) in enumerate(_RATE_COLUMNS, start=1):
        positions[field] = header.index(label) if label in header else fallback_index
    return positions


def parse_boc_rates_html(html: str, *, fetched_at: datetime | None = None) -> list[CurrencyQuote]:
    """Parse the BOC quotation table.

    The page does not expose a reliable machine-readable publish timestamp per
    row, so every quote is stamped with ``fetched_at``. Rows for currencies
    missing from :data:`CURRENCY_NAME_MAP` are skipped, rows with a garbled rate
    cell are dropped. :class:`ParseFailure` is raised when the table cannot be
    located or when none of its rows contain numbers.
    """

    stamp = fetched_at or datetime.now()
    soup = BeautifulSoup(html, "html.parser")
    table, header = _find_rate_table(soup)
    if table is None:
        LOGGER.error("Could not find the BOC exchange rate table; page structure may have changed")
        raise ParseFailure("BOC exchange rate table not found in page")

    positions = _column_positions(header)
    min_cells = max(positions.values()) + 1
    quotes: list[CurrencyQuote] = []
    numeric_rows = 0
    for tr in table.find_all("tr"):
        cells = [_cell_text(td) for td in tr.find_all("td")]
        if len(cells) < min_cells:
            continue
        currency_name = cells[0]
        if not currency_name or currency_name == CURRENCY_NAME_HEADER:
            continue
        try:
            values = {field: _parse_rate(cells[index]) for field, index in positions.items()}
        except _UnparseableCell as exc:
            LOGGER.debug("Dropping BOC row %s with unparseable cell %r", currency_name, str(exc))
            continue
        numeric_rows += 1
        code = CURRENCY_NAME_MAP.get(currency_name)
        if code is None:
            continue
        quotes.append(
            CurrencyQuote(
                currency=code,
                currency_name=currency_name,
                publish_date=stamp.date(),
                publish_time=stamp.time().replace(microsecond=0),
                **{field: value / BOC_QUOTE_UNIT for field, value in values.items()},
            )
        )

    if numeric_rows == 0:
        LOGGER.error("BOC table header found but no numeric rows were parsed")
        raise ParseFailure("BOC exchange rate table contains no numeric rows")
    LOGGER.info("Parsed %s BOC quotes out of %s numeric rows", len(quotes), numeric_rows)
    return quotes


class BOCRatesClient:
    """Fetch BOC quotes with a browser-like ``requests`` session."""

    quote_currency = BOC_QUOTE_CURRENCY

    def __init__(
        self,
        *,
        url: str = BOC_RATE_URL,
        timeout: float = 20,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.url = url
        self.timeout = timeout
        self.clock = clock
        self.session = session or requests.Session()
        self.session.headers.update(headers or DEFAULT_HEADERS)

    def fetch_html(self) -> str:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Failed to reach BOC rate page %s: %s", self.url, exc)
            raise SourceUnavailable(f"Unable to reach BOC rate page: {exc}") from exc
        self._raise_with_context(response)
        if not response.encoding or response.encoding.lower() == "iso-8859-1":
            response.encoding = response.apparent_encoding or "utf-8"
        return response.text

    def fetch_rates(self) -> list[CurrencyQuote]:
        """Download and parse the current BOC quotation table."""

        fetched_at = self.clock()
        html = self.fetch_html()
        LOGGER.info("Fetched BOC rate page from %s", self.url)
        return parse_boc_rates_html(html, fetched_at=fetched_at)

    def _raise_with_context(self, response: requests.Response) -> None:
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = response.status_code
            hints: list[str] = []
            if status in {403, 418, 429}:
                hints.append("BOC is blocking automated requests; retry later.")
            hint_text = f" {' '.join(hints)}" if hints else ""
            LOGGER.warning("BOC rate page responded with HTTP %s", status)
            raise SourceUnavailable(
                f"BOC rate page responded with HTTP {status} for {self.url}.{hint_text}"
            ) from exc

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "BOCRatesClient":  # pragma: no cover - trivial
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # pragma: no cover - trivial
        self.close()


__all__ = [
    "BOC_QUOTE_CURRENCY",
    "BOC_RATE_URL",
    "BOCRatesClient",
    "CURRENCY_NAME_MAP",
    "parse_boc_rates_html",
]
