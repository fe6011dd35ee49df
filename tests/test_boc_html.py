"""Contract tests for the BOC quotation page scraper against a recorded page."""

from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path

import pytest
import requests

from fx_ledger.exceptions import ParseFailure, SourceUnavailable
from fx_ledger.ingestion.boc_html import (
    BOC_RATE_URL,
    DEFAULT_HEADERS,
    BOCRatesClient,
    parse_boc_rates_html,
)

FIXTURE = Path(__file__).parent / "fixtures" / "boc_whpj.html"
FETCHED_AT = datetime(2026, 2, 20, 10, 31, 5, 123456)


def _fixture_html() -> str:
    return FIXTURE.read_text(encoding="utf-8")


def _response(body: str, status: int = 200, encoding: str | None = "utf-8") -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8")
    response.encoding = encoding
    response.url = BOC_RATE_URL
    return response


class _DummySession:
    def __init__(self, response: requests.Response | None = None, error: Exception | None = None):
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, float]] = []
        self._response = response
        self._error = error
        self.closed = False

    def get(self, url: str, timeout: float) -> requests.Response:
        self.calls.append((url, timeout))
        if self._error is not None:
            raise self._error
        assert self._response is not None
        return self._response

    def close(self) -> None:
        self.closed = True


def test_parse_recorded_page_maps_known_currencies() -> None:
    quotes = parse_boc_rates_html(_fixture_html(), fetched_at=FETCHED_AT)

    assert [quote.currency for quote in quotes] == ["AUD", "EUR", "GBP", "HKD", "JPY", "USD"]
    eur = next(quote for quote in quotes if quote.currency == "EUR")
    assert eur.currency_name == "欧元"
    assert (
        eur.buying_rate,
        eur.cash_buying_rate,
        eur.selling_rate,
        eur.cash_selling_rate,
        eur.middle_rate,
    ) == pytest.approx((7.80, 7.5579, 7.85, 7.875, 7.815))


def test_parse_stamps_every_quote_with_fetch_time() -> None:
    quotes = parse_boc_rates_html(_fixture_html(), fetched_at=FETCHED_AT)

    assert {quote.publish_date for quote in quotes} == {date(2026, 2, 20)}
    assert {quote.publish_time for quote in quotes} == {time(10, 31, 5)}


def test_parse_drops_rows_with_garbled_numbers() -> None:
    quotes = parse_boc_rates_html(_fixture_html(), fetched_at=FETCHED_AT)

    assert "CHF" not in {quote.currency for quote in quotes}


def test_parse_treats_blank_cells_as_zero() -> None:
    html = """
    <table>
      <tr><th>货币名称</th><th>现汇买入价</th><th>现钞买入价</th><th>现汇卖出价</th>
          <th>现钞卖出价</th><th>中行折算价</th></tr>
      <tr><td>韩国元</td><td></td><td>0.5012</td><td>0.5313</td><td></td><td>0.5150</td></tr>
    </table>
    """

    (krw,) = parse_boc_rates_html(html, fetched_at=FETCHED_AT)

    assert krw.currency == "KRW"
    assert krw.buying_rate == 0.0
    assert krw.cash_selling_rate == 0.0
    assert krw.selling_rate == pytest.approx(0.005313)


def test_parse_uses_header_labels_for_column_order() -> None:
    html = """
    <table>
      <tr><td>货币名称</td><td>现汇卖出价</td><td>现汇买入价</td><td>现钞买入价</td>
          <td>现钞卖出价</td><td>中行折算价</td></tr>
      <tr><td>美元</td><td>724.00</td><td>719.00</td><td>713.00</td><td>724.00</td><td>710.50</td></tr>
    </table>
    """

    (usd,) = parse_boc_rates_html(html, fetched_at=FETCHED_AT)

    assert usd.selling_rate == pytest.approx(7.24)
    assert usd.buying_rate == pytest.approx(7.19)
    assert usd.cash_buying_rate == pytest.approx(7.13)


def test_parse_only_unknown_currencies_returns_empty_list() -> None:
    html = """
    <table>
      <tr><th>货币名称</th><th>现汇买入价</th><th>现钞买入价</th><th>现汇卖出价</th>
          <th>现钞卖出价</th><th>中行折算价</th></tr>
      <tr><td>巴西里亚尔</td><td></td><td>119.47</td><td></td><td>136.60</td><td>125.30</td></tr>
    </table>
    """

    assert parse_boc_rates_html(html, fetched_at=FETCHED_AT) == []


def test_parse_raises_when_table_missing() -> None:
    with pytest.raises(ParseFailure, match="not found"):
        parse_boc_rates_html("<html><body><p>系统维护中</p></body></html>")


def test_parse_raises_when_no_numeric_rows() -> None:
    html = """
    <table>
      <tr><th>货币名称</th><th>现汇买入价</th><th>现钞买入价</th><th>现汇卖出价</th>
          <th>现钞卖出价</th><th>中行折算价</th></tr>
      <tr><td>美元</td><td>暂停</td><td>暂停</td><td>暂停</td><td>暂停</td><td>暂停</td></tr>
    </table>
    """

    with pytest.raises(ParseFailure, match="no numeric rows"):
        parse_boc_rates_html(html)


def test_client_sends_browser_headers_and_timeout() -> None:
    session = _DummySession(_response(_fixture_html()))
    client = BOCRatesClient(session=session, timeout=12, clock=lambda: FETCHED_AT)

    quotes = client.fetch_rates()

    assert len(quotes) == 6
    assert session.calls == [(BOC_RATE_URL, 12)]
    assert session.headers["User-Agent"] == DEFAULT_HEADERS["User-Agent"]
    assert "Mozilla/5.0" in session.headers["User-Agent"]
    assert session.headers["Accept-Language"].startswith("zh-CN")


def test_client_raises_source_unavailable_on_http_error() -> None:
    session = _DummySession(_response("blocked", status=403))
    client = BOCRatesClient(session=session)

    with pytest.raises(SourceUnavailable, match="HTTP 403.*blocking"):
        client.fetch_rates()


def test_client_raises_source_unavailable_on_network_error() -> None:
    session = _DummySession(error=requests.ConnectionError("connection reset"))
    client = BOCRatesClient(session=session)

    with pytest.raises(SourceUnavailable, match="connection reset"):
        client.fetch_rates()


def test_client_propagates_parse_failure() -> None:
    session = _DummySession(_response("<html><body>maintenance</body></html>"))
    client = BOCRatesClient(session=session)

    with pytest.raises(ParseFailure):
        client.fetch_rates()


def test_client_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        BOCRatesClient(session=_DummySession(), timeout=0)


def test_client_close_releases_session() -> None:
    session = _DummySession()
    BOCRatesClient(session=session).close()

    assert session.closed is True


def test_client_quotes_are_priced_in_cny() -> None:
    assert BOCRatesClient(session=_DummySession()).quote_currency == "CNY"
