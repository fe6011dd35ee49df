"""Relational backend integration tests using SQLite."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from fx_ledger.db.relational_backend import RelationalBackend, _normalise_rate_date
from fx_ledger.db.sqlite_backend import SQLiteBackend
from fx_ledger.exceptions import PersistenceError
from fx_ledger.ingestion.models import ExchangeRateEdge, RateSource


def _edges(day: date, eur: float = 7.85) -> list[ExchangeRateEdge]:
    return [
        ExchangeRateEdge(day, "EUR", "CNY", eur, RateSource.DIRECT_BANK),
        ExchangeRateEdge(day, "CNY", "EUR", 1 / eur, RateSource.DERIVED_INVERSE),
    ]


def test_relational_backend_roundtrip(tmp_path: Path) -> None:
    backend = RelationalBackend(f"sqlite:///{tmp_path / 'relational.db'}")
    backend.ensure_schema()

    result = backend.upsert_rates(_edges(date(2026, 2, 20)))
    assert result.upserted == 2
    assert result.total == 2

    edge = backend.find_exact("eur", "cny", date(2026, 2, 20))
    assert edge is not None
    assert edge.rate == 7.85
    assert edge.source is RateSource.DIRECT_BANK
    assert edge.created_at is not None

    backend.close()


def test_upsert_is_idempotent(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    day = date(2026, 2, 20)

    backend.upsert_rates(_edges(day))
    first = backend.find_exact("EUR", "CNY", day)
    backend.upsert_rates(_edges(day))

    assert len(backend.fetch_range()) == 2
    second = backend.find_exact("EUR", "CNY", day)
    assert second is not None and first is not None
    assert second.rate == first.rate
    assert second.created_at == first.created_at

    backend.close()


def test_upsert_overwrites_rate_for_same_key(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    day = date(2026, 2, 20)

    backend.upsert_rates(_edges(day, eur=7.85))
    backend.upsert_rates(_edges(day, eur=7.90))

    edge = backend.find_exact("EUR", "CNY", day)
    assert edge is not None
    assert edge.rate == 7.90
    assert len(backend.fetch_range(day, day)) == 2

    backend.close()


def test_later_sync_does_not_touch_earlier_dates(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")

    backend.upsert_rates(_edges(date(2026, 2, 20), eur=7.85))
    backend.upsert_rates(_edges(date(2026, 2, 23), eur=7.95))

    assert backend.find_exact("EUR", "CNY", date(2026, 2, 20)).rate == 7.85
    assert len(backend.fetch_range()) == 4

    backend.close()


def test_find_latest_on_or_before(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    backend.upsert_rates(_edges(date(2026, 2, 18), eur=7.80))
    backend.upsert_rates(_edges(date(2026, 2, 20), eur=7.85))
    backend.upsert_rates(_edges(date(2026, 2, 25), eur=7.99))

    edge = backend.find_latest_on_or_before("EUR", "CNY", date(2026, 2, 23))
    assert edge is not None
    assert edge.rate_date == date(2026, 2, 20)
    assert edge.rate == 7.85
    assert backend.find_latest_on_or_before("EUR", "CNY", date(2026, 2, 1)) is None
    assert backend.find_exact("EUR", "CNY", date(2026, 2, 23)) is None

    backend.close()


def test_manual_edge_is_not_overwritten_by_sync(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    day = date(2026, 2, 20)
    backend.upsert_rates([ExchangeRateEdge(day, "EUR", "CNY", 7.70, RateSource.MANUAL)])

    result = backend.upsert_rates(_edges(day, eur=7.85))

    assert result.upserted == 1
    assert result.skipped == 1
    edge = backend.find_exact("EUR", "CNY", day)
    assert edge is not None
    assert edge.rate == 7.70
    assert edge.source is RateSource.MANUAL

    backend.close()


def test_manual_edge_can_replace_manual_edge(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    day = date(2026, 2, 20)
    backend.upsert_rates([ExchangeRateEdge(day, "EUR", "CNY", 7.70, RateSource.MANUAL)])

    result = backend.upsert_rates([ExchangeRateEdge(day, "EUR", "CNY", 7.72, RateSource.MANUAL)])

    assert result.upserted == 1
    assert backend.find_exact("EUR", "CNY", day).rate == 7.72

    backend.close()


def test_fetch_range_filters_and_orders_newest_first(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    backend.upsert_rates(_edges(date(2026, 2, 18)))
    backend.upsert_rates(_edges(date(2026, 2, 20)))
    backend.upsert_rates([ExchangeRateEdge(date(2026, 2, 20), "USD", "CNY", 7.24)])

    rows = backend.fetch_range(to_currency="CNY")
    assert [(row.rate_date, row.from_currency) for row in rows] == [
        (date(2026, 2, 20), "EUR"),
        (date(2026, 2, 20), "USD"),
        (date(2026, 2, 18), "EUR"),
    ]
    window = backend.fetch_range(date(2026, 2, 19), date(2026, 2, 21), from_currency="cny")
    assert [(row.from_currency, row.to_currency) for row in window] == [("CNY", "EUR")]

    backend.close()


def test_delete_rate(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    day = date(2026, 2, 20)
    backend.upsert_rates(_edges(day))

    assert backend.delete_rate("EUR", "CNY", day) is True
    assert backend.delete_rate("EUR", "CNY", day) is False
    assert backend.find_exact("EUR", "CNY", day) is None
    assert backend.find_exact("CNY", "EUR", day) is not None

    backend.close()


def test_failed_edge_does_not_roll_back_the_batch(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    day = date(2026, 2, 20)
    edges = _edges(day) + [ExchangeRateEdge(day, "USD", "CNY", 7.24)]
    original = backend._upsert_statement

    def _flaky(values):
        if values["from_currency"] == "CNY":
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return original(values)

    monkeypatch.setattr(backend, "_upsert_statement", _flaky)

    with pytest.raises(PersistenceError) as excinfo:
        backend.upsert_rates(edges)

    partial = excinfo.value.result
    assert partial is not None
    assert partial.upserted == 2
    assert partial.failed == [(day, "CNY", "EUR")]
    assert {row.from_currency for row in backend.fetch_range()} == {"EUR", "USD"}

    backend.close()


def test_unsupported_dialect_raises_persistence_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")
    monkeypatch.setattr(backend._get_engine().dialect, "name", "oracle")

    with pytest.raises(PersistenceError, match="Unsupported SQL dialect") as excinfo:
        backend.upsert_rates(_edges(date(2026, 2, 20)))

    assert excinfo.value.result is not None
    assert excinfo.value.result.upserted == 0

    backend.close()


def test_upsert_with_no_edges_is_a_noop(tmp_path: Path) -> None:
    backend = SQLiteBackend(tmp_path / "rates.db")

    assert backend.upsert_rates([]).total == 0

    backend.close()


def test_normalise_rate_date_handles_multiple_input_types() -> None:
    assert _normalise_rate_date(date(2026, 5, 1)) == date(2026, 5, 1)
    assert _normalise_rate_date(datetime(2026, 5, 2, 15, 0)) == date(2026, 5, 2)
    assert _normalise_rate_date("2026-05-03") == date(2026, 5, 3)
