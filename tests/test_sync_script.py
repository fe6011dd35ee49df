from __future__ import annotations

from datetime import date, time

import pytest

from fx_ledger.exceptions import ParseFailure
from fx_ledger.ingestion.models import CurrencyQuote
from fx_ledger.scripts import sync_boc_rates as script
from fx_ledger.services.sync import SyncResult


class _FakeLedger:
    instances: list["_FakeLedger"] = []

    def __init__(self, *, settings) -> None:
        self.settings = settings
        self.closed = False
        self.sync_result = SyncResult(
            success=True, count=10, message="Successfully synced 10 exchange rates"
        )
        self.preview_error: Exception | None = None
        _FakeLedger.instances.append(self)

    def preview_rates(self) -> list[CurrencyQuote]:
        if self.preview_error is not None:
            raise self.preview_error
        return [
            CurrencyQuote(
                currency="EUR",
                currency_name="欧元",
                buying_rate=7.8,
                cash_buying_rate=7.5579,
                selling_rate=7.85,
                cash_selling_rate=7.875,
                middle_rate=7.815,
                publish_date=date(2026, 2, 20),
                publish_time=time(10, 30),
            )
        ]

    def sync_rates(self) -> SyncResult:
        return self.sync_result

    def __enter__(self) -> "_FakeLedger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def fake_ledger(monkeypatch: pytest.MonkeyPatch):
    _FakeLedger.instances = []
    monkeypatch.setattr(script, "FxLedger", _FakeLedger)
    for name in (
        "FX_LEDGER_DB_URL",
        "FX_LEDGER_BASE_CURRENCY",
        "FX_LEDGER_HTTP_TIMEOUT",
        "FX_LEDGER_MAJOR_PAIRS",
    ):
        monkeypatch.delenv(name, raising=False)
    return _FakeLedger


def test_parse_args_defaults() -> None:
    args = script.parse_args([])

    assert args.db_url is None
    assert args.timeout is None
    assert args.preview is False


def test_main_sync_prints_message(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = script.main(["--db", "sqlite:///ledger.db", "--timeout", "5"])

    assert exit_code == 0
    assert "Successfully synced 10 exchange rates" in capsys.readouterr().out
    (ledger,) = _FakeLedger.instances
    assert ledger.closed is True
    assert ledger.settings.db_url == "sqlite:///ledger.db"
    assert ledger.settings.http_timeout == 5.0


def test_main_uses_environment_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FX_LEDGER_DB_URL", "sqlite:///from-env.db")
    monkeypatch.setenv("FX_LEDGER_HTTP_TIMEOUT", "9")

    script.main([])

    assert _FakeLedger.instances[0].settings.db_url == "sqlite:///from-env.db"
    assert _FakeLedger.instances[0].settings.http_timeout == 9.0
    assert _FakeLedger.instances[0].settings.base_currency == "CNY"


def test_command_line_overrides_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FX_LEDGER_DB_URL", "sqlite:///from-env.db")

    script.main(["--db", "sqlite:///from-args.db"])

    assert _FakeLedger.instances[0].settings.db_url == "sqlite:///from-args.db"


def test_base_option_is_not_accepted() -> None:
    with pytest.raises(SystemExit):
        script.parse_args(["--base", "USD"])


def test_main_sync_failure_returns_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    original_init = _FakeLedger.__init__

    def _failing_init(self, *, settings) -> None:
        original_init(self, settings=settings)
        self.sync_result = SyncResult(success=False, count=0, message="No rates fetched from BOC")

    monkeypatch.setattr(_FakeLedger, "__init__", _failing_init)

    assert script.main([]) == 1
    assert "Sync failed: No rates fetched from BOC" in capsys.readouterr().err


def test_main_preview_prints_quotes(capsys: pytest.CaptureFixture[str]) -> None:
    assert script.main(["--preview"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("EUR\t欧元\t")
    assert "sell=7.8500" in out


def test_main_preview_failure(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    original_init = _FakeLedger.__init__

    def _broken_init(self, *, settings) -> None:
        original_init(self, settings=settings)
        self.preview_error = ParseFailure("BOC rate table not found")

    monkeypatch.setattr(_FakeLedger, "__init__", _broken_init)

    assert script.main(["--preview"]) == 1
    assert "Preview failed: BOC rate table not found" in capsys.readouterr().err
