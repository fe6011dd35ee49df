"""Synchronise (or preview) Bank of China exchange rates into the rate store."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from fx_ledger import FxLedger
from fx_ledger.config import FxLedgerSettings
from fx_ledger.exceptions import ParseFailure, SourceUnavailable

__all__ = ["parse_args", "main"]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--db",
        dest="db_url",
        default=None,
        help="Database URL (defaults to FX_LEDGER_DB_URL or the bundled SQLite file)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="HTTP timeout in seconds for the BOC request",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Fetch and print quotes without storing them",
    )
    return parser.parse_args(argv)


def _settings_from_args(args: argparse.Namespace) -> FxLedgerSettings:
    overrides = {"db_url": args.db_url, "http_timeout": args.timeout}
    return FxLedgerSettings(**{key: value for key, value in overrides.items() if value is not None})


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings = _settings_from_args(args)
    with FxLedger(settings=settings) as ledger:
        if args.preview:
            try:
                quotes = ledger.preview_rates()
            except (SourceUnavailable, ParseFailure) as exc:
                print(f"Preview failed: {exc}", file=sys.stderr)
                return 1
            for quote in quotes:
                print(
                    f"{quote.currency}\t{quote.currency_name}\t"
                    f"buy={quote.buying_rate:.4f}\tsell={quote.selling_rate:.4f}\t"
                    f"mid={quote.middle_rate:.4f}"
                )
            return 0

        result = ledger.sync_rates()
    if not result.success:
        print(f"Sync failed: {result.message}", file=sys.stderr)
        return 1
    print(result.message)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
