"""Public interface for the fx_ledger package."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

from fx_ledger.config import FxLedgerSettings
from fx_ledger.db import DEFAULT_SQLITE_DB_PATH
from fx_ledger.db.base_backend import BackendStrategy, PersistenceResult
from fx_ledger.db.mongo_backend import MongoBackend
from fx_ledger.db.mysql_backend import MySQLBackend
from fx_ledger.db.postgres_backend import PostgresBackend
from fx_ledger.db.sqlite_backend import SQLiteBackend
from fx_ledger.exceptions import FxLedgerError, ParseFailure, PersistenceError, SourceUnavailable
from fx_ledger.ingestion.boc_html import BOCRatesClient
from fx_ledger.ingestion.models import CurrencyQuote, ExchangeRateEdge, RateSource
from fx_ledger.ingestion.strategy import RateSourceAdapter
from fx_ledger.services.invoice_binder import (
    Invoice,
    InvoiceStatus,
    SettlementProvenance,
    apply_invoice_update,
    bind_settlement_rate,
    reconcile_pending,
)
from fx_ledger.services.lookup import RateLookupService, RateResolution
from fx_ledger.services.sync import SyncResult, preview_rates, sync_rates
from fx_ledger.utils.currencies import SUPPORTED_CURRENCIES, require_supported_currency

try:  # pragma: no cover - imported lazily
    from pymongo import MongoClient
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    MongoClient = None  # type: ignore[misc, assignment]

__all__ = [
    "__version__",
    "CurrencyQuote",
    "DatabaseBackend",
    "DatabaseConnectionInfo",
    "ExchangeRateEdge",
    "FxLedger",
    "FxLedgerError",
    "FxLedgerSettings",
    "Invoice",
    "InvoiceStatus",
    "ParseFailure",
    "PersistenceError",
    "PersistenceResult",
    "RateSource",
    "RateResolution",
    "SettlementProvenance",
    "SourceUnavailable",
    "SyncResult",
]

try:
    __version__ = importlib_metadata.version("fx-ledger")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - fallback for local runs
    __version__ = "0.1.0"


# Accepted URL schemes (without driver suffix) and the form SQLAlchemy/pymongo expect.
_CANONICAL_SCHEMES: dict[str, str] = {
    "sqlite": "sqlite",
    "postgres": "postgresql",
    "postgresql": "postgresql",
    "mysql": "mysql",
    "mongodb": "mongodb",
}
_DATABASE_NAME_PARAM = "database_name"


class DatabaseBackend(str, Enum):
    """Supported database engines for the rate store."""

    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRES = "postgres"
    MONGODB = "mongodb"

    @staticmethod
    def canonical_scheme(scheme: str) -> str:
        """Map ``postgres+psycopg2`` style schemes to their canonical spelling.

        Driver suffixes (``+pymysql``, ``+srv``) are kept as given.
        """

        dialect, plus, driver = scheme.lower().partition("+")
        try:
            canonical = _CANONICAL_SCHEMES[dialect]
        except KeyError:
            raise ValueError(
                f"Unsupported database backend {scheme!r}. Supported values are SQLite, "
                "MySQL, Postgres, and MongoDB."
            ) from None
        return f"{canonical}{plus}{driver}"

    @classmethod
    def from_scheme(cls, scheme: str) -> "DatabaseBackend":
        dialect = cls.canonical_scheme(scheme).partition("+")[0]
        if dialect == "postgresql":
            return cls.POSTGRES
        return cls(dialect)


@dataclass(slots=True)
class DatabaseConnectionInfo:
    """Represents how FxLedger should talk to the rate store.

    For SQLite ``name`` is the database file path exactly as SQLAlchemy reads
    it from the URL: ``sqlite:///rates.db`` is relative to the working
    directory, ``sqlite:////var/lib/rates.db`` is absolute.
    """

    backend: DatabaseBackend
    url: str
    name: str | None
    username: str | None
    password: str | None
    host: str | None
    port: int | None

    @classmethod
    def from_url(cls, url: str) -> "DatabaseConnectionInfo":
        scheme, separator, remainder = url.partition("://")
        if not separator or not scheme:
            raise ValueError("DB_URL must include a scheme (e.g. mysql:// or postgres://)")
        backend = DatabaseBackend.from_scheme(scheme)
        canonical_url = f"{DatabaseBackend.canonical_scheme(scheme)}://{remainder}"

        if backend is DatabaseBackend.SQLITE:
            return cls.sqlite(canonical_url, make_url(canonical_url).database or None)

        server_url, name = _move_database_name_into_path(canonical_url)
        parsed = urlsplit(server_url)
        return cls(
            backend=backend,
            url=server_url,
            name=name,
            username=parsed.username,
            password=parsed.password,
            host=parsed.hostname,
            port=parsed.port,
        )

    @classmethod
    def sqlite(cls, url: str, path: str | None) -> "DatabaseConnectionInfo":
        return cls(
            backend=DatabaseBackend.SQLITE,
            url=url,
            name=path,
            username=None,
            password=None,
            host=None,
            port=None,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.backend is DatabaseBackend.SQLITE


def _move_database_name_into_path(url: str) -> tuple[str, str | None]:
    """Resolve the database name of a server DSN.

    A ``DATABASE_NAME`` query parameter (any case) is accepted in place of a
    URL path and removed from the query so drivers never see it. The path wins
    when both are present.
    """

    parts = urlsplit(url)
    query_name: str | None = None
    kept_params: list[tuple[str, str]] = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key.lower() == _DATABASE_NAME_PARAM:
            query_name = value or query_name
        else:
            kept_params.append((key, value))

    path_name = parts.path.lstrip("/") or None
    name = path_name or query_name
    path = parts.path if path_name else (f"/{name}" if name else parts.path)
    rebuilt = parts._replace(path=path, query=urlencode(kept_params, doseq=True))
    return urlunsplit(rebuilt), name


class FxLedger:
    """Package facade wiring the rate source, rate store and invoice binder together.

    The database client, the HTTP adapter and the settings are all owned by the
    instance (or injected), never shared through module-level state.
    """

    _DRIVER_HINTS: dict[DatabaseBackend, str] = {
        DatabaseBackend.POSTGRES: "Install psycopg2 or psycopg2-binary via 'pip install psycopg2-binary'.",
        DatabaseBackend.MYSQL: "Install mysqlclient or PyMySQL via 'pip install mysqlclient' or 'pip install PyMySQL'.",
        DatabaseBackend.MONGODB: "Install pymongo via 'pip install fx-ledger[mongo]'.",
    }

    __version__ = __version__

    def __init__(
        self,
        db_config: DatabaseConnectionInfo | str | None = None,
        *,
        settings: FxLedgerSettings | None = None,
        adapter: RateSourceAdapter | None = None,
        backend: BackendStrategy | None = None,
    ) -> None:
        """Configure persistence and the rate source.

        ``db_config`` accepts a ``DatabaseConnectionInfo`` or a DSN string. When
        omitted, ``settings.db_url`` is used, and failing that the bundled SQLite
        database. ``adapter`` and ``backend`` may be injected directly (tests,
        alternative sources); otherwise they are built lazily.
        """

        self.settings = settings or FxLedgerSettings()
        self.connection_info = self._build_connection_info(
            db_config=db_config if db_config is not None else self.settings.db_url,
        )
        self.backend = self.connection_info.backend.value
        self._backend_strategy: BackendStrategy | None = backend
        self._adapter: RateSourceAdapter | None = adapter
        self._lookup: RateLookupService | None = None

    @staticmethod
    def _build_connection_info(
        *,
        db_config: DatabaseConnectionInfo | str | None,
    ) -> DatabaseConnectionInfo:
        if isinstance(db_config, DatabaseConnectionInfo):
            return db_config
        if isinstance(db_config, str):
            return DatabaseConnectionInfo.from_url(db_config)
        return DatabaseConnectionInfo.sqlite(
            f"sqlite:///{DEFAULT_SQLITE_DB_PATH.as_posix()}", str(DEFAULT_SQLITE_DB_PATH)
        )

    def _build_backend(self) -> BackendStrategy:
        backend = self.connection_info.backend
        if backend is DatabaseBackend.SQLITE:
            if not self.connection_info.name or self.connection_info.name == ":memory:":
                raise ValueError("SQLite DB_URL must name a database file, e.g. sqlite:///rates.db")
            return SQLiteBackend(Path(self.connection_info.name))
        if backend is DatabaseBackend.POSTGRES:
            return PostgresBackend(self.connection_info.url)
        if backend is DatabaseBackend.MYSQL:
            return MySQLBackend(self.connection_info.url)
        if backend is DatabaseBackend.MONGODB:
            return MongoBackend(self.connection_info.url, database=self.connection_info.name)
        raise ValueError(f"Unsupported backend: {backend}")

    def _get_backend_strategy(self) -> BackendStrategy:
        if self._backend_strategy is None:
            self._backend_strategy = self._build_backend()
        return self._backend_strategy

    def _get_adapter(self) -> RateSourceAdapter:
        if self._adapter is None:
            self._adapter = BOCRatesClient(
                url=self.settings.source_url, timeout=self.settings.http_timeout
            )
        return self._adapter

    @property
    def lookup(self) -> RateLookupService:
        if self._lookup is None:
            self._lookup = RateLookupService(self._get_backend_strategy())
        return self._lookup

    def sync_rates(self) -> SyncResult:
        """Fetch, normalise and store today's BOC rates; never raises for source/store errors."""

        return sync_rates(
            self._get_adapter(),
            self._get_backend_strategy(),
            major_pairs=self.settings.major_pairs,
        )

    def preview_rates(self) -> List[CurrencyQuote]:
        """Return what a sync would store, without persisting anything."""

        return preview_rates(self._get_adapter())

    def get_rate(
        self, from_currency: str, to_currency: str, on: date | None = None
    ) -> float | None:
        return self.lookup.rate_for(from_currency, to_currency, on)

    def bind_settlement_rate(
        self, invoice: Invoice, *, manual_rate: float | None = None
    ) -> Invoice:
        return bind_settlement_rate(
            invoice,
            self.settings.base_currency,
            lookup=self.lookup,
            manual_rate=manual_rate,
        )

    def update_invoice(
        self,
        existing: Invoice,
        changes: Mapping[str, Any],
        *,
        manual_rate: float | None = None,
    ) -> Invoice:
        return apply_invoice_update(
            existing,
            changes,
            lookup=self.lookup,
            base_currency=self.settings.base_currency,
            manual_rate=manual_rate,
        )

    def reconcile_pending(self, invoices: List[Invoice]) -> List[Invoice]:
        return reconcile_pending(invoices, lookup=self.lookup)

    def record_manual_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: float,
        on: date | None = None,
        *,
        include_inverse: bool = True,
    ) -> PersistenceResult:
        """Store an accountant-entered rate; automated syncs will not overwrite it."""

        edge = self._manual_edge(from_currency, to_currency, rate, on)
        edges = [edge]
        if include_inverse:
            edges.append(
                ExchangeRateEdge(
                    edge.rate_date,
                    edge.to_currency,
                    edge.from_currency,
                    1 / edge.rate,
                    RateSource.MANUAL,
                )
            )
        return self._store(edges)

    def record_manual_rates(self, rates: Iterable[Mapping[str, Any]]) -> PersistenceResult:
        """Store several manual rates in one call.

        Each entry needs ``from_currency``, ``to_currency`` and ``rate``;
        ``rate_date`` (a date or ISO string) defaults to today. Only the given
        direction is stored. Every entry is validated before anything is written.
        """

        edges: list[ExchangeRateEdge] = []
        for index, entry in enumerate(rates):
            missing = {"from_currency", "to_currency", "rate"} - set(entry)
            if missing:
                raise ValueError(f"Rate #{index} is missing {', '.join(sorted(missing))}")
            rate_date = entry.get("rate_date")
            if isinstance(rate_date, str):
                rate_date = date.fromisoformat(rate_date)
            edges.append(
                self._manual_edge(
                    entry["from_currency"], entry["to_currency"], entry["rate"], rate_date
                )
            )
        if not edges:
            raise ValueError("rates must contain at least one entry")
        return self._store(edges)

    @staticmethod
    def _manual_edge(
        from_currency: str, to_currency: str, rate: float, on: date | None
    ) -> ExchangeRateEdge:
        source = require_supported_currency(from_currency)
        target = require_supported_currency(to_currency)
        if source == target:
            raise ValueError("from_currency and to_currency must differ")
        return ExchangeRateEdge(on or date.today(), source, target, float(rate), RateSource.MANUAL)

    def _store(self, edges: list[ExchangeRateEdge]) -> PersistenceResult:
        backend = self._get_backend_strategy()
        backend.ensure_schema()
        return backend.upsert_rates(edges)

    def list_rates(
        self,
        *,
        from_currency: str | None = None,
        to_currency: str | None = None,
        on: date | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> List[Dict[str, Any]]:
        """Return stored edges (newest first) as plain dictionaries."""

        if on is not None:
            start = end = on
        if start and end and start > end:
            raise ValueError("start must be on or before end")
        edges = self._get_backend_strategy().fetch_range(
            start, end, from_currency=from_currency, to_currency=to_currency
        )
        return [
            {
                "rate_date": edge.rate_date,
                "from_currency": edge.from_currency,
                "to_currency": edge.to_currency,
                "rate": edge.rate,
                "source": edge.source.value,
            }
            for edge in edges
        ]

    def delete_rate(self, from_currency: str, to_currency: str, on: date) -> bool:
        """Administrative removal of a single stored edge."""

        return self._get_backend_strategy().delete_rate(from_currency, to_currency, on)

    @staticmethod
    def supported_currencies() -> List[Dict[str, str]]:
        return [currency._asdict() for currency in SUPPORTED_CURRENCIES]

    def connection(self) -> tuple[bool, str | None]:
        """Attempt to establish a database connection and report the outcome."""

        if self.connection_info.backend is DatabaseBackend.MONGODB:
            return self._probe_mongodb()
        return self._probe_relational_db()

    def _missing_driver_message(self, exc: ModuleNotFoundError) -> str:
        """Return a user-friendly hint when an optional DB driver is missing."""

        module_name = exc.name or str(exc)
        hint = self._DRIVER_HINTS.get(self.connection_info.backend)
        base = (
            f"Missing optional dependency '{module_name}' required for "
            f"{self.connection_info.backend.value} connections."
        )
        if hint:
            return f"{base} {hint}"
        return base

    def _probe_relational_db(self) -> tuple[bool, str | None]:
        """Ping SQLite/MySQL/Postgres backends via SQLAlchemy."""

        engine = None
        try:
            engine = create_engine(self.connection_info.url, future=True)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except ModuleNotFoundError as exc:
            return False, self._missing_driver_message(exc)
        except Exception as exc:  # pragma: no cover - SQLAlchemy provides error detail
            return False, str(exc)
        finally:
            if engine is not None:
                engine.dispose()
        return True, None

    def _probe_mongodb(self) -> tuple[bool, str | None]:
        """Ping MongoDB using pymongo since SQLAlchemy lacks a native dialect."""

        if MongoClient is None:
            return False, self._missing_driver_message(ModuleNotFoundError("pymongo"))

        client: MongoClient | None = None
        try:
            client = MongoClient(self.connection_info.url, serverSelectionTimeoutMS=5000)
            client.admin.command("ping")
        except ModuleNotFoundError as exc:
            return False, self._missing_driver_message(exc)
        except Exception as exc:  # pragma: no cover - pymongo surfaces detail
            return False, str(exc)
        finally:
            if client is not None:
                client.close()
        return True, None

    def close(self) -> None:
        if self._backend_strategy is not None:
            self._backend_strategy.close()
        closer = getattr(self._adapter, "close", None)
        if callable(closer):
            closer()

    def __enter__(self) -> "FxLedger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
