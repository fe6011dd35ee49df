"""Shared logic for SQL (SQLite/Postgres/MySQL) rate stores."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Sequence

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    MetaData,
    String,
    Table,
    and_,
    case,
    create_engine,
    delete,
    or_,
    select,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from fx_ledger.db.base_backend import BackendStrategy, PersistenceResult
from fx_ledger.exceptions import PersistenceError
from fx_ledger.ingestion.models import ExchangeRateEdge, RateSource
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)

metadata = MetaData()

exchange_rates = Table(
    "exchange_rates",
    metadata,
    Column("rate_date", Date, primary_key=True),
    Column("from_currency", String(3), primary_key=True),
    Column("to_currency", String(3), primary_key=True),
    Column("rate", Float, nullable=False),
    Column("source", String(32), nullable=False, default=RateSource.DIRECT_BANK.value),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

_KEY_COLUMNS = (
    exchange_rates.c.rate_date,
    exchange_rates.c.from_currency,
    exchange_rates.c.to_currency,
)
_MANUAL = RateSource.MANUAL.value
_UPSERT_DIALECTS = frozenset({"sqlite", "postgresql", "mysql", "mariadb"})


class RelationalBackend(BackendStrategy):
    """Base class that encapsulates SQLAlchemy powered interactions."""

    def __init__(self, url: str, *, engine: Engine | None = None) -> None:
        self.url = url
        self._engine_instance: Engine | None = engine

    def _get_engine(self) -> Engine:
        if self._engine_instance is None:
            self._engine_instance = create_engine(self.url, future=True)
        return self._engine_instance

    def ensure_schema(self) -> None:
        engine = self._get_engine()
        LOGGER.info("Ensuring exchange_rates schema exists")
        try:
            metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to ensure exchange_rates schema: {exc}") from exc

    def _upsert_statement(self, values: dict[str, Any]):
        """Build one ``INSERT ... ON CONFLICT`` statement for the active dialect.

        An existing manual edge is only replaced by another manual edge.
        """

        dialect = self._get_engine().dialect.name
        if dialect in {"sqlite", "postgresql"}:
            insert_fn = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert_fn(exchange_rates).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=list(_KEY_COLUMNS),
                set_={
                    "rate": stmt.excluded.rate,
                    "source": stmt.excluded.source,
                    "updated_at": stmt.excluded.updated_at,
                },
                where=or_(exchange_rates.c.source != _MANUAL, stmt.excluded.source == _MANUAL),
            )
        if dialect in {"mysql", "mariadb"}:
            stmt = mysql.insert(exchange_rates).values(**values)
            keep = and_(exchange_rates.c.source == _MANUAL, stmt.inserted.source != _MANUAL)
            # MySQL applies assignments left to right; ``source`` must come last.
            return stmt.on_duplicate_key_update(
                [
                    ("rate", case((keep, exchange_rates.c.rate), else_=stmt.inserted.rate)),
                    (
                        "updated_at",
                        case((keep, exchange_rates.c.updated_at), else_=stmt.inserted.updated_at),
                    ),
                    ("source", case((keep, exchange_rates.c.source), else_=stmt.inserted.source)),
                ]
            )
        raise PersistenceError(f"Unsupported SQL dialect for upserts: {dialect}")

    def upsert_rates(self, edges: Sequence[ExchangeRateEdge]) -> PersistenceResult:
        result = PersistenceResult()
        if not edges:
            return result
        engine = self._get_engine()
        if engine.dialect.name not in _UPSERT_DIALECTS:
            raise PersistenceError(
                f"Unsupported SQL dialect for upserts: {engine.dialect.name}", result=result
            )
        is_mysql = engine.dialect.name in {"mysql", "mariadb"}
        for edge in edges:
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            values = {
                "rate_date": edge.rate_date,
                "from_currency": edge.from_currency,
                "to_currency": edge.to_currency,
                "rate": edge.rate,
                "source": edge.source.value,
                "created_at": now,
                "updated_at": now,
            }
            try:
                with engine.begin() as connection:
                    outcome = connection.execute(self._upsert_statement(values))
                    if is_mysql:
                        protected = (
                            edge.source is not RateSource.MANUAL
                            and connection.execute(
                                select(exchange_rates.c.source).where(*self._key_clause(edge))
                            ).scalar_one()
                            == _MANUAL
                        )
                    else:
                        protected = outcome.rowcount == 0
            except SQLAlchemyError as exc:
                LOGGER.error("Failed to upsert %s: %s", edge.key, exc)
                result.failed.append(edge.key)
                continue
            if protected:
                LOGGER.info("Keeping manual rate for %s; automated value ignored", edge.key)
                result.skipped += 1
            else:
                result.upserted += 1

        LOGGER.info(
            "Upserted %s edges, skipped %s manual conflicts, %s failures",
            result.upserted,
            result.skipped,
            len(result.failed),
        )
        if result.failed:
            raise PersistenceError(
                f"Failed to store {len(result.failed)} of {len(edges)} exchange rates",
                result=result,
            )
        return result

    @staticmethod
    def _key_clause(edge: ExchangeRateEdge) -> tuple[Any, ...]:
        return (
            exchange_rates.c.rate_date == edge.rate_date,
            exchange_rates.c.from_currency == edge.from_currency,
            exchange_rates.c.to_currency == edge.to_currency,
        )

    def _fetch_one(self, stmt) -> ExchangeRateEdge | None:
        try:
            with self._get_engine().connect() as connection:
                row = connection.execute(stmt).first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to query exchange rates: {exc}") from exc
        return _row_to_edge(row) if row is not None else None

    def find_exact(self, from_currency: str, to_currency: str, on: date) -> ExchangeRateEdge | None:
        stmt = select(exchange_rates).where(
            exchange_rates.c.from_currency == from_currency.upper(),
            exchange_rates.c.to_currency == to_currency.upper(),
            exchange_rates.c.rate_date == on,
        )
        return self._fetch_one(stmt)

    def find_latest_on_or_before(
        self, from_currency: str, to_currency: str, on: date
    ) -> ExchangeRateEdge | None:
        stmt = (
            select(exchange_rates)
            .where(
                exchange_rates.c.from_currency == from_currency.upper(),
                exchange_rates.c.to_currency == to_currency.upper(),
                exchange_rates.c.rate_date <= on,
            )
            .order_by(exchange_rates.c.rate_date.desc())
            .limit(1)
        )
        return self._fetch_one(stmt)

    def fetch_range(
        self,
        start: date | None = None,
        end: date | None = None,
        *,
        from_currency: str | None = None,
        to_currency: str | None = None,
    ) -> list[ExchangeRateEdge]:
        stmt = select(exchange_rates).order_by(
            exchange_rates.c.rate_date.desc(),
            exchange_rates.c.from_currency,
            exchange_rates.c.to_currency,
        )
        if start is not None:
            stmt = stmt.where(exchange_rates.c.rate_date >= start)
        if end is not None:
            stmt = stmt.where(exchange_rates.c.rate_date <= end)
        if from_currency is not None:
            stmt = stmt.where(exchange_rates.c.from_currency == from_currency.upper())
        if to_currency is not None:
            stmt = stmt.where(exchange_rates.c.to_currency == to_currency.upper())
        try:
            with self._get_engine().connect() as connection:
                return [_row_to_edge(row) for row in connection.execute(stmt)]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to query exchange rates: {exc}") from exc

    def delete_rate(self, from_currency: str, to_currency: str, on: date) -> bool:
        stmt = delete(exchange_rates).where(
            exchange_rates.c.from_currency == from_currency.upper(),
            exchange_rates.c.to_currency == to_currency.upper(),
            exchange_rates.c.rate_date == on,
        )
        try:
            with self._get_engine().begin() as connection:
                deleted = connection.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete exchange rate: {exc}") from exc
        if deleted:
            LOGGER.info("Deleted %s->%s rate for %s", from_currency, to_currency, on)
        return bool(deleted)

    def close(self) -> None:  # pragma: no cover - trivial resource cleanup
        if self._engine_instance is not None:
            self._engine_instance.dispose()


def _normalise_rate_date(value: object) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value))


def _row_to_edge(row: Row) -> ExchangeRateEdge:
    mapping = row._mapping
    return ExchangeRateEdge(
        rate_date=_normalise_rate_date(mapping["rate_date"]),
        from_currency=mapping["from_currency"],
        to_currency=mapping["to_currency"],
        rate=float(mapping["rate"]),
        source=RateSource.parse(mapping["source"]),
        created_at=mapping["created_at"],
        updated_at=mapping["updated_at"],
    )


__all__ = ["RelationalBackend", "exchange_rates", "metadata"]
