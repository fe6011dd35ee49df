"""MongoDB backend strategy."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Mapping, Sequence

from fx_ledger.db.base_backend import BackendStrategy, PersistenceResult
from fx_ledger.exceptions import PersistenceError
from fx_ledger.ingestion.models import ExchangeRateEdge, RateSource
from fx_ledger.utils.logger import get_logger

try:  # pragma: no cover - optional dependency
    from pymongo import ASCENDING, DESCENDING, MongoClient
    from pymongo.collection import Collection
    from pymongo.errors import DuplicateKeyError, PyMongoError
except ModuleNotFoundError:  # pragma: no cover - handled dynamically
    MongoClient = None  # type: ignore[assignment]
    Collection = None  # type: ignore[assignment]
    ASCENDING, DESCENDING = 1, -1
    DuplicateKeyError = Exception  # type: ignore[assignment]
    PyMongoError = Exception  # type: ignore[assignment]

LOGGER = get_logger(__name__)

COLLECTION_NAME = "exchange_rates"
_MANUAL = RateSource.MANUAL.value


class MongoBackend(BackendStrategy):
    """Backend strategy that persists exchange-rate edges inside MongoDB."""

    def __init__(self, url: str, *, database: str | None = None) -> None:
        if MongoClient is None:  # pragma: no cover - defensive
            raise ModuleNotFoundError("pymongo is required for MongoDB backends")
        self.url = url
        self._client = MongoClient(url)
        db = self._client.get_default_database() if database is None else self._client[database]
        if db is None:
            raise ValueError("MongoDB connection URI must include a database name")
        self._collection: Collection = db[COLLECTION_NAME]

    def ensure_schema(self) -> None:
        try:
            LOGGER.info("Ensuring MongoDB exchange_rates collection exists")
            self._client.admin.command("ping")
            self._collection.create_index(
                [("rate_date", ASCENDING), ("from_currency", ASCENDING), ("to_currency", ASCENDING)],
                unique=True,
            )
        except PyMongoError as exc:  # pragma: no cover - error path
            raise PersistenceError(f"Failed to ensure MongoDB schema: {exc}") from exc

    def upsert_rates(self, edges: Sequence[ExchangeRateEdge]) -> PersistenceResult:
        result = PersistenceResult()
        for edge in edges:
            now = datetime.now(timezone.utc)
            key = {
                "rate_date": edge.rate_date.isoformat(),
                "from_currency": edge.from_currency,
                "to_currency": edge.to_currency,
            }
            query: dict[str, Any] = dict(key)
            if edge.source is not RateSource.MANUAL:
                # A stored manual edge no longer matches, so the upsert collides
                # with the unique index instead of overwriting it.
                query["source"] = {"$ne": _MANUAL}
            update = {
                "$set": {"rate": edge.rate, "source": edge.source.value, "updated_at": now},
                "$setOnInsert": {**key, "created_at": now},
            }
            try:
                self._collection.update_one(query, update, upsert=True)
            except DuplicateKeyError:
                LOGGER.info("Keeping manual rate for %s; automated value ignored", edge.key)
                result.skipped += 1
                continue
            except PyMongoError as exc:
                LOGGER.error("Failed to upsert %s: %s", edge.key, exc)
                result.failed.append(edge.key)
                continue
            result.upserted += 1

        if result.failed:
            raise PersistenceError(
                f"Failed to store {len(result.failed)} of {len(edges)} exchange rates",
                result=result,
            )
        return result

    def find_exact(self, from_currency: str, to_currency: str, on: date) -> ExchangeRateEdge | None:
        try:
            doc = self._collection.find_one(
                {
                    "rate_date": on.isoformat(),
                    "from_currency": from_currency.upper(),
                    "to_currency": to_currency.upper(),
                }
            )
        except PyMongoError as exc:  # pragma: no cover - error path
            raise PersistenceError(f"Failed to query MongoDB rates: {exc}") from exc
        return _doc_to_edge(doc) if doc else None

    def find_latest_on_or_before(
        self, from_currency: str, to_currency: str, on: date
    ) -> ExchangeRateEdge | None:
        query = {
            "from_currency": from_currency.upper(),
            "to_currency": to_currency.upper(),
            "rate_date": {"$lte": on.isoformat()},
        }
        try:
            docs = list(self._collection.find(query).sort("rate_date", DESCENDING).limit(1))
        except PyMongoError as exc:  # pragma: no cover - error path
            raise PersistenceError(f"Failed to query MongoDB rates: {exc}") from exc
        return _doc_to_edge(docs[0]) if docs else None

    def fetch_range(
        self,
        start: date | None = None,
        end: date | None = None,
        *,
        from_currency: str | None = None,
        to_currency: str | None = None,
    ) -> list[ExchangeRateEdge]:
        query: dict[str, Any] = {}
        if start is not None or end is not None:
            range_query: dict[str, str] = {}
            if start is not None:
                range_query["$gte"] = start.isoformat()
            if end is not None:
                range_query["$lte"] = end.isoformat()
            query["rate_date"] = range_query
        if from_currency is not None:
            query["from_currency"] = from_currency.upper()
        if to_currency is not None:
            query["to_currency"] = to_currency.upper()
        try:
            docs = self._collection.find(query).sort(
                [
                    ("rate_date", DESCENDING),
                    ("from_currency", ASCENDING),
                    ("to_currency", ASCENDING),
                ]
            )
            return [_doc_to_edge(doc) for doc in docs]
        except PyMongoError as exc:  # pragma: no cover - error path
            raise PersistenceError(f"Failed to query MongoDB rates: {exc}") from exc

    def delete_rate(self, from_currency: str, to_currency: str, on: date) -> bool:
        try:
            outcome = self._collection.delete_one(
                {
                    "rate_date": on.isoformat(),
                    "from_currency": from_currency.upper(),
                    "to_currency": to_currency.upper(),
                }
            )
        except PyMongoError as exc:  # pragma: no cover - error path
            raise PersistenceError(f"Failed to delete MongoDB rate: {exc}") from exc
        return outcome.deleted_count > 0

    def close(self) -> None:  # pragma: no cover - trivial cleanup
        self._client.close()


def _doc_to_edge(doc: Mapping[str, Any]) -> ExchangeRateEdge:
    return ExchangeRateEdge(
        rate_date=date.fromisoformat(doc["rate_date"]),
        from_currency=doc["from_currency"],
        to_currency=doc["to_currency"],
        rate=float(doc["rate"]),
        source=RateSource.parse(doc.get("source", RateSource.DIRECT_BANK.value)),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


__all__ = ["MongoBackend"]
