"""SQLite backend strategy implementation."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine

from fx_ledger.db import DEFAULT_SQLITE_DB_PATH
from fx_ledger.db.relational_backend import RelationalBackend
from fx_ledger.utils.logger import get_logger

LOGGER = get_logger(__name__)


class SQLiteBackend(RelationalBackend):
    """Rate store kept in a local SQLite file (the bundled database by default)."""

    def __init__(self, db_path: str | Path = DEFAULT_SQLITE_DB_PATH) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        super().__init__(str(engine.url), engine=engine)
        # The schema is created eagerly so callers can query straight away.
        self.ensure_schema()
        LOGGER.info("Using SQLite rate store at %s", self.db_path)


__all__ = ["SQLiteBackend"]
