"""
Database
========

Thin wrapper around a SQLAlchemy engine.

WHAT IT GIVES YOU:
-----------------
- session()  -> a Session that commits on success and rolls back on error
- upsert()   -> INSERT ... ON CONFLICT DO UPDATE for a batch of row dicts
- ping()     -> cheap "is the database there?" check for /dbcheck

SQLite is the default (handy for local runs and tests). PostgreSQL works by
pointing DATABASE_URL at it; both dialects support ON CONFLICT upserts.
"""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Sequence

from sqlalchemy import Table, create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.tables import Base, ImportJob

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the engine and hands out sessions.

    Args:
        url: SQLAlchemy database URL (e.g. "sqlite:///./trees.db")
        echo: Log every SQL statement (noisy, for debugging only)
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url

        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            # In-memory SQLite lives inside one connection, so share it
            if url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url:
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self):
        """Create any missing tables."""
        Base.metadata.create_all(self.engine)
        logger.info(f"[Database] Tables ready ({self.dialect})")

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def upsert(
        self,
        table: Table,
        rows: Sequence[dict],
        conflict_columns: Sequence[str],
        update_exclude: Iterable[str] = (),
    ) -> int:
        """
        Insert rows, updating existing ones that clash on conflict_columns.

        Every dict in rows must have the same keys. Columns listed in
        update_exclude (e.g. a generated primary key) are written on insert
        but left alone on update.

        Returns:
            Number of rows sent to the database
        """
        if not rows:
            return 0

        insert = self._dialect_insert()
        stmt = insert(table).values(list(rows))

        skip = set(conflict_columns) | set(update_exclude)
        update_columns = {
            name: stmt.excluded[name]
            for name in rows[0].keys()
            if name not in skip
        }

        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(conflict_columns),
                set_=update_columns,
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))

        with self.engine.begin() as conn:
            conn.execute(stmt)

        return len(rows)

    def ping(self) -> bool:
        """Run a trivial query against import_jobs. Raises if the database is unreachable."""
        with self.session() as session:
            session.execute(select(ImportJob.id).limit(1))
        return True

    def _dialect_insert(self):
        if self.dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif self.dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            raise NotImplementedError(f"Upsert is not supported for dialect '{self.dialect}'")
        return insert
