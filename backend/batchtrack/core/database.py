from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from batchtrack.core.config import setting

# Single source of truth for Base
Base = declarative_base()


class Database:
    """
    Owns the engine and session factory for one process.

    Built explicitly and handed to the app; call open() once at startup and
    close() once at shutdown.
    """

    def __init__(self, url: Optional[str] = None, **engine_kwargs: Any):
        self.url = url or setting("DATABASE_URL")
        self.engine_kwargs: Dict[str, Any] = {"future": True, **engine_kwargs}
        if not self.url.startswith("sqlite"):
            self.engine_kwargs.setdefault("pool_pre_ping", True)
            self.engine_kwargs.setdefault("pool_recycle", 300)
        self.engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self, create_tables: bool = True) -> "Database":
        if self.engine is not None:
            return self
        self.engine = create_engine(self.url, **self.engine_kwargs)
        self._sessionmaker = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        if create_tables:
            # importing the models registers their tables on Base.metadata
            import batchtrack.models  # noqa: F401
            Base.metadata.create_all(bind=self.engine)
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self._sessionmaker = None

    def new_session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.new_session()
        try:
            yield db
        finally:
            db.close()

    def ping(self) -> bool:
        with self.session() as db:
            db.execute(text("SELECT 1"))
        return True


def get_db(request: Request) -> Iterator[Session]:
    database: Database = request.app.state.database
    db = database.new_session()
    try:
        yield db
    finally:
        db.close()
